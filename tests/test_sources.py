import json
import tempfile
import unittest
from pathlib import Path

from termstats.sources import (
    SourceFilter,
    SourceTable,
    SourceTableError,
    load_source_counts,
    normalize_source,
    simplify_source_counts,
)


class NormalizeSourceTests(unittest.TestCase):
    def test_literal_cases(self) -> None:
        self.assertEqual(normalize_source("https://www.example.com:8080/"), "example.com")
        self.assertEqual(normalize_source("sub.example.com"), "example.com")
        self.assertEqual(normalize_source("news.example.org.np"), "example.org.np")

    def test_scheme_and_www(self) -> None:
        self.assertEqual(normalize_source("http://www.onlinekhabar.com"), "onlinekhabar.com")
        self.assertEqual(normalize_source("www.setopati.com/"), "setopati.com")

    def test_ports_are_dropped(self) -> None:
        self.assertEqual(normalize_source("localhost:8000"), "localhost")
        self.assertEqual(normalize_source("host.example.com:443"), "example.com")

    def test_short_hosts_are_kept(self) -> None:
        self.assertEqual(normalize_source("example"), "example")
        self.assertEqual(normalize_source("ekantipur.com"), "ekantipur.com")
        # second-to-last label "com" has three characters
        self.assertEqual(normalize_source("kathmandupost.com.np"), "kathmandupost.com.np")

    def test_is_deterministic_and_idempotent_on_keys(self) -> None:
        for raw in ("https://www.example.com:8080/", "news.example.org.np", "sub.example.com"):
            key = normalize_source(raw)
            self.assertEqual(normalize_source(raw), key)
            self.assertEqual(normalize_source(key), key)

    def test_empty_string(self) -> None:
        self.assertEqual(normalize_source(""), "")


class SourceTableTests(unittest.TestCase):
    def test_object_and_pair_shapes_are_equivalent(self) -> None:
        from_object = SourceTable.from_payload({"a.com": 3, "b.org.np": 1})
        from_pairs = SourceTable.from_payload([["a.com", 3], ["b.org.np", 1]])
        self.assertEqual(from_object.counts, from_pairs.counts)

    def test_repeated_pairs_accumulate(self) -> None:
        table = SourceTable.from_payload([["a.com", 3], ["a.com", 2]])
        self.assertEqual(table.counts, {"a.com": 5})

    def test_rejects_bad_payloads(self) -> None:
        for payload in ("a.com", 3, [["a.com"]], [["a.com", "3"]], {"a.com": -1}, {"a.com": True}, [[1, 2]]):
            with self.subTest(payload=payload):
                with self.assertRaises(SourceTableError):
                    SourceTable.from_payload(payload)

    def test_load_from_file(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "sources.json"
            path.write_text(json.dumps([["a.com", 4]]), encoding="utf-8")
            self.assertEqual(load_source_counts(path).counts, {"a.com": 4})

            broken = Path(tmpdir) / "broken.json"
            broken.write_text("{not json", encoding="utf-8")
            with self.assertRaises(SourceTableError):
                load_source_counts(broken)
            with self.assertRaises(SourceTableError):
                load_source_counts(Path(tmpdir) / "missing.json")

    def test_lookup_raw_then_normalized(self) -> None:
        table = SourceTable.from_payload({"https://www.raw.com/": 7, "example.com": 5})
        self.assertEqual(table.lookup("https://www.raw.com/"), 7)
        self.assertEqual(table.lookup("https://news.example.com/"), 5)
        self.assertEqual(table.lookup("unknown.org"), 0)
        self.assertEqual(table.lookup(None), 0)


class SourceFilterTests(unittest.TestCase):
    def test_no_table_accepts_everything(self) -> None:
        source_filter = SourceFilter()
        self.assertTrue(source_filter.accepts(None))
        self.assertTrue(source_filter.accepts("anything"))
        self.assertFalse(source_filter.active)

    def test_threshold_is_inclusive(self) -> None:
        table = SourceTable.from_payload({"example.com": 10, "rare.com": 2})
        source_filter = SourceFilter(table, min_frequency=10)
        self.assertTrue(source_filter.accepts("https://www.example.com/"))
        self.assertTrue(source_filter.accepts("example.com"))
        self.assertFalse(source_filter.accepts("rare.com"))
        self.assertFalse(source_filter.accepts(None))

    def test_zero_threshold_accepts_unknown_sources(self) -> None:
        source_filter = SourceFilter(SourceTable.from_payload({}), min_frequency=0)
        self.assertTrue(source_filter.accepts("unknown.com"))
        self.assertTrue(source_filter.accepts(None))


class SimplifySourceCountsTests(unittest.TestCase):
    def test_merges_and_sorts(self) -> None:
        table = SourceTable.from_payload(
            {
                "https://www.example.com/": 3,
                "news.example.com": 4,
                "b.org.np": 2,
                "x.b.org.np": 5,
                "tiny.com": 1,
            }
        )
        self.assertEqual(
            simplify_source_counts(table),
            [("b.org.np", 7), ("example.com", 7), ("tiny.com", 1)],
        )


if __name__ == "__main__":
    unittest.main()
