import io
import json
import shutil
import tarfile
import tempfile
import unittest
from pathlib import Path
from typing import Dict

import zstandard as zstd

from termstats.ingest import (
    ArchiveCorpus,
    ArchiveEntry,
    DirectoryCorpus,
    Document,
    DocumentError,
    FileListCorpus,
    MemoryCorpus,
    UnitFailure,
    archive_kind,
    decode_payload,
    load_unit,
    open_corpus,
)


def _tar_bytes(entries: Dict[str, bytes]) -> bytes:
    buffer = io.BytesIO()
    with tarfile.open(fileobj=buffer, mode="w") as archive:
        for name, data in entries.items():
            info = tarfile.TarInfo(name)
            info.size = len(data)
            archive.addfile(info, io.BytesIO(data))
    return buffer.getvalue()


def write_archive(path: Path, entries: Dict[str, bytes]) -> Path:
    """Write a tar archive compressed according to the suffix of ``path``."""
    if path.name.endswith((".tar.zst", ".tzst")):
        path.write_bytes(zstd.ZstdCompressor().compress(_tar_bytes(entries)))
        return path
    mode = "w:gz" if path.name.endswith((".tgz", ".tar.gz")) else "w"
    with tarfile.open(path, mode=mode) as archive:
        for name, data in entries.items():
            info = tarfile.TarInfo(name)
            info.size = len(data)
            archive.addfile(info, io.BytesIO(data))
    return path


NEWS = [
    {"newsId": "1", "newsSource": "https://www.example.com/", "newsText": "नमस्ते दुनिया"},
    {"newsId": "2", "newsSource": "news.example.org.np", "newsText": "दुनिया"},
]


class DecodePayloadTests(unittest.TestCase):
    def test_plain_text_is_one_document(self) -> None:
        docs = decode_payload("नमस्ते".encode("utf-8"), "a.txt")
        self.assertEqual(docs, [Document(text="नमस्ते", source=None, location="a.txt")])

    def test_json_array(self) -> None:
        docs = decode_payload(json.dumps(NEWS).encode("utf-8"), "batch.json")
        self.assertEqual([d.text for d in docs], ["नमस्ते दुनिया", "दुनिया"])
        self.assertEqual([d.source for d in docs], ["https://www.example.com/", "news.example.org.np"])
        self.assertEqual(docs[1].location, "batch.json#1")

    def test_custom_fields_and_missing_source(self) -> None:
        payload = json.dumps([{"body": "क"}]).encode("utf-8")
        docs = decode_payload(payload, "x.JSON", text_field="body", source_field="host")
        self.assertEqual(docs, [Document(text="क", source=None, location="x.JSON#0")])

    def test_malformed_payloads(self) -> None:
        cases = {
            "bad.json": b"[{",
            "object.json": b'{"newsText": "x"}',
            "scalar.json": b"[1]",
            "missing.json": b'[{"newsSource": "a.com"}]',
            "source.json": b'[{"newsText": "x", "newsSource": 3}]',
            "latin.txt": b"\xff\xfe\xfa",
        }
        for name, data in cases.items():
            with self.subTest(name=name):
                with self.assertRaises(DocumentError) as ctx:
                    decode_payload(data, name)
                self.assertEqual(ctx.exception.location, name)
                self.assertIn(name, str(ctx.exception))


class LoadUnitTests(unittest.TestCase):
    def test_unit_kinds(self) -> None:
        doc = Document(text="क", location="m#0")
        self.assertEqual(load_unit(doc), [doc])
        self.assertEqual(load_unit(ArchiveEntry("e.txt", "ख".encode("utf-8")))[0].text, "ख")
        with self.assertRaises(DocumentError) as ctx:
            load_unit(UnitFailure("broken", "unreadable entry"))
        self.assertEqual(ctx.exception.reason, "unreadable entry")

    def test_missing_file(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            with self.assertRaises(DocumentError):
                load_unit(Path(tmpdir) / "gone.txt")

    def test_document_error_pickles(self) -> None:
        import pickle

        error = pickle.loads(pickle.dumps(DocumentError("a.json", "malformed JSON")))
        self.assertEqual((error.location, error.reason), ("a.json", "malformed JSON"))


class CorpusTests(unittest.TestCase):
    def test_directory_walk_is_sorted_and_skips_hidden(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            root = Path(tmpdir)
            (root / "b").mkdir()
            (root / ".git").mkdir()
            (root / "b" / "2.txt").write_text("ख", encoding="utf-8")
            (root / "a.txt").write_text("क", encoding="utf-8")
            (root / ".hidden.txt").write_text("ग", encoding="utf-8")
            (root / ".git" / "config").write_text("घ", encoding="utf-8")
            (root / "c.json").write_text(json.dumps(NEWS), encoding="utf-8")

            units = list(DirectoryCorpus(root).iter_units())
            self.assertEqual(
                [p.relative_to(root).as_posix() for p in units],
                ["a.txt", "c.json", "b/2.txt"],
            )
            self.assertIsInstance(open_corpus(root), DirectoryCorpus)

    def test_unlistable_directory_becomes_failed_unit(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            root = Path(tmpdir)
            (root / "a.txt").write_text("क", encoding="utf-8")
            (root / "sub").mkdir()
            (root / "sub" / "b.txt").write_text("ख", encoding="utf-8")

            units = DirectoryCorpus(root).iter_units()
            self.assertEqual(next(units), root / "a.txt")
            # the walk lists "sub" only after the root files have been handed out
            shutil.rmtree(root / "sub")
            rest = list(units)

            self.assertEqual(len(rest), 1)
            self.assertIsInstance(rest[0], UnitFailure)
            self.assertEqual(rest[0].location, str(root / "sub"))
            self.assertIn("unreadable directory", rest[0].reason)
            with self.assertRaises(DocumentError):
                load_unit(rest[0])

    def test_missing_root_becomes_failed_unit(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            missing = Path(tmpdir) / "gone"
            units = list(DirectoryCorpus(missing).iter_units())
        self.assertEqual(len(units), 1)
        self.assertEqual(units[0].location, str(missing))

    def test_memory_corpus_assigns_locations(self) -> None:
        corpus = MemoryCorpus(["क", Document(text="ख", source="a.com")])
        units = list(corpus.iter_units())
        self.assertEqual([u.location for u in units], ["memory#0", "memory#1"])
        self.assertEqual(units[1].source, "a.com")

    def test_open_corpus_single_file_and_missing(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "one.txt"
            path.write_text("क", encoding="utf-8")
            corpus = open_corpus(path)
            self.assertIsInstance(corpus, FileListCorpus)
            self.assertEqual(list(corpus.iter_units()), [path])
            with self.assertRaises(FileNotFoundError):
                open_corpus(Path(tmpdir) / "nope")

    def test_archive_kinds(self) -> None:
        self.assertEqual(archive_kind(Path("x.tgz")), "r|gz")
        self.assertEqual(archive_kind(Path("x.TAR.GZ")), "r|gz")
        self.assertEqual(archive_kind(Path("x.tar")), "r|")
        self.assertEqual(archive_kind(Path("x.tar.zst")), "zst")
        self.assertIsNone(archive_kind(Path("x.json")))

    def test_gzip_and_zstd_archives(self) -> None:
        entries = {
            "news/a.txt": "नमस्ते".encode("utf-8"),
            "news/b.json": json.dumps(NEWS).encode("utf-8"),
            "news/.DS_Store": b"\x00",
        }
        with tempfile.TemporaryDirectory() as tmpdir:
            for name in ("corpus.tgz", "corpus.tar.zst", "corpus.tar"):
                with self.subTest(archive=name):
                    path = write_archive(Path(tmpdir) / name, entries)
                    corpus = open_corpus(path)
                    self.assertIsInstance(corpus, ArchiveCorpus)
                    self.assertFalse(corpus.materializable)
                    units = list(corpus.iter_units())
                    self.assertEqual([u.name for u in units], ["news/a.txt", "news/b.json"])
                    docs = [doc for unit in units for doc in load_unit(unit)]
                    self.assertEqual(len(docs), 3)

    def test_corrupt_archive_raises_document_error(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "broken.tgz"
            path.write_bytes(b"definitely not gzip")
            with self.assertRaises(DocumentError):
                list(ArchiveCorpus(path).iter_units())


if __name__ == "__main__":
    unittest.main()
