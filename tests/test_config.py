import tempfile
import unittest
from pathlib import Path

from termstats.config import (
    ConfigError,
    CountConfig,
    LogsConfig,
    TermStatsConfig,
    get_section,
    load_yaml_config,
)


class LoadYamlConfigTests(unittest.TestCase):
    def test_none_is_empty(self) -> None:
        self.assertEqual(load_yaml_config(None), {})

    def test_missing_and_invalid_files(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            tmp = Path(tmpdir)
            with self.assertRaises(ConfigError):
                load_yaml_config(str(tmp / "missing.yaml"))

            broken = tmp / "broken.yaml"
            broken.write_text("termstats: [unclosed\n", encoding="utf-8")
            with self.assertRaises(ConfigError):
                load_yaml_config(str(broken))

            listing = tmp / "list.yaml"
            listing.write_text("- a\n- b\n", encoding="utf-8")
            with self.assertRaises(ConfigError):
                load_yaml_config(str(listing))

    def test_get_section(self) -> None:
        self.assertEqual(get_section({"logs": None}, "logs"), {})
        self.assertEqual(get_section({}, "logs"), {})
        with self.assertRaises(ConfigError):
            get_section({"logs": "INFO"}, "logs")


class TermStatsConfigTests(unittest.TestCase):
    def test_from_yaml_resolves_workspace_paths(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            tmp = Path(tmpdir)
            config_path = tmp / "config.yaml"
            config_path.write_text(
                "\n".join(
                    [
                        f"workspace: {tmp}",
                        "termstats:",
                        "  input_path: data/news",
                        "  output_path: out/tfdf.json",
                        "  source_counts_path: /abs/sources.json",
                        "  min_source_frequency: 100",
                        "  min_term_frequency: 2",
                        "  workers: 3",
                        "  topology: stream",
                        "  backend: thread",
                        "  error_policy: skip",
                        "  script: 0900-097F",
                        "logs:",
                        "  log_level: DEBUG",
                        "  log_file: logs/termstats.log",
                    ]
                )
                + "\n",
                encoding="utf-8",
            )
            config = TermStatsConfig.from_yaml(str(config_path))

        count = config.count
        self.assertEqual(count.input_path, str(tmp / "data/news"))
        self.assertEqual(count.output_path, str(tmp / "out/tfdf.json"))
        self.assertEqual(count.source_counts_path, "/abs/sources.json")
        self.assertEqual(count.min_source_frequency, 100)
        self.assertEqual(count.min_term_frequency, 2)
        self.assertIsNone(count.min_document_frequency)
        self.assertEqual(count.error_policy, "skip")
        settings = count.aggregator_settings()
        self.assertEqual((settings.workers, settings.topology, settings.backend), (3, "stream", "thread"))
        self.assertEqual(config.logs.log_level, "DEBUG")
        self.assertEqual(config.logs.log_file, str(tmp / "logs/termstats.log"))

    def test_defaults_without_file(self) -> None:
        config = TermStatsConfig.from_yaml(None)
        self.assertEqual(config.count.output_format, "pairs")
        self.assertEqual(config.count.error_policy, "fail_fast")
        self.assertTrue(config.count.sort_by_tf)
        self.assertEqual(config.logs.log_level, "INFO")

    def test_invalid_values_raise_config_error(self) -> None:
        bad_sections = [
            {"min_source_frequency": -1},
            {"min_term_frequency": "two"},
            {"workers": 0},
            {"topology": "ring"},
            {"backend": "gpu"},
            {"error_policy": "retry"},
            {"output_format": "csv"},
            {"script": "klingon"},
            {"tokenizer": "bpe"},
            {"unknown_option": 1},
        ]
        for section in bad_sections:
            with self.subTest(section=section):
                with self.assertRaises(ConfigError):
                    TermStatsConfig.from_app_config({"termstats": section})

    def test_invalid_log_level(self) -> None:
        with self.assertRaises(ConfigError):
            TermStatsConfig.from_app_config({"logs": {"log_level": "LOUD"}})
        with self.assertRaises(ValueError):
            LogsConfig(log_level="LOUD")

    def test_count_config_validates_directly(self) -> None:
        with self.assertRaises(ValueError):
            CountConfig(min_document_frequency=-3)
        self.assertEqual(CountConfig(error_policy="Fail-Fast").error_policy, "fail_fast")

    def test_switches_must_be_booleans(self) -> None:
        for section in ({"intern_tokens": "no"}, {"sort_by_tf": "false"}, {"intern_tokens": 1}):
            with self.subTest(section=section):
                with self.assertRaises(ConfigError):
                    TermStatsConfig.from_app_config({"termstats": section})
        # unquoted YAML booleans arrive as real bools
        with tempfile.TemporaryDirectory() as tmpdir:
            config_path = Path(tmpdir) / "config.yaml"
            config_path.write_text("termstats:\n  intern_tokens: no\n  sort_by_tf: yes\n", encoding="utf-8")
            count = TermStatsConfig.from_yaml(str(config_path)).count
        self.assertIs(count.intern_tokens, False)
        self.assertIs(count.sort_by_tf, True)


if __name__ == "__main__":
    unittest.main()
