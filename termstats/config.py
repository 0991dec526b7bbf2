"""Configuration loading for the term statistics tools.

Settings live under a ``termstats`` section of a YAML file, with logging
options under ``logs``::

    workspace: ./workspace
    termstats:
      input_path: data/news
      source_counts_path: data/source_counts.json
      min_source_frequency: 100
      min_term_frequency: 2
      error_policy: skip
    logs:
      log_level: INFO
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from .aggregate import (
    DEFAULT_QUEUE_SIZE,
    TOPOLOGIES,
    AggregatorSettings,
    ErrorPolicy,
    default_workers,
)
from .ingest import DEFAULT_SOURCE_FIELD, DEFAULT_TEXT_FIELD
from .store import OUTPUT_FORMATS
from .tokenize import DEFAULT_SCRIPT, DEFAULT_STRATEGY, TokenizerError, make_tokenizer


class ConfigError(Exception):
    """Raised when the configuration file or one of its values is invalid."""


def load_yaml_config(path: Optional[str]) -> Dict[str, Any]:
    """Load a YAML file into a dictionary; ``None`` yields an empty config."""
    if path is None:
        return {}
    config_path = Path(path).expanduser()
    if not config_path.exists():
        raise ConfigError(f"Configuration file not found: {config_path}")

    try:
        with config_path.open("r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle) or {}
    except yaml.YAMLError as exc:
        raise ConfigError(f"Configuration file {config_path} is not valid YAML: {exc}") from exc

    if not isinstance(data, dict):
        raise ConfigError("Configuration root must be a mapping.")
    return data


def get_section(config: Dict[str, Any], section: str) -> Dict[str, Any]:
    value = config.get(section, {})
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ConfigError(f"Section '{section}' must be a mapping.")
    return value


def _resolve_path(workspace: Optional[str], value: Optional[str]) -> Optional[str]:
    if value is None or value == "":
        return None
    if value == "-":
        return value
    candidate = Path(value).expanduser()
    if candidate.is_absolute() or not workspace:
        return str(candidate)
    return str(Path(workspace).expanduser() / candidate)


def _optional_int(section: Dict[str, Any], key: str) -> Optional[int]:
    value = section.get(key)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigError(f"termstats.{key} must be an integer, got {value!r}")
    return value


@dataclass
class LogsConfig:
    log_level: str = "INFO"
    log_file: Optional[str] = None

    def __post_init__(self) -> None:
        if self.log_level.upper() not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"logs.log_level is not a logging level: {self.log_level!r}")


@dataclass
class CountConfig:
    input_path: Optional[str] = None
    output_path: Optional[str] = None
    report_path: Optional[str] = None
    source_counts_path: Optional[str] = None
    min_source_frequency: int = 0
    min_term_frequency: Optional[int] = None
    min_document_frequency: Optional[int] = None
    output_format: str = "pairs"
    sort_by_tf: bool = True
    workers: int = field(default_factory=default_workers)
    partitions: Optional[int] = None
    topology: str = "auto"
    backend: str = "process"
    queue_size: int = DEFAULT_QUEUE_SIZE
    error_policy: str = ErrorPolicy.FAIL_FAST.value
    intern_tokens: bool = False
    script: str = DEFAULT_SCRIPT
    tokenizer: str = DEFAULT_STRATEGY
    text_field: str = DEFAULT_TEXT_FIELD
    source_field: str = DEFAULT_SOURCE_FIELD

    def __post_init__(self) -> None:
        if self.min_source_frequency < 0:
            raise ValueError("termstats.min_source_frequency must be >= 0")
        if self.min_term_frequency is not None and self.min_term_frequency < 0:
            raise ValueError("termstats.min_term_frequency must be >= 0")
        if self.min_document_frequency is not None and self.min_document_frequency < 0:
            raise ValueError("termstats.min_document_frequency must be >= 0")
        if self.output_format not in OUTPUT_FORMATS:
            raise ValueError(f"termstats.output_format must be one of: {', '.join(OUTPUT_FORMATS)}")
        if self.topology not in TOPOLOGIES:
            raise ValueError(f"termstats.topology must be one of: {', '.join(TOPOLOGIES)}")
        for name in ("sort_by_tf", "intern_tokens"):
            value = getattr(self, name)
            if not isinstance(value, bool):
                raise ValueError(f"termstats.{name} must be true or false, got {value!r}")
        self.error_policy = ErrorPolicy.parse(self.error_policy).value
        self.aggregator_settings()
        # tokenizer rule is fixed for the run; validate it before any work starts
        try:
            make_tokenizer(self.tokenizer, self.script)
        except TokenizerError as exc:
            raise ValueError(f"termstats tokenizer rule is invalid: {exc}") from exc

    def aggregator_settings(self) -> AggregatorSettings:
        return AggregatorSettings(
            workers=self.workers,
            partitions=self.partitions,
            topology=self.topology,
            backend=self.backend,
            queue_size=self.queue_size,
        )


@dataclass
class TermStatsConfig:
    count: CountConfig = field(default_factory=CountConfig)
    logs: LogsConfig = field(default_factory=LogsConfig)

    @classmethod
    def from_app_config(cls, config: Dict[str, Any]) -> "TermStatsConfig":
        workspace = config.get("workspace")
        section = get_section(config, "termstats")
        logs_section = get_section(config, "logs")

        known = set(CountConfig.__dataclass_fields__)
        unknown = sorted(set(section) - known)
        if unknown:
            raise ConfigError(f"Unknown termstats options: {', '.join(unknown)}")

        values = dict(section)
        for key in ("input_path", "output_path", "report_path", "source_counts_path"):
            values[key] = _resolve_path(workspace, values.get(key))
        for key in ("min_term_frequency", "min_document_frequency", "partitions"):
            values[key] = _optional_int(section, key)
        for key in ("min_source_frequency", "workers", "queue_size"):
            if key in section:
                values[key] = _optional_int(section, key)
                if values[key] is None:
                    del values[key]

        try:
            count_cfg = CountConfig(**values)
            logs_cfg = LogsConfig(
                log_level=str(logs_section.get("log_level", "INFO")),
                log_file=_resolve_path(workspace, logs_section.get("log_file")),
            )
        except (TypeError, ValueError) as exc:
            raise ConfigError(str(exc)) from exc
        return cls(count=count_cfg, logs=logs_cfg)

    @classmethod
    def from_yaml(cls, path: Optional[str]) -> "TermStatsConfig":
        return cls.from_app_config(load_yaml_config(path))
