"""Source-label normalization and source-based document eligibility."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterator, List, Mapping, Optional, Tuple

SCHEME_PREFIXES = ("http://", "https://")


class SourceTableError(ValueError):
    """Raised when a source-frequency table cannot be loaded."""


def normalize_source(raw: str) -> str:
    """
    Reduce a source label (hostname or URL) to a short canonical key.

    >>> normalize_source("https://www.example.com:8080/")
    'example.com'
    >>> normalize_source("news.example.org.np")
    'example.org.np'
    """
    source = raw[:-1] if raw.endswith("/") else raw
    for prefix in SCHEME_PREFIXES:
        if source.startswith(prefix):
            source = source[len(prefix):]
            break

    parts = [segment.split(":", 1)[0] for segment in source.split(".")]
    parts = [segment for segment in parts if segment != "www"]

    # compound suffixes such as .org.np or .co.in keep one more label
    keep = 3 if len(parts) >= 2 and len(parts[-2]) <= 3 else 2
    return ".".join(parts[-keep:])


@dataclass
class SourceTable:
    """Occurrence count per source string, as supplied by the caller."""

    counts: Dict[str, int] = field(default_factory=dict)

    @classmethod
    def from_payload(cls, payload: Any) -> "SourceTable":
        """Accept ``{source: count}`` or ``[[source, count], ...]``."""
        if isinstance(payload, Mapping):
            items = list(payload.items())
        elif isinstance(payload, list):
            items = []
            for entry in payload:
                if not isinstance(entry, (list, tuple)) or len(entry) != 2:
                    raise SourceTableError(
                        f"Source table entries must be [source, count] pairs, got {entry!r}"
                    )
                items.append((entry[0], entry[1]))
        else:
            raise SourceTableError("Source table must be a JSON object or an array of pairs.")

        counts: Dict[str, int] = {}
        for source, count in items:
            if not isinstance(source, str):
                raise SourceTableError(f"Source must be a string, got {source!r}")
            if isinstance(count, bool) or not isinstance(count, int) or count < 0:
                raise SourceTableError(
                    f"Count for source {source!r} must be a non-negative integer, got {count!r}"
                )
            counts[source] = counts.get(source, 0) + count
        return cls(counts)

    def lookup(self, source: Optional[str]) -> int:
        """Count for ``source`` as given, falling back to its normalized key."""
        if not source:
            return 0
        if source in self.counts:
            return self.counts[source]
        return self.counts.get(normalize_source(source), 0)

    def __len__(self) -> int:
        return len(self.counts)

    def __iter__(self) -> Iterator[str]:
        return iter(self.counts)

    def items(self):
        return self.counts.items()


def load_source_counts(path: Path) -> SourceTable:
    try:
        with Path(path).open("r", encoding="utf-8") as handle:
            payload = json.load(handle)
    except FileNotFoundError as exc:
        raise SourceTableError(f"Source counts file not found: {path}") from exc
    except json.JSONDecodeError as exc:
        raise SourceTableError(f"Source counts file {path} is not valid JSON: {exc}") from exc
    return SourceTable.from_payload(payload)


@dataclass(frozen=True)
class SourceFilter:
    """Decides whether a document is eligible based on its source label.

    Without a table every document is eligible. With a table, the document's
    source is looked up as given and then as its normalized key, so the table
    may be keyed by either form.
    """

    table: Optional[SourceTable] = None
    min_frequency: int = 0

    def accepts(self, source: Optional[str]) -> bool:
        if self.table is None:
            return True
        return self.table.lookup(source) >= self.min_frequency

    @property
    def active(self) -> bool:
        return self.table is not None


def simplify_source_counts(table: SourceTable) -> List[Tuple[str, int]]:
    """Sum counts per normalized key, most frequent first."""
    totals: Dict[str, int] = {}
    for source, count in table.items():
        key = normalize_source(source)
        totals[key] = totals.get(key, 0) + count
    return sorted(totals.items(), key=lambda item: (-item[1], item[0]))
