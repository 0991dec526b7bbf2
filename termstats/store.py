"""
Persistence helpers for term statistics.

Results are written once, as complete JSON documents. Files are written
atomically by dumping to a temporary path and renaming into place; a missing
path (or ``-``) writes to stdout instead.
"""

from __future__ import annotations

import json
import os
import sys
from pathlib import Path
from typing import Dict, Iterable, Mapping, Optional, Sequence, Tuple

from .counts import CountPair
from .filters import order_by_frequency

OUTPUT_FORMATS = ("pairs", "split")


def _atomic_write(path: Path, content: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_name(path.name + ".tmp")
    try:
        tmp_path.write_text(content, encoding="utf-8")
        os.replace(tmp_path, path)
    except BaseException:
        if tmp_path.exists():
            tmp_path.unlink()
        raise


def _emit(path: Optional[Path], content: str) -> None:
    if path is None or str(path) == "-":
        sys.stdout.write(content)
        sys.stdout.flush()
        return
    _atomic_write(Path(path), content)


def _ordered(counts: Mapping[str, CountPair], sort_by_tf: bool) -> Sequence[Tuple[str, CountPair]]:
    if sort_by_tf:
        return order_by_frequency(counts)
    return sorted(counts.items())


def render_counts(
    counts: Mapping[str, CountPair],
    *,
    sort_by_tf: bool = True,
    output_format: str = "pairs",
    indent: Optional[int] = 2,
) -> str:
    """Serialize ``token -> (tf, df)`` as JSON text.

    ``pairs`` gives ``{token: [tf, df]}``; ``split`` gives two mappings under
    ``term-frequency`` and ``document-frequency``.
    """
    entries = _ordered(counts, sort_by_tf)
    if output_format == "pairs":
        payload: Dict[str, object] = {token: [tf, df] for token, (tf, df) in entries}
    elif output_format == "split":
        payload = {
            "term-frequency": {token: tf for token, (tf, _) in entries},
            "document-frequency": {token: df for token, (_, df) in entries},
        }
    else:
        raise ValueError(f"Unsupported output format: {output_format!r}")
    return json.dumps(payload, ensure_ascii=False, indent=indent) + "\n"


def write_counts(
    path: Optional[Path],
    counts: Mapping[str, CountPair],
    *,
    sort_by_tf: bool = True,
    output_format: str = "pairs",
) -> None:
    _emit(path, render_counts(counts, sort_by_tf=sort_by_tf, output_format=output_format))


def write_report(path: Path, report: Mapping[str, object]) -> None:
    _atomic_write(Path(path), json.dumps(report, indent=2, ensure_ascii=False) + "\n")


def write_source_counts(path: Optional[Path], entries: Iterable[Tuple[str, int]]) -> None:
    """Write ``{source_key: count}`` preserving the order of ``entries``."""
    payload = {source: int(count) for source, count in entries}
    _emit(path, json.dumps(payload, indent=2, ensure_ascii=False) + "\n")


def write_lines(path: Optional[Path], lines: Iterable[str]) -> int:
    collected = list(lines)
    _emit(path, "".join(f"{line}\n" for line in collected))
    return len(collected)
