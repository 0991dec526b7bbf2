"""Collapse a source-count table onto normalized source keys."""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

from .sources import SourceTableError, load_source_counts, simplify_source_counts
from .store import write_source_counts

logger = logging.getLogger("termstats.simplify")


def _parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="termstats simplify-sources",
        description="Normalize source names and add up their counts.",
    )
    parser.add_argument(
        "--source-counts",
        dest="source_counts_path",
        required=True,
        help="JSON object or array of [source, count] pairs.",
    )
    parser.add_argument(
        "--output",
        dest="output_path",
        default=None,
        help="Where to write the simplified table (default: stdout).",
    )
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = _parse_args(argv)
    if not logging.getLogger().hasHandlers():
        logging.basicConfig(level=logging.INFO, format="[%(levelname)s] %(message)s")

    try:
        table = load_source_counts(Path(args.source_counts_path))
    except SourceTableError as exc:
        print(f"[error] {exc}", file=sys.stderr)
        return 1

    entries = simplify_source_counts(table)
    output = Path(args.output_path) if args.output_path else None
    write_source_counts(output, entries)
    logger.info("Simplified %d sources into %d keys", len(table), len(entries))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
