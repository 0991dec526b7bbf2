"""
Generate inflected word candidates and keep those seen in a vocabulary.

Every root is combined with every suffix; a candidate is emitted when it is
present in the filter word list (typically the token list of a tf/df run).
An empty line in the suffix file stands for the bare root.
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Iterable, Iterator, List, Optional, Set

from .store import write_lines

logger = logging.getLogger("termstats.explode")


def read_lines(path: Path, *, keep_empty: bool = False) -> List[str]:
    text = Path(path).read_text(encoding="utf-8")
    lines = [line.rstrip("\r") for line in text.splitlines()]
    if keep_empty:
        return lines
    return [line for line in lines if line.strip()]


def explode(roots: Iterable[str], suffixes: Iterable[str], vocabulary: Set[str]) -> Iterator[str]:
    """Yield ``root + suffix`` words found in ``vocabulary``, each once, root-major."""
    suffix_list = list(dict.fromkeys(suffixes))
    seen: Set[str] = set()
    for root in roots:
        for suffix in suffix_list:
            word = root + suffix
            if word in vocabulary and word not in seen:
                seen.add(word)
                yield word


def _parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="termstats explode",
        description="Combine roots with suffixes and keep the words present in a filter list.",
    )
    parser.add_argument("--roots", required=True, help="Newline-separated root words.")
    parser.add_argument("--suffixes", required=True, help="Newline-separated suffixes.")
    parser.add_argument("--filter", dest="filter_path", required=True, help="Newline-separated known words.")
    parser.add_argument("--output", dest="output_path", default=None, help="Output file (default: stdout).")
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = _parse_args(argv)
    if not logging.getLogger().hasHandlers():
        logging.basicConfig(level=logging.INFO, format="[%(levelname)s] %(message)s")

    try:
        roots = read_lines(Path(args.roots))
        suffixes = read_lines(Path(args.suffixes), keep_empty=True)
        vocabulary = set(read_lines(Path(args.filter_path)))
    except OSError as exc:
        print(f"[error] {exc}", file=sys.stderr)
        return 1

    output = Path(args.output_path) if args.output_path else None
    written = write_lines(output, explode(roots, suffixes, vocabulary))
    logger.info(
        "Generated %d matching words from %d roots x %d suffixes", written, len(roots), len(suffixes)
    )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
