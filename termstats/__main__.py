"""Entry point for running the term statistics tools as a module.

Usage:
    python -m termstats count --input data/news --output tfdf.json
    python -m termstats simplify-sources --source-counts sources.json
    python -m termstats explode --roots roots.txt --suffixes suffixes.txt --filter words.txt
"""

from __future__ import annotations

import sys
from typing import List, Optional

from . import build, explode, simplify

COMMANDS = {
    "count": build.main,
    "simplify-sources": simplify.main,
    "explode": explode.main,
}


def main(argv: Optional[List[str]] = None) -> int:
    args = list(sys.argv[1:] if argv is None else argv)
    if not args or args[0] in {"-h", "--help"}:
        print(__doc__.strip())
        print(f"\nCommands: {', '.join(COMMANDS)}")
        return 0 if args else 2
    command = COMMANDS.get(args[0])
    if command is None:
        print(f"[error] unknown command {args[0]!r}; expected one of: {', '.join(COMMANDS)}", file=sys.stderr)
        return 2
    return command(args[1:])


if __name__ == "__main__":
    raise SystemExit(main())
