from __future__ import annotations

import argparse
import dataclasses
import logging
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

from .aggregate import (
    BACKENDS,
    TOPOLOGIES,
    AggregationError,
    AggregationResult,
    Aggregator,
    ErrorPolicy,
    FoldContext,
)
from .config import ConfigError, CountConfig, LogsConfig, TermStatsConfig
from .counts import TermCounts
from .filters import apply_thresholds
from .ingest import Corpus, open_corpus
from .sources import SourceFilter, SourceTableError, load_source_counts
from .store import OUTPUT_FORMATS, write_counts, write_report
from .tokenize import NAMED_SCRIPTS, TOKENIZER_STRATEGIES, parse_script

logger = logging.getLogger("termstats.build")

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"


@dataclass(frozen=True)
class CountSummary:
    units: int = 0
    documents: int = 0
    rejected: int = 0
    skipped: int = 0
    terms: int = 0
    kept_terms: int = 0
    skipped_items: List[Dict[str, str]] = field(default_factory=list)

    def as_dict(self) -> Dict[str, object]:
        return {
            "units": self.units,
            "documents": self.documents,
            "rejected": self.rejected,
            "skipped": self.skipped,
            "terms": self.terms,
            "kept_terms": self.kept_terms,
            "skipped_items": list(self.skipped_items),
        }


class TermStatsBuilder:
    """Wires source filtering, aggregation, post-filtering and output together."""

    def __init__(self, config: CountConfig) -> None:
        self.config = config

    def fold_context(self) -> FoldContext:
        cfg = self.config
        table = None
        if cfg.source_counts_path:
            table = load_source_counts(Path(cfg.source_counts_path))
            logger.info(
                "Loaded %d source counts from %s (min_source_frequency=%d)",
                len(table),
                cfg.source_counts_path,
                cfg.min_source_frequency,
            )
        return FoldContext(
            tokenizer=cfg.tokenizer,
            script=parse_script(cfg.script),
            source_filter=SourceFilter(table, cfg.min_source_frequency),
            error_policy=ErrorPolicy.parse(cfg.error_policy),
            intern_tokens=cfg.intern_tokens,
            text_field=cfg.text_field,
            source_field=cfg.source_field,
        )

    def aggregate(self, corpus: Corpus) -> AggregationResult:
        aggregator = Aggregator(self.fold_context(), self.config.aggregator_settings())
        return aggregator.run(corpus)

    def run(self, corpus: Optional[Corpus] = None) -> tuple[TermCounts, CountSummary]:
        cfg = self.config
        if corpus is None:
            if not cfg.input_path:
                raise ValueError("No input path configured (use --input or termstats.input_path)")
            corpus = open_corpus(Path(cfg.input_path))

        result = self.aggregate(corpus)
        # thresholds only make sense on the complete merge
        kept = apply_thresholds(
            result.counts,
            min_tf=cfg.min_term_frequency,
            min_df=cfg.min_document_frequency,
        )
        report = result.report
        summary = CountSummary(
            units=report.units,
            documents=report.documents,
            rejected=report.rejected,
            skipped=len(report.skipped),
            terms=len(result.counts),
            kept_terms=len(kept),
            skipped_items=[
                {"location": item.location, "reason": item.reason} for item in report.skipped
            ],
        )
        if len(kept) != len(result.counts):
            logger.info(
                "Threshold filter kept %d of %d terms (min_tf=%s, min_df=%s)",
                len(kept),
                len(result.counts),
                cfg.min_term_frequency,
                cfg.min_document_frequency,
            )

        output = Path(cfg.output_path) if cfg.output_path else None
        write_counts(output, kept, sort_by_tf=cfg.sort_by_tf, output_format=cfg.output_format)
        if cfg.report_path:
            write_report(Path(cfg.report_path), summary.as_dict())
        return kept, summary


def count_terms(
    input_path: Path,
    output_path: Optional[Path] = None,
    **options: object,
) -> Dict[str, object]:
    """Programmatic entry point; ``options`` are ``CountConfig`` fields."""
    if not Path(input_path).exists():
        raise FileNotFoundError(f"Input path does not exist: {input_path}")
    config = CountConfig(
        input_path=str(input_path),
        output_path=str(output_path) if output_path is not None else None,
        **options,
    )
    _, summary = TermStatsBuilder(config).run()
    return summary.as_dict()


def _attach_file_logging(log_path: Path, level: str) -> None:
    root = logging.getLogger()
    for handler in root.handlers:
        if isinstance(handler, logging.FileHandler) and Path(handler.baseFilename) == log_path:
            return

    log_path.parent.mkdir(parents=True, exist_ok=True)
    file_handler = logging.FileHandler(log_path, encoding="utf-8")
    file_handler.setLevel(getattr(logging, level.upper(), logging.INFO))
    file_handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=LOG_DATEFMT))
    root.addHandler(file_handler)


def configure_logging(logs: LogsConfig) -> None:
    level = getattr(logging, logs.log_level.upper(), logging.INFO)
    if not logging.getLogger().hasHandlers():
        logging.basicConfig(level=level, format=LOG_FORMAT, datefmt=LOG_DATEFMT, stream=sys.stderr)
    logging.getLogger("termstats").setLevel(level)
    if logs.log_file:
        _attach_file_logging(Path(logs.log_file).resolve(), logs.log_level)


def _parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="termstats count",
        description="Compute term and document frequencies for a single-script corpus.",
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Path to a YAML configuration file (optional).",
    )
    parser.add_argument(
        "--input",
        dest="input_path",
        default=None,
        help="Directory of text/JSON files or a tar archive (defaults to termstats.input_path).",
    )
    parser.add_argument(
        "--output",
        dest="output_path",
        default=None,
        help="Where to write the JSON result; '-' or omitted writes to stdout.",
    )
    parser.add_argument("--report", dest="report_path", default=None, help="Write a JSON run report here.")
    parser.add_argument(
        "--source-counts",
        dest="source_counts_path",
        default=None,
        help="JSON object or array of [source, count] pairs used to filter documents by source.",
    )
    parser.add_argument(
        "--min-source-frequency",
        dest="min_source_frequency",
        type=int,
        default=None,
        help="Minimum count a document's source needs in the source table.",
    )
    parser.add_argument("--min-term-frequency", "--min-tf", dest="min_term_frequency", type=int, default=None)
    parser.add_argument("--min-document-frequency", "--min-df", dest="min_document_frequency", type=int, default=None)
    parser.add_argument("--workers", type=int, default=None, help="Worker count (default: CPU count).")
    parser.add_argument("--partitions", type=int, default=None, help="Partition count for the fanout topology.")
    parser.add_argument("--topology", choices=TOPOLOGIES, default=None)
    parser.add_argument("--backend", choices=sorted(BACKENDS), default=None)
    parser.add_argument("--queue-size", dest="queue_size", type=int, default=None)
    parser.add_argument(
        "--error-policy",
        dest="error_policy",
        choices=[policy.value for policy in ErrorPolicy],
        default=None,
        help="fail_fast aborts on the first unreadable unit; skip logs it and continues.",
    )
    parser.add_argument(
        "--intern-tokens",
        dest="intern_tokens",
        action="store_true",
        default=None,
        help="Intern tokens per partition while folding.",
    )
    parser.add_argument(
        "--script",
        default=None,
        help=f"Unicode block name ({', '.join(sorted(NAMED_SCRIPTS))}) or a range such as 0900-097F.",
    )
    parser.add_argument("--tokenizer", choices=sorted(TOKENIZER_STRATEGIES), default=None)
    parser.add_argument("--format", dest="output_format", choices=OUTPUT_FORMATS, default=None)
    parser.add_argument(
        "--no-sort",
        dest="sort_by_tf",
        action="store_false",
        default=None,
        help="Order output by token instead of descending tf.",
    )
    parser.add_argument("--text-field", dest="text_field", default=None)
    parser.add_argument("--source-field", dest="source_field", default=None)
    return parser.parse_args(argv)


OVERRIDABLE = (
    "input_path",
    "output_path",
    "report_path",
    "source_counts_path",
    "min_source_frequency",
    "min_term_frequency",
    "min_document_frequency",
    "workers",
    "partitions",
    "topology",
    "backend",
    "queue_size",
    "error_policy",
    "intern_tokens",
    "script",
    "tokenizer",
    "output_format",
    "sort_by_tf",
    "text_field",
    "source_field",
)


def main(argv: Optional[List[str]] = None) -> int:
    args = _parse_args(argv)

    try:
        app_config = TermStatsConfig.from_yaml(args.config)
        overrides = {
            name: getattr(args, name) for name in OVERRIDABLE if getattr(args, name) is not None
        }
        count_cfg = dataclasses.replace(app_config.count, **overrides)
    except ConfigError as exc:
        print(f"[error] {exc}", file=sys.stderr)
        return 1
    except ValueError as exc:
        print(f"[error] {exc}", file=sys.stderr)
        return 1

    configure_logging(app_config.logs)

    try:
        _, summary = TermStatsBuilder(count_cfg).run()
    except (AggregationError, SourceTableError, FileNotFoundError, ValueError) as exc:
        print(f"[error] {exc}", file=sys.stderr)
        return 1

    logger.info(
        "Count finished: documents=%d rejected=%d skipped=%d terms=%d kept=%d",
        summary.documents,
        summary.rejected,
        summary.skipped,
        summary.terms,
        summary.kept_terms,
    )
    if summary.skipped:
        print(f"[warn] skipped {summary.skipped} unreadable item(s)", file=sys.stderr)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
