"""
Term and document frequency statistics for single-script corpora.

This package provides:
- tokenizers that split text into runs of one Unicode block
- a parallel fold-reduce aggregator producing token -> (tf, df)
- source-label normalization and source-based document filtering
- threshold filtering and JSON output of the merged statistics
"""

from .aggregate import (
    AggregationError,
    AggregationResult,
    Aggregator,
    AggregatorSettings,
    ErrorPolicy,
    FoldContext,
    FoldReport,
    aggregate,
)
from .counts import PartitionFolder, merge, merge_all
from .filters import apply_thresholds, order_by_frequency
from .ingest import ArchiveCorpus, DirectoryCorpus, Document, DocumentError, MemoryCorpus, open_corpus
from .sources import SourceFilter, SourceTable, normalize_source
from .tokenize import ScriptRange, make_tokenizer, parse_script

__all__ = [
    'AggregationError',
    'AggregationResult',
    'Aggregator',
    'AggregatorSettings',
    'ErrorPolicy',
    'FoldContext',
    'FoldReport',
    'aggregate',
    'PartitionFolder',
    'merge',
    'merge_all',
    'apply_thresholds',
    'order_by_frequency',
    'ArchiveCorpus',
    'DirectoryCorpus',
    'Document',
    'DocumentError',
    'MemoryCorpus',
    'open_corpus',
    'SourceFilter',
    'SourceTable',
    'normalize_source',
    'ScriptRange',
    'make_tokenizer',
    'parse_script',
]
