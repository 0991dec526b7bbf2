"""Threshold filtering and ordering of fully merged term statistics."""

from __future__ import annotations

from typing import List, Mapping, Optional, Tuple

from .counts import CountPair, TermCounts


def apply_thresholds(
    counts: Mapping[str, CountPair],
    *,
    min_tf: Optional[int] = None,
    min_df: Optional[int] = None,
) -> TermCounts:
    """
    Drop every token with ``tf < min_tf`` or ``df < min_df``.

    Must only be applied to the result of the complete merge: a token that is
    rare in each partition can still be frequent across the corpus.

    >>> apply_thresholds({"a": (5, 3)}, min_tf=4, min_df=2)
    {'a': (5, 3)}
    >>> apply_thresholds({"a": (5, 3)}, min_df=4)
    {}
    """
    if min_tf is None and min_df is None:
        return dict(counts)
    tf_floor = min_tf if min_tf is not None else 0
    df_floor = min_df if min_df is not None else 0
    return {
        token: (tf, df)
        for token, (tf, df) in counts.items()
        if tf >= tf_floor and df >= df_floor
    }


def order_by_frequency(counts: Mapping[str, CountPair]) -> List[Tuple[str, CountPair]]:
    """Entries by descending tf, then descending df, then token."""
    return sorted(counts.items(), key=lambda item: (-item[1][0], -item[1][1], item[0]))
