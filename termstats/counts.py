"""
Count-pair maps and the associative merge used by the aggregator.

A ``TermCounts`` maps each token to ``(tf, df)`` for some scope (a single
document, a partition or the whole corpus). Merging two maps built from
disjoint document sets gives the map of their union, independent of how the
documents were partitioned or in which order partial maps are combined.
"""

from __future__ import annotations

from collections import Counter
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

from .tokenize import Tokenizer, count_tokens, document_contribution

CountPair = Tuple[int, int]
TermCounts = Dict[str, CountPair]


def merge_into(target: TermCounts, other: Mapping[str, CountPair]) -> TermCounts:
    """Add ``other`` into ``target`` in place and return ``target``.

    Only call this on a map the caller owns exclusively.
    """
    for token, (tf, df) in other.items():
        left_tf, left_df = target.get(token, (0, 0))
        target[token] = (left_tf + tf, left_df + df)
    return target


def merge(left: Mapping[str, CountPair], right: Mapping[str, CountPair]) -> TermCounts:
    """Combine two count maps into a new one; neither input is modified."""
    # iterate over the smaller side
    if len(left) < len(right):
        left, right = right, left
    return merge_into(dict(left), right)


def merge_all(maps: Iterable[Mapping[str, CountPair]]) -> TermCounts:
    merged: TermCounts = {}
    for partial in maps:
        merge_into(merged, partial)
    return merged


class SymbolTable:
    """Interns tokens to small integers for the lifetime of one partition."""

    def __init__(self) -> None:
        self._ids: Dict[str, int] = {}
        self._tokens: List[str] = []

    def intern(self, token: str) -> int:
        symbol = self._ids.get(token)
        if symbol is None:
            symbol = len(self._tokens)
            self._ids[token] = symbol
            self._tokens.append(token)
        return symbol

    def resolve(self, symbol: int) -> str:
        return self._tokens[symbol]

    def __len__(self) -> int:
        return len(self._tokens)


class PartitionFolder:
    """Folds the documents of one partition into a private count map.

    With ``intern_tokens`` enabled the local map is keyed by symbols from a
    ``SymbolTable`` owned by this folder; ``finish`` resolves them back to
    strings and drops the table, so symbols never leave the partition.
    """

    def __init__(self, tokenizer: Tokenizer, *, intern_tokens: bool = False) -> None:
        self.tokenizer = tokenizer
        self.intern_tokens = intern_tokens
        self.documents = 0
        self._symbols: Optional[SymbolTable] = SymbolTable() if intern_tokens else None
        self._local: Dict[object, List[int]] = {}
        self._finished = False

    def add_text(self, text: str) -> None:
        if self._finished:
            raise RuntimeError("PartitionFolder already finished")

        occurrences: Mapping[object, int]
        if self._symbols is not None:
            occurrences = Counter(map(self._symbols.intern, self.tokenizer.iter_tokens(text)))
        else:
            occurrences = count_tokens(text, self.tokenizer)

        local = self._local
        for key, (tf, df) in document_contribution(occurrences).items():
            slot = local.get(key)
            if slot is None:
                local[key] = [tf, df]
            else:
                slot[0] += tf
                slot[1] += df
        self.documents += 1

    def finish(self) -> TermCounts:
        """Return the partition's contribution keyed by token strings."""
        if self._finished:
            raise RuntimeError("PartitionFolder already finished")
        self._finished = True

        local, self._local = self._local, {}
        if self._symbols is not None:
            resolve = self._symbols.resolve
            result = {resolve(symbol): (tf, df) for symbol, (tf, df) in local.items()}
            self._symbols = None
            return result
        return {token: (tf, df) for token, (tf, df) in local.items()}

    @property
    def vocabulary_size(self) -> int:
        return len(self._local)


def fold_texts(texts: Iterable[str], tokenizer: Tokenizer, *, intern_tokens: bool = False) -> TermCounts:
    """Fold ``texts`` sequentially as a single scope."""
    folder = PartitionFolder(tokenizer, intern_tokens=intern_tokens)
    for text in texts:
        folder.add_text(text)
    return folder.finish()
