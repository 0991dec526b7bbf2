"""
Tokenization helpers for the term statistics pipeline.

A token is a maximal run of codepoints that all fall inside one Unicode block
(Devanagari by default). Every codepoint outside the block is a separator and
is dropped. Two interchangeable strategies are provided so callers can pick
whichever is faster for their corpus; both must yield identical sequences.

Example:
>>> tokenizer = make_tokenizer("scan", "devanagari")
>>> list(tokenizer.tokens("नमस्ते, दुनिया!"))
['नमस्ते', 'दुनिया']
"""

from __future__ import annotations

import re
from collections import Counter
from dataclasses import dataclass
from typing import Callable, Dict, Hashable, Iterator, Mapping, Tuple, Union

MAX_CODEPOINT = 0x10FFFF


class TokenizerError(ValueError):
    """Raised when a tokenizer rule or strategy is malformed."""


@dataclass(frozen=True)
class ScriptRange:
    """Inclusive codepoint range describing the script a token may contain."""

    start: int
    end: int
    name: str = ""

    def __post_init__(self) -> None:
        if not (0 <= self.start <= MAX_CODEPOINT and 0 <= self.end <= MAX_CODEPOINT):
            raise TokenizerError(
                f"Script range {self.start:#x}..{self.end:#x} is outside the Unicode range"
            )
        if self.start > self.end:
            raise TokenizerError(
                f"Script range start {self.start:#x} is greater than end {self.end:#x}"
            )

    def contains(self, ch: str) -> bool:
        return self.start <= ord(ch) <= self.end

    def describe(self) -> str:
        bounds = f"U+{self.start:04X}..U+{self.end:04X}"
        return f"{self.name} ({bounds})" if self.name else bounds


NAMED_SCRIPTS: Dict[str, Tuple[int, int]] = {
    "greek": (0x0370, 0x03FF),
    "cyrillic": (0x0400, 0x04FF),
    "armenian": (0x0530, 0x058F),
    "hebrew": (0x0590, 0x05FF),
    "arabic": (0x0600, 0x06FF),
    "devanagari": (0x0900, 0x097F),
    "bengali": (0x0980, 0x09FF),
    "gurmukhi": (0x0A00, 0x0A7F),
    "gujarati": (0x0A80, 0x0AFF),
    "oriya": (0x0B00, 0x0B7F),
    "tamil": (0x0B80, 0x0BFF),
    "telugu": (0x0C00, 0x0C7F),
    "kannada": (0x0C80, 0x0CFF),
    "malayalam": (0x0D00, 0x0D7F),
    "sinhala": (0x0D80, 0x0DFF),
    "thai": (0x0E00, 0x0E7F),
    "tibetan": (0x0F00, 0x0FFF),
    "georgian": (0x10A0, 0x10FF),
    "hangul-jamo": (0x1100, 0x11FF),
}

DEFAULT_SCRIPT = "devanagari"

_BOUNDS_PATTERN = re.compile(
    r"^\s*(?:U\+)?([0-9A-Fa-f]{1,6})\s*(?:-|\.\.)\s*(?:U\+)?([0-9A-Fa-f]{1,6})\s*$"
)

ScriptSpec = Union[str, ScriptRange, Tuple[int, int], None]


def parse_script(value: ScriptSpec) -> ScriptRange:
    """
    Resolve a script rule into a ``ScriptRange``.

    Accepted forms: a block name from ``NAMED_SCRIPTS`` (case-insensitive),
    ``"0900-097F"``, ``"U+0900..U+097F"``, an ``(start, end)`` pair, or an
    existing ``ScriptRange``. ``None`` selects the default block.
    """
    if value is None:
        value = DEFAULT_SCRIPT
    if isinstance(value, ScriptRange):
        return value
    if isinstance(value, (tuple, list)):
        if len(value) != 2:
            raise TokenizerError(f"Script bounds must be a pair, got {value!r}")
        start, end = value
        if not isinstance(start, int) or not isinstance(end, int):
            raise TokenizerError(f"Script bounds must be integers, got {value!r}")
        return ScriptRange(start, end)
    if not isinstance(value, str):
        raise TokenizerError(f"Unsupported script rule: {value!r}")

    key = value.strip().lower()
    if key in NAMED_SCRIPTS:
        start, end = NAMED_SCRIPTS[key]
        return ScriptRange(start, end, key)

    match = _BOUNDS_PATTERN.match(value)
    if match is None:
        raise TokenizerError(f"Unknown script or malformed range: {value!r}")
    return ScriptRange(int(match.group(1), 16), int(match.group(2), 16))


class Tokenizer:
    """Base class for script-range tokenizers."""

    strategy = ""

    def __init__(self, script: ScriptSpec = None) -> None:
        self.script = parse_script(script)

    def iter_tokens(self, text: str) -> Iterator[str]:
        raise NotImplementedError

    def tokens(self, text: str) -> "TokenSequence":
        """Return a lazy sequence that re-tokenizes ``text`` on every iteration."""
        return TokenSequence(self, text)

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.script.describe()})"


class TokenSequence:
    """Lazy, finite and restartable view over the tokens of one text."""

    __slots__ = ("_tokenizer", "_text")

    def __init__(self, tokenizer: Tokenizer, text: str) -> None:
        self._tokenizer = tokenizer
        self._text = text

    def __iter__(self) -> Iterator[str]:
        return self._tokenizer.iter_tokens(self._text)


class ScanTokenizer(Tokenizer):
    """Accumulate in-block characters one by one, emitting at each separator."""

    strategy = "scan"

    def iter_tokens(self, text: str) -> Iterator[str]:
        start, end = self.script.start, self.script.end
        partial = []
        for ch in text or "":
            if start <= ord(ch) <= end:
                partial.append(ch)
            elif partial:
                yield "".join(partial)
                partial = []
        # a run reaching the end of input is still a token
        if partial:
            yield "".join(partial)


class SplitTokenizer(Tokenizer):
    """Split on runs of out-of-block codepoints."""

    strategy = "split"

    def __init__(self, script: ScriptSpec = None) -> None:
        super().__init__(script)
        low = re.escape(chr(self.script.start))
        high = re.escape(chr(self.script.end))
        self._separator = re.compile(f"[^{low}-{high}]+")

    def iter_tokens(self, text: str) -> Iterator[str]:
        for piece in self._separator.split(text or ""):
            # split() leaves empty strings at the edges of the input; they are not tokens
            if piece:
                yield piece


TOKENIZER_STRATEGIES: Mapping[str, Callable[[ScriptSpec], Tokenizer]] = {
    ScanTokenizer.strategy: ScanTokenizer,
    SplitTokenizer.strategy: SplitTokenizer,
}

DEFAULT_STRATEGY = ScanTokenizer.strategy


def make_tokenizer(strategy: str | None = None, script: ScriptSpec = None) -> Tokenizer:
    candidate = (strategy or DEFAULT_STRATEGY).strip().lower()
    factory = TOKENIZER_STRATEGIES.get(candidate)
    if factory is None:
        raise TokenizerError(f"Unsupported tokenizer strategy: {candidate!r}")
    return factory(script)


def count_tokens(text: str, tokenizer: Tokenizer) -> Counter:
    """Return ``token -> occurrences`` for one document."""
    return Counter(tokenizer.iter_tokens(text))


def document_contribution(occurrences: Mapping[Hashable, int]) -> Dict[Hashable, Tuple[int, int]]:
    """Turn a per-document count into ``key -> (tf, df)`` with df capped at 1.

    Keys are tokens or, inside an interning partition, their symbols.
    """
    return {token: (int(count), 1) for token, count in occurrences.items() if count > 0}
