"""
Document sources for the aggregation pipeline.

A corpus enumerates *work units*: a file path, a decoded archive entry or an
in-memory ``Document``. Workers turn a unit into documents with
``load_unit``; anything unreadable or malformed raises ``DocumentError`` so
the aggregator can apply its error policy uniformly.
"""

from __future__ import annotations

import json
import logging
import os
import tarfile
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, List, Optional, Sequence, Union

import zstandard as zstd

logger = logging.getLogger("termstats.ingest")

DEFAULT_TEXT_FIELD = "newsText"
DEFAULT_SOURCE_FIELD = "newsSource"

ARCHIVE_MODES = {
    ".tar": "r|",
    ".tar.gz": "r|gz",
    ".tgz": "r|gz",
    ".tar.bz2": "r|bz2",
    ".tbz2": "r|bz2",
    ".tar.xz": "r|xz",
    ".txz": "r|xz",
}
ZSTD_SUFFIXES = (".tar.zst", ".tzst")


class DocumentError(Exception):
    """Raised when a work unit cannot be read or decoded."""

    def __init__(self, location: str, reason: str) -> None:
        super().__init__(location, reason)
        self.location = location
        self.reason = reason

    def __str__(self) -> str:
        return f"{self.location}: {self.reason}"


@dataclass(frozen=True)
class Document:
    text: str
    source: Optional[str] = None
    location: str = ""


@dataclass(frozen=True)
class ArchiveEntry:
    """Raw payload of one archive member, read by the producer."""

    name: str
    data: bytes


@dataclass(frozen=True)
class UnitFailure:
    """Placeholder for a unit the producer could not read."""

    location: str
    reason: str


WorkUnit = Union[Path, ArchiveEntry, Document, UnitFailure]


def unit_location(unit: WorkUnit) -> str:
    if isinstance(unit, Path):
        return str(unit)
    if isinstance(unit, ArchiveEntry):
        return unit.name
    return unit.location


def _is_json_name(name: str) -> bool:
    return name.lower().endswith(".json")


def decode_payload(
    data: bytes,
    location: str,
    *,
    text_field: str = DEFAULT_TEXT_FIELD,
    source_field: str = DEFAULT_SOURCE_FIELD,
) -> List[Document]:
    """Decode a file or archive payload into documents.

    ``.json`` payloads hold an array of objects with a text field and an
    optional source field; anything else is a single plain-text document.
    """
    try:
        contents = data.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise DocumentError(location, f"invalid UTF-8 ({exc.reason} at byte {exc.start})") from exc

    if not _is_json_name(location):
        return [Document(text=contents, location=location)]

    try:
        payload = json.loads(contents)
    except json.JSONDecodeError as exc:
        raise DocumentError(location, f"malformed JSON: {exc}") from exc
    if not isinstance(payload, list):
        raise DocumentError(location, "expected a JSON array of documents")

    documents: List[Document] = []
    for idx, item in enumerate(payload):
        if not isinstance(item, dict):
            raise DocumentError(location, f"document #{idx} is not an object")
        text = item.get(text_field)
        if not isinstance(text, str):
            raise DocumentError(location, f"document #{idx} has no string field {text_field!r}")
        source = item.get(source_field)
        if source is not None and not isinstance(source, str):
            raise DocumentError(location, f"document #{idx} has a non-string {source_field!r}")
        documents.append(Document(text=text, source=source, location=f"{location}#{idx}"))
    return documents


def load_unit(
    unit: WorkUnit,
    *,
    text_field: str = DEFAULT_TEXT_FIELD,
    source_field: str = DEFAULT_SOURCE_FIELD,
) -> List[Document]:
    if isinstance(unit, Document):
        return [unit]
    if isinstance(unit, UnitFailure):
        raise DocumentError(unit.location, unit.reason)
    if isinstance(unit, ArchiveEntry):
        return decode_payload(unit.data, unit.name, text_field=text_field, source_field=source_field)
    try:
        data = Path(unit).read_bytes()
    except OSError as exc:
        raise DocumentError(str(unit), f"unreadable: {exc}") from exc
    return decode_payload(data, str(unit), text_field=text_field, source_field=source_field)


class Corpus:
    """Base class for document sources."""

    #: whether the full unit list is cheap to hold in memory
    materializable = True

    def iter_units(self) -> Iterator[WorkUnit]:
        raise NotImplementedError

    def describe(self) -> str:
        return type(self).__name__


class MemoryCorpus(Corpus):
    def __init__(self, documents: Sequence[Union[Document, str]]) -> None:
        self.documents: List[Document] = []
        for idx, doc in enumerate(documents):
            if isinstance(doc, str):
                doc = Document(text=doc, location=f"memory#{idx}")
            elif not doc.location:
                doc = Document(text=doc.text, source=doc.source, location=f"memory#{idx}")
            self.documents.append(doc)

    def iter_units(self) -> Iterator[WorkUnit]:
        return iter(self.documents)

    def describe(self) -> str:
        return f"{len(self.documents)} in-memory documents"


class DirectoryCorpus(Corpus):
    """Every non-hidden file beneath ``root``, sorted for determinism."""

    def __init__(self, root: Path) -> None:
        self.root = Path(root)

    def iter_units(self) -> Iterator[WorkUnit]:
        # unreadable directories surface as failed units instead of vanishing from the walk
        errors: List[OSError] = []
        for dirpath, dirnames, filenames in os.walk(self.root, onerror=errors.append):
            yield from self._drain(errors)
            dirnames[:] = sorted(name for name in dirnames if not name.startswith("."))
            for name in sorted(filenames):
                if name.startswith("."):
                    continue
                path = Path(dirpath) / name
                if path.is_file():
                    yield path
        yield from self._drain(errors)

    @staticmethod
    def _drain(errors: List[OSError]) -> Iterator[WorkUnit]:
        while errors:
            exc = errors.pop(0)
            logger.debug("Failed to list directory %s: %s", exc.filename, exc)
            yield UnitFailure(str(exc.filename), f"unreadable directory: {exc}")

    def describe(self) -> str:
        return f"directory {self.root}"


def archive_kind(path: Path) -> Optional[str]:
    """Return the tarfile mode (or ``"zst"``) for an archive path, else None."""
    name = path.name.lower()
    if name.endswith(ZSTD_SUFFIXES):
        return "zst"
    for suffix in sorted(ARCHIVE_MODES, key=len, reverse=True):
        if name.endswith(suffix):
            return ARCHIVE_MODES[suffix]
    return None


class ArchiveCorpus(Corpus):
    """Entries of a (possibly compressed) tar archive, streamed in order."""

    materializable = False

    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        kind = archive_kind(self.path)
        if kind is None:
            raise ValueError(f"Unsupported archive type: {self.path}")
        self.kind = kind

    def iter_units(self) -> Iterator[WorkUnit]:
        try:
            with self.path.open("rb") as raw:
                if self.kind == "zst":
                    reader = zstd.ZstdDecompressor().stream_reader(raw)
                    with reader, tarfile.open(fileobj=reader, mode="r|") as archive:
                        yield from self._iter_members(archive)
                else:
                    with tarfile.open(fileobj=raw, mode=self.kind) as archive:
                        yield from self._iter_members(archive)
        except (OSError, tarfile.TarError, zstd.ZstdError) as exc:
            raise DocumentError(str(self.path), f"unreadable archive: {exc}") from exc

    def _iter_members(self, archive: tarfile.TarFile) -> Iterator[WorkUnit]:
        for member in archive:
            if not member.isfile():
                continue
            name = member.name
            if Path(name).name.startswith("."):
                continue
            try:
                handle = archive.extractfile(member)
                if handle is None:
                    yield UnitFailure(name, "entry has no readable payload")
                    continue
                data = handle.read()
            except (OSError, tarfile.TarError, zstd.ZstdError) as exc:
                logger.debug("Failed to read archive entry %s: %s", name, exc)
                yield UnitFailure(name, f"unreadable entry: {exc}")
                continue
            yield ArchiveEntry(name, data)

    def describe(self) -> str:
        return f"archive {self.path}"


def open_corpus(path: Path) -> Corpus:
    """Pick the corpus type for ``path`` (directory, archive or single file)."""
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Input path does not exist: {path}")
    if path.is_dir():
        return DirectoryCorpus(path)
    if archive_kind(path) is not None:
        return ArchiveCorpus(path)
    return FileListCorpus([path])


class FileListCorpus(Corpus):
    """An explicit list of files."""

    def __init__(self, paths: Sequence[Path]) -> None:
        self.paths = [Path(p) for p in paths]

    def iter_units(self) -> Iterator[WorkUnit]:
        return iter(self.paths)

    def describe(self) -> str:
        return f"{len(self.paths)} files"
