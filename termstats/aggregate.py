"""
Parallel fold-reduce aggregation of (tf, df) statistics.

Documents are split into partitions that are folded independently by a pool
of workers, each into a map it owns exclusively. The coordinating thread then
combines finished partial maps with ``merge_into``; because that merge is
associative and commutative the final counts do not depend on how documents
were partitioned or on the order in which partitions complete.

Two topologies are available:

``fanout``
    Enumerate every work unit up front, cut the list into contiguous groups
    and fold the groups in a worker pool.

``stream``
    The calling thread produces units (e.g. while decompressing an archive)
    onto a bounded queue consumed by ``workers - 1`` folding workers. Each
    consumer stops at its own sentinel and reports its partial map once.

A worker that dies without reporting (killed, crashed interpreter) is
detected by the coordinator: under ``fail_fast`` the run is aborted, under
``skip`` the lost partition is recorded as a skipped item.

Workers run either as processes (``backend="process"``) or threads
(``backend="thread"``). All worker entry points are module-level functions
so they can be pickled.
"""

from __future__ import annotations

import logging
import multiprocessing
import os
import queue
import threading
from concurrent.futures import (
    BrokenExecutor,
    ProcessPoolExecutor,
    ThreadPoolExecutor,
    as_completed,
)
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional, Sequence, Set, Tuple

from .counts import PartitionFolder, TermCounts, merge_into
from .ingest import (
    DEFAULT_SOURCE_FIELD,
    DEFAULT_TEXT_FIELD,
    Corpus,
    DocumentError,
    WorkUnit,
    load_unit,
    unit_location,
)
from .sources import SourceFilter
from .tokenize import DEFAULT_STRATEGY, ScriptRange, Tokenizer, make_tokenizer, parse_script

logger = logging.getLogger("termstats.aggregate")

POLL_INTERVAL = 0.1
DEFAULT_QUEUE_SIZE = 256
TOPOLOGIES = ("auto", "fanout", "stream")


class ErrorPolicy(str, Enum):
    """What to do with a unit that cannot be read or decoded."""

    FAIL_FAST = "fail_fast"
    SKIP = "skip"

    @classmethod
    def parse(cls, value: "ErrorPolicy | str | None") -> "ErrorPolicy":
        if isinstance(value, cls):
            return value
        candidate = (value or cls.FAIL_FAST.value).strip().lower().replace("-", "_")
        for policy in cls:
            if policy.value == candidate:
                return policy
        raise ValueError(f"Unsupported error policy: {value!r} (expected fail_fast or skip)")


class AggregationError(RuntimeError):
    """Raised when a fail-fast aggregation is aborted."""

    def __init__(self, message: str, location: Optional[str] = None) -> None:
        super().__init__(message, location)
        self.message = message
        self.location = location

    def __str__(self) -> str:
        return self.message


class FoldCancelled(Exception):
    """Raised inside a worker once the shared cancellation event is set."""


@dataclass(frozen=True)
class SkippedItem:
    location: str
    reason: str


@dataclass
class FoldReport:
    """Bookkeeping for one scope; merged alongside the count maps."""

    units: int = 0
    documents: int = 0
    rejected: int = 0
    skipped: List[SkippedItem] = field(default_factory=list)

    def absorb(self, other: "FoldReport") -> "FoldReport":
        self.units += other.units
        self.documents += other.documents
        self.rejected += other.rejected
        self.skipped.extend(other.skipped)
        return self

    def as_dict(self) -> Dict[str, object]:
        return {
            "units": self.units,
            "documents": self.documents,
            "rejected": self.rejected,
            "skipped": len(self.skipped),
            "skipped_items": [
                {"location": item.location, "reason": item.reason} for item in self.skipped
            ],
        }


@dataclass
class AggregationResult:
    counts: TermCounts
    report: FoldReport


@dataclass(frozen=True)
class FoldContext:
    """Everything a worker needs to fold a partition; must stay picklable."""

    tokenizer: str = DEFAULT_STRATEGY
    script: ScriptRange = field(default_factory=lambda: parse_script(None))
    source_filter: SourceFilter = field(default_factory=SourceFilter)
    error_policy: ErrorPolicy = ErrorPolicy.FAIL_FAST
    intern_tokens: bool = False
    text_field: str = DEFAULT_TEXT_FIELD
    source_field: str = DEFAULT_SOURCE_FIELD

    def build_tokenizer(self) -> Tokenizer:
        return make_tokenizer(self.tokenizer, self.script)


def default_workers() -> int:
    return max(os.cpu_count() or 1, 1)


@dataclass(frozen=True)
class AggregatorSettings:
    workers: int = field(default_factory=default_workers)
    partitions: Optional[int] = None
    topology: str = "auto"
    backend: str = "process"
    queue_size: int = DEFAULT_QUEUE_SIZE

    def __post_init__(self) -> None:
        if self.workers < 1:
            raise ValueError("workers must be >= 1")
        if self.partitions is not None and self.partitions < 1:
            raise ValueError("partitions must be >= 1")
        if self.topology not in TOPOLOGIES:
            raise ValueError(f"topology must be one of: {', '.join(TOPOLOGIES)}")
        if self.backend not in BACKENDS:
            raise ValueError(f"backend must be one of: {', '.join(sorted(BACKENDS))}")
        if self.queue_size < 1:
            raise ValueError("queue_size must be >= 1")


# ---------------------------------------------------------------------- #
# Worker side


def fold_units(
    units: Iterable[WorkUnit],
    context: FoldContext,
    cancel: Optional[Any] = None,
) -> Tuple[TermCounts, FoldReport]:
    """Fold ``units`` sequentially into one partition-local map."""
    folder = PartitionFolder(context.build_tokenizer(), intern_tokens=context.intern_tokens)
    report = FoldReport()
    accepts = context.source_filter.accepts

    for unit in units:
        if cancel is not None and cancel.is_set():
            raise FoldCancelled()
        report.units += 1
        try:
            documents = load_unit(
                unit, text_field=context.text_field, source_field=context.source_field
            )
        except DocumentError as exc:
            if context.error_policy is ErrorPolicy.FAIL_FAST:
                raise
            logger.warning("Skipping %s: %s", exc.location, exc.reason)
            report.skipped.append(SkippedItem(exc.location, exc.reason))
            continue

        for document in documents:
            if not accepts(document.source):
                report.rejected += 1
                continue
            folder.add_text(document.text)

    report.documents = folder.documents
    return folder.finish(), report


_worker_state = threading.local()


def _init_worker(cancel: Any) -> None:
    _worker_state.cancel = cancel


def _fold_partition(
    task: Tuple[int, Sequence[WorkUnit], FoldContext]
) -> Tuple[int, TermCounts, FoldReport]:
    index, units, context = task
    counts, report = fold_units(units, context, getattr(_worker_state, "cancel", None))
    return index, counts, report


def _iter_queue(work: Any, cancel: Any) -> Iterator[WorkUnit]:
    while True:
        try:
            item = work.get(timeout=POLL_INTERVAL)
        except queue.Empty:
            if cancel.is_set():
                raise FoldCancelled()
            continue
        if item is None:
            return
        yield item


def _consume(index: int, work: Any, results: Any, cancel: Any, context: FoldContext) -> None:
    """Stream consumer: fold until the sentinel, then report exactly once."""
    try:
        counts, report = fold_units(_iter_queue(work, cancel), context, cancel)
    except FoldCancelled:
        results.put((index, "cancelled", None, None))
    except DocumentError as exc:
        cancel.set()
        results.put((index, "error", exc, None))
    except Exception as exc:  # noqa: BLE001 - forwarded to the coordinator
        cancel.set()
        results.put((index, "error", AggregationError(f"{type(exc).__name__}: {exc}"), None))
    else:
        results.put((index, "ok", counts, report))


# ---------------------------------------------------------------------- #
# Backends


class _ProcessBackend:
    name = "process"

    def __init__(self) -> None:
        self._ctx = multiprocessing.get_context()

    def event(self) -> Any:
        return self._ctx.Event()

    def queue(self, maxsize: int = 0) -> Any:
        return self._ctx.Queue(maxsize)

    def worker(self, target, args, name: str) -> Any:
        return self._ctx.Process(target=target, args=args, name=name, daemon=True)

    def executor(self, workers: int, initializer, initargs) -> Any:
        return ProcessPoolExecutor(
            max_workers=workers,
            mp_context=self._ctx,
            initializer=initializer,
            initargs=initargs,
        )

    def abandon(self, work: Any) -> None:
        # unread items must not keep the interpreter waiting on the feeder thread
        work.cancel_join_thread()


class _ThreadBackend:
    name = "thread"

    def event(self) -> Any:
        return threading.Event()

    def queue(self, maxsize: int = 0) -> Any:
        return queue.Queue(maxsize)

    def worker(self, target, args, name: str) -> Any:
        return threading.Thread(target=target, args=args, name=name, daemon=True)

    def executor(self, workers: int, initializer, initargs) -> Any:
        return ThreadPoolExecutor(
            max_workers=workers,
            thread_name_prefix="termstats-fold",
            initializer=initializer,
            initargs=initargs,
        )

    def abandon(self, work: Any) -> None:
        return None


BACKENDS = {
    _ProcessBackend.name: _ProcessBackend,
    _ThreadBackend.name: _ThreadBackend,
}


def partition_units(units: Sequence[WorkUnit], partitions: int) -> List[List[WorkUnit]]:
    """Cut ``units`` into at most ``partitions`` contiguous, non-empty groups."""
    if not units:
        return []
    partitions = max(1, min(partitions, len(units)))
    size, extra = divmod(len(units), partitions)
    groups: List[List[WorkUnit]] = []
    start = 0
    for idx in range(partitions):
        end = start + size + (1 if idx < extra else 0)
        groups.append(list(units[start:end]))
        start = end
    return groups


def describe_partition(index: int, units: Sequence[WorkUnit]) -> str:
    first, last = unit_location(units[0]), unit_location(units[-1])
    if first == last:
        return f"partition {index} ({first})"
    return f"partition {index} ({first} .. {last})"


def _exit_reason(worker: Any) -> str:
    exitcode = getattr(worker, "exitcode", None)
    if exitcode is None:
        return "worker exited without reporting its counts"
    return f"worker exited with code {exitcode} without reporting its counts"


# ---------------------------------------------------------------------- #
# Coordinator


class Aggregator:
    """Runs the fold-reduce over a corpus with the configured topology."""

    def __init__(
        self,
        context: Optional[FoldContext] = None,
        settings: Optional[AggregatorSettings] = None,
    ) -> None:
        self.context = context or FoldContext()
        self.settings = settings or AggregatorSettings()
        self.backend = BACKENDS[self.settings.backend]()
        # fail early on a bad tokenizer rule, before any worker starts
        self.context.build_tokenizer()

    def resolve_topology(self, corpus: Corpus) -> str:
        if self.settings.topology != "auto":
            return self.settings.topology
        return "fanout" if corpus.materializable else "stream"

    def run(self, corpus: Corpus) -> AggregationResult:
        topology = self.resolve_topology(corpus)
        logger.info(
            "Aggregating %s: topology=%s backend=%s workers=%d policy=%s",
            corpus.describe(),
            topology,
            self.backend.name,
            self.settings.workers,
            self.context.error_policy.value,
        )
        if topology == "stream":
            result = self._run_stream(corpus)
        else:
            result = self._run_fanout(corpus)

        report = result.report
        logger.info(
            "Aggregation finished: units=%d documents=%d rejected=%d skipped=%d terms=%d",
            report.units,
            report.documents,
            report.rejected,
            len(report.skipped),
            len(result.counts),
        )
        return result

    def _enumerate(self, corpus: Corpus, report: FoldReport) -> Iterator[WorkUnit]:
        """Yield the corpus' units, applying the error policy to source failures."""
        try:
            yield from corpus.iter_units()
        except DocumentError as exc:
            if self.context.error_policy is ErrorPolicy.FAIL_FAST:
                raise AggregationError(f"Failed to read {exc}", exc.location) from exc
            logger.warning("Stopped reading %s: %s", exc.location, exc.reason)
            report.skipped.append(SkippedItem(exc.location, exc.reason))

    def _lost_worker(self, location: str, reason: str, report: FoldReport) -> None:
        """Abort (fail_fast) or record (skip) a worker that died mid-partition."""
        if self.context.error_policy is ErrorPolicy.FAIL_FAST:
            raise AggregationError(f"Lost {location}: {reason}", location)
        logger.warning("Skipping %s: %s", location, reason)
        report.skipped.append(SkippedItem(location, reason))

    def _run_fanout(self, corpus: Corpus) -> AggregationResult:
        report = FoldReport()
        units = list(self._enumerate(corpus, report))
        groups = partition_units(units, self.settings.partitions or self.settings.workers)
        merged: TermCounts = {}
        if not groups:
            return AggregationResult(merged, report)

        cancel = self.backend.event()
        executor = self.backend.executor(
            min(self.settings.workers, len(groups)), _init_worker, (cancel,)
        )
        logger.info("Folding %d units in %d partitions", len(units), len(groups))

        try:
            futures = {
                executor.submit(_fold_partition, (idx, group, self.context)): idx
                for idx, group in enumerate(groups)
            }
            for future in as_completed(futures):
                index = futures[future]
                try:
                    _, counts, partial = future.result()
                except DocumentError as exc:
                    raise AggregationError(f"Failed to read {exc}", exc.location) from exc
                except BrokenExecutor:
                    # a dead process breaks the whole pool; every unfinished partition lands here
                    self._lost_worker(
                        describe_partition(index, groups[index]),
                        "worker exited without reporting its counts",
                        report,
                    )
                    continue
                merge_into(merged, counts)
                report.absorb(partial)
                logger.info(
                    "Partition %d done: documents=%d terms=%d",
                    index,
                    partial.documents,
                    len(counts),
                )
        except BaseException:
            cancel.set()
            executor.shutdown(wait=True, cancel_futures=True)
            raise
        executor.shutdown(wait=True)
        return AggregationResult(merged, report)

    def _run_stream(self, corpus: Corpus) -> AggregationResult:
        consumers = max(1, self.settings.workers - 1)
        cancel = self.backend.event()
        work = self.backend.queue(self.settings.queue_size)
        results = self.backend.queue()
        workers = [
            self.backend.worker(
                _consume, (idx, work, results, cancel, self.context), f"termstats-consumer-{idx}"
            )
            for idx in range(consumers)
        ]
        for worker in workers:
            worker.start()

        def consumers_alive() -> bool:
            return any(worker.is_alive() for worker in workers)

        report = FoldReport()
        merged: TermCounts = {}
        failure: Optional[AggregationError] = None
        reported: Set[int] = set()
        suspects: Set[int] = set()
        stalled = False
        lost = False
        produced = 0

        try:
            try:
                for unit in self._enumerate(corpus, report):
                    if not _offer(work, unit, cancel, consumers_alive):
                        stalled = not cancel.is_set()
                        break
                    produced += 1
                    if produced % 10000 == 0:
                        logger.info("Queued %d units (last: %s)", produced, unit_location(unit))
            except AggregationError as exc:
                failure = exc
                cancel.set()

            if not cancel.is_set():
                for _ in workers:
                    _offer(work, None, cancel, consumers_alive)

            while len(reported) < len(workers):
                try:
                    index, status, payload, partial = results.get(timeout=POLL_INTERVAL)
                except queue.Empty:
                    # a consumer found dead on the previous empty poll has had a full
                    # interval to deliver its message; it never will
                    for idx in sorted(suspects - reported):
                        reported.add(idx)
                        lost = True
                        if failure is None:
                            try:
                                self._lost_worker(workers[idx].name, _exit_reason(workers[idx]), report)
                            except AggregationError as exc:
                                failure = exc
                                cancel.set()
                    suspects = {
                        idx
                        for idx, worker in enumerate(workers)
                        if idx not in reported and not worker.is_alive()
                    }
                    continue

                reported.add(index)
                if status == "ok":
                    merge_into(merged, payload)
                    report.absorb(partial)
                    logger.info(
                        "Consumer %d finished: documents=%d terms=%d",
                        index,
                        partial.documents,
                        len(payload),
                    )
                elif status == "error" and failure is None:
                    if isinstance(payload, DocumentError):
                        failure = AggregationError(f"Failed to read {payload}", payload.location)
                    else:
                        failure = payload
                    cancel.set()
        except BaseException:
            cancel.set()
            raise
        finally:
            if cancel.is_set() or lost:
                self.backend.abandon(work)
            for worker in workers:
                worker.join(timeout=5)

        if failure is None and stalled:
            failure = AggregationError("Every consumer exited before the corpus was fully read")
        if failure is not None:
            raise failure
        return AggregationResult(merged, report)


def _offer(
    work: Any,
    item: Any,
    cancel: Any,
    alive: Optional[Callable[[], bool]] = None,
) -> bool:
    """Put ``item`` on the bounded queue; False once cancelled or no reader is alive."""
    while not cancel.is_set():
        try:
            work.put(item, timeout=POLL_INTERVAL)
            return True
        except queue.Full:
            if alive is not None and not alive():
                return False
    return False


def aggregate(
    corpus: Corpus,
    *,
    context: Optional[FoldContext] = None,
    settings: Optional[AggregatorSettings] = None,
) -> AggregationResult:
    return Aggregator(context, settings).run(corpus)
