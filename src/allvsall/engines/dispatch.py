"""
All-vs-all dispatch: pair enumeration, a fixed pool of alignment workers and the self-hit shortcut.

Each worker is a thread owning a bounded job queue and a private ``GlobalAligner``. The DP kernels release the GIL,
so workers align in parallel; formatted rows are handed to a ``ResultSink`` which owns the output.
"""
from itertools import combinations
from queue import Queue
from threading import Thread, Event
from typing import Sequence, Iterable, Generator, Optional

from allvsall.containers.record import Record
from allvsall.containers.alignment import Alignment
from allvsall.engines.pairwise import GlobalAligner, ScoreMatrix
from allvsall.io.tabular import ResultSink, format_pair


# Exceptions and Warnings ----------------------------------------------------------------------------------------------
class WorkerError(Exception):
    """Raised when an alignment worker failed; the original exception is chained."""


# Functions ------------------------------------------------------------------------------------------------------------
def n_pairs(n: int) -> int:
    """Number of unordered pairs of distinct items among ``n``."""
    return n * (n - 1) // 2


def pairs(records: Sequence[Record]) -> Generator[tuple[Record, Record], None, None]:
    """
    Lazily yields every unordered pair of distinct records once, in index order.

    Examples:
        >>> [(str(x), str(y)) for x, y in pairs([Record(b'M', 'a'), Record(b'K', 'b'), Record(b'S', 'c')])]
        [('a', 'b'), ('a', 'c'), ('b', 'c')]
    """
    yield from combinations(records, 2)


def self_hits(records: Iterable[Record], sink: ResultSink, show_operations: bool = False,
              digits: Optional[int] = 3) -> int:
    """
    Writes the two symmetric rows of every record against itself without running the aligner.

    Returns:
        The number of records written.
    """
    n = 0
    for record in records:
        sink.write_block(format_pair(record, record, Alignment.self_hit(record), show_operations, digits))
        n += 1
    return n


def align_all(records: Sequence[Record], sink: ResultSink, threads: int = 1, gap_open: int = -10,
              gap_extend: int = -1, score_matrix: ScoreMatrix = None, show_operations: bool = False,
              digits: Optional[int] = 3, queue_size: int = 256) -> int:
    """
    Writes the header, the self-hits and every pairwise alignment of ``records`` to ``sink``.

    Returns:
        The number of pairs aligned.

    Raises:
        WorkerError: If any alignment failed.
    """
    score_matrix = score_matrix or ScoreMatrix.blosum62()
    sink.write_header()
    with WorkerPool.start(threads, gap_open, gap_extend, score_matrix, sink, queue_size=queue_size,
                          show_operations=show_operations, digits=digits) as pool:
        self_hits(records, sink, show_operations, digits)
        n = pool.dispatch(pairs(records))
    return n


# Classes --------------------------------------------------------------------------------------------------------------
class Worker(Thread):
    """
    Long-lived alignment thread consuming ``(x, y)`` jobs from its own bounded queue.

    After a failure the worker keeps draining its queue without aligning, so a producer blocked on a full queue is
    always released; the error is kept in ``error`` for the pool to raise.
    """
    CLOSE = None

    def __init__(self, index: int, aligner: GlobalAligner, sink: ResultSink, failed: Event, queue_size: int = 256,
                 show_operations: bool = False, digits: Optional[int] = 3):
        super().__init__(name=f'allvsall-worker-{index}', daemon=True)
        self.queue: Queue = Queue(queue_size)
        self.aligner = aligner
        self.sink = sink
        self.show_operations = show_operations
        self.digits = digits
        self.n_jobs = 0
        self.error: Optional[BaseException] = None
        self._failed = failed

    def run(self):
        while (job := self.queue.get()) is not self.CLOSE:
            if self.error is not None: continue
            x, y = job
            try:
                alignment = self.aligner.align(x, y).check_global()
                self.sink.write_block(format_pair(x, y, alignment, self.show_operations, self.digits))
            except Exception as e:
                self.error = e
                self._failed.set()
            else:
                self.n_jobs += 1


class WorkerPool:
    """
    A fixed set of workers fed round-robin: the k-th dispatched pair goes to worker ``k % len(pool)``.

    Examples:
        >>> with ResultSink("out.tsv") as sink:
        ...     sink.write_header()
        ...     with WorkerPool.start(4, -10, -1, ScoreMatrix.blosum62(), sink) as pool:
        ...         pool.dispatch(pairs(records))
    """
    def __init__(self, workers: list[Worker], failed: Event):
        self._workers = workers
        self._failed = failed
        self._n_dispatched = 0
        self._closed = False

    @classmethod
    def start(cls, num_workers: int, gap_open: int, gap_extend: int, score_matrix: ScoreMatrix, sink: ResultSink,
              queue_size: int = 256, show_operations: bool = False, digits: Optional[int] = 3) -> 'WorkerPool':
        """
        Spawns ``num_workers`` workers, each with its own aligner and a queue of ``queue_size`` pending jobs.

        Args:
            num_workers: Number of worker threads (at least 1).
            gap_open: Gap open score (non-positive).
            gap_extend: Gap extend score (non-positive).
            score_matrix: Substitution matrix shared read-only by every worker.
            sink: Destination for the formatted rows.
            queue_size: Capacity of each worker queue.
            show_operations: Append the operation string to each row.
            digits: Decimal places for percent identity.
        """
        if num_workers < 1: raise ValueError(f'Need at least one worker, got {num_workers}')
        if queue_size < 1: raise ValueError(f'Queue size must be positive, got {queue_size}')
        failed = Event()
        workers = [
            Worker(i, GlobalAligner(score_matrix, gap_open, gap_extend), sink, failed, queue_size, show_operations,
                   digits) for i in range(num_workers)
        ]
        for worker in workers: worker.start()
        return cls(workers, failed)

    def __len__(self): return len(self._workers)
    def __repr__(self): return f'WorkerPool({len(self)} workers, {self._n_dispatched} dispatched)'
    def __enter__(self): return self
    def __exit__(self, exc_type, exc_val, exc_tb): self.shutdown_and_join(raise_errors=exc_type is None)

    @property
    def workers(self) -> tuple[Worker, ...]: return tuple(self._workers)

    @property
    def n_dispatched(self) -> int: return self._n_dispatched

    def _raise_failure(self):
        for worker in self._workers:
            if worker.error is not None:
                raise WorkerError(f'{worker.name} failed: {worker.error!r}') from worker.error

    def dispatch(self, jobs: Iterable[tuple[Record, Record]]) -> int:
        """
        Queues jobs round-robin, blocking while the target worker's queue is full.

        Returns:
            The number of jobs queued by this call.

        Raises:
            WorkerError: As soon as any worker has failed.
        """
        if self._closed: raise RuntimeError('Pool has been shut down')
        workers = self._workers
        n_workers = len(workers)
        start = self._n_dispatched
        for job in jobs:
            if self._failed.is_set(): self._raise_failure()
            workers[self._n_dispatched % n_workers].queue.put(job)
            self._n_dispatched += 1
        return self._n_dispatched - start

    def shutdown_and_join(self, raise_errors: bool = True):
        """
        Closes every queue and waits for all workers to exit.

        Once this returns, every row the workers produced has been handed to the sink.

        Raises:
            WorkerError: If any worker failed and ``raise_errors`` is set.
        """
        if not self._closed:
            self._closed = True
            for worker in self._workers: worker.queue.put(Worker.CLOSE)
        for worker in self._workers: worker.join()
        if raise_errors: self._raise_failure()
