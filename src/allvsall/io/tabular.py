"""Tab-separated identity table: line formatting and the single-writer result sink."""
from pathlib import Path
from queue import Queue
from threading import Thread, Lock
from typing import Union, TextIO, Iterable, Optional

from allvsall.containers.record import Record
from allvsall.containers.alignment import Alignment


# Constants ------------------------------------------------------------------------------------------------------------
COLUMNS = ('x', 'y', 'xlen', 'ylen', 'alnlen', 'matches', 'pid')
OPERATIONS_COLUMN = 'ops'


# Functions ------------------------------------------------------------------------------------------------------------
def header(show_operations: bool = False) -> str:
    """The table header, without a trailing newline."""
    return '\t'.join(COLUMNS + (OPERATIONS_COLUMN,) if show_operations else COLUMNS)


def format_line(x_id: Union[bytes, str], y_id: Union[bytes, str], x_len: int, y_len: int, aln_len: int,
                n_matches: int, percent_identity: float, operations: str = None, digits: Optional[int] = 3) -> str:
    """
    Formats one row of the table.

    Args:
        x_id: Identifier of the first sequence.
        y_id: Identifier of the second sequence.
        x_len: Length of the first sequence.
        y_len: Length of the second sequence.
        aln_len: Number of alignment columns.
        n_matches: Number of identical columns.
        percent_identity: ``n_matches / aln_len``.
        operations: Optional operation string, appended as an extra column.
        digits: Decimal places to round the identity to; None keeps full precision.

    Examples:
        >>> format_line(b'A', b'B', 3, 3, 3, 2, 2 / 3)
        'A\\tB\\t3\\t3\\t3\\t2\\t0.667'
    """
    if isinstance(x_id, bytes): x_id = x_id.decode(errors='replace')
    if isinstance(y_id, bytes): y_id = y_id.decode(errors='replace')
    if digits is not None: percent_identity = round(percent_identity, digits)
    line = f'{x_id}\t{y_id}\t{x_len}\t{y_len}\t{aln_len}\t{n_matches}\t{percent_identity}'
    return line if operations is None else f'{line}\t{operations}'


def format_pair(x: Record, y: Record, alignment: Alignment, show_operations: bool = False,
                digits: Optional[int] = 3) -> tuple[str, str]:
    """
    The two symmetric rows for an aligned pair: x against y, then y against x.

    The second row reports the operations seen from y (insertions and deletions swapped).
    """
    aln_len, n_matches, pid = alignment.length, alignment.n_matches, alignment.percent_identity
    ops_xy = ops_yx = None
    if show_operations:
        ops_xy = alignment.operation_string()
        ops_yx = alignment.mirror().operation_string()
    return (
        format_line(x.id, y.id, len(x), len(y), aln_len, n_matches, pid, ops_xy, digits),
        format_line(y.id, x.id, len(y), len(x), aln_len, n_matches, pid, ops_yx, digits)
    )


# Classes --------------------------------------------------------------------------------------------------------------
class ResultSink:
    """
    Append-only line sink with a dedicated writer thread.

    Any thread may hand over lines; only the writer thread touches the handle, so blocks are written whole and
    never interleave.

    Args:
        file: Path to create (must not exist unless ``mode`` says otherwise) or an open text handle.
        show_operations: Whether the header carries the operations column.
        queue_size: Maximum number of pending blocks before producers block.
        mode: File mode used when ``file`` is a path.

    Examples:
        >>> with ResultSink("out.tsv") as sink:
        ...     sink.write_header()
        ...     sink.write_block(["A\\tB\\t3\\t3\\t3\\t2\\t0.667", "B\\tA\\t3\\t3\\t3\\t2\\t0.667"])
    """
    _STOP = None

    def __init__(self, file: Union[str, Path, TextIO], show_operations: bool = False, queue_size: int = 1024,
                 mode: str = 'x'):
        if isinstance(file, (str, Path)):
            self._handle = open(file, mode, encoding='utf-8', newline='\n')
            self._owns_handle = True
        else:
            self._handle = file
            self._owns_handle = False
        self.show_operations = show_operations
        self.n_lines = 0
        self._queue: Queue = Queue(queue_size)
        self._state_lock = Lock()
        self._header_written = False
        self._started_body = False
        self._closed = False
        self._error: Optional[BaseException] = None
        self._thread = Thread(target=self._run, name='allvsall-sink', daemon=True)
        self._thread.start()

    def __enter__(self): return self
    def __exit__(self, exc_type, exc_val, exc_tb): self.close()
    def __repr__(self): return f'ResultSink({getattr(self._handle, "name", self._handle)!r})'

    def _run(self):
        write = self._handle.write
        while (block := self._queue.get()) is not self._STOP:
            if self._error is not None: continue  # Drain without writing
            try:
                write(''.join(f'{line}\n' for line in block))
            except Exception as e:
                self._error = e
            else:
                self.n_lines += len(block)

    def _put(self, block: tuple[str, ...]):
        if self._closed: raise RuntimeError('Sink is closed')
        if self._error is not None: raise self._error
        self._queue.put(block)

    def write_header(self):
        """Writes the table header; only allowed once and before any other line."""
        with self._state_lock:
            if self._header_written: raise RuntimeError('Header already written')
            if self._started_body: raise RuntimeError('Header must be written before any result line')
            self._header_written = True
            self._put((header(self.show_operations),))

    def write_line(self, line: str):
        """Queues a single line (without trailing newline)."""
        self.write_block((line,))

    def write_block(self, lines: Iterable[str]):
        """Queues lines that must appear contiguously in the output."""
        if not self._started_body:
            with self._state_lock: self._started_body = True
        self._put(tuple(lines))

    def close(self):
        """
        Waits for every queued line to be written, then flushes and closes the handle if the sink opened it.

        Raises:
            Exception: The error that stopped the writer thread, if any.
        """
        if not self._closed:
            self._closed = True
            self._queue.put(self._STOP)
            self._thread.join()
            try:
                self._handle.flush()
            finally:
                if self._owns_handle: self._handle.close()
        if self._error is not None: raise self._error
