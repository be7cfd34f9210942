from typing import Generator, BinaryIO, Iterable

from allvsall.containers.record import Record
from allvsall.io import BaseReader, ParserError


# Classes --------------------------------------------------------------------------------------------------------------
class FastaReader(BaseReader):
    """
    Reader for FASTA format files.

    Examples:
        >>> with open("inteins.fasta", "rb") as f:
        ...     reader = FastaReader(f)
        ...     for record in reader:
        ...         print(record.id)
    """
    __slots__ = ('_min_seq_length',)
    def __init__(self, handle: BinaryIO, min_seq_length: int = 1, **kwargs):
        super().__init__(handle, **kwargs)
        self._min_seq_length = min_seq_length

    def __iter__(self) -> Generator[Record, None, None]:
        """
        Iterates over FASTA records.

        Yields:
            Record objects.
        """
        for header, seq_parts in self._read_entries():
            yield self._make_record(header, seq_parts)

    def _lines(self) -> Generator[bytes, None, None]:
        buf = b""
        for chunk in self.read_chunks():
            buf += chunk
            *lines, buf = buf.split(b'\n')
            yield from lines
        if buf: yield buf

    def _read_entries(self) -> Generator[tuple[bytes, list[bytes]], None, None]:
        """Internal generator that yields (header, seq_parts_list)."""
        min_len = self._min_seq_length
        header = None
        seq_parts = []

        for line in self._lines():
            line = line.strip()
            if not line: continue
            if line.startswith(b'>'):
                if header is not None and sum(len(p) for p in seq_parts) >= min_len:
                    yield header, seq_parts
                header = line[1:]
                seq_parts = []
            elif header is None:
                if line.startswith(b';'): continue  # Old-style comment
                raise ParserError(f'Sequence data before the first FASTA header: {line[:20]!r}')
            else:
                seq_parts.append(b''.join(line.split()))

        if header is not None and sum(len(p) for p in seq_parts) >= min_len:
            yield header, seq_parts

    @staticmethod
    def _make_record(header: bytes, seq_parts: Iterable[bytes]) -> Record:
        name, *desc = header.split(maxsplit=1) or [b'']
        return Record(b"".join(seq_parts), name, desc[0] if desc else b'')

    @classmethod
    def sniff(cls, s: bytes) -> bool: return s.startswith(b">")
