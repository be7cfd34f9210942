"""
Reading sequence files and writing identity tables.
"""
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Union, Generator, BinaryIO
from warnings import warn

from allvsall import UnknownResidueWarning, EmptyInputWarning
from allvsall.containers.record import Record


# Exceptions and Warnings ----------------------------------------------------------------------------------------------
class SeqIOError(IOError):
    """Base class for sequence I/O errors."""

class ParserError(Exception): pass


# Classes --------------------------------------------------------------------------------------------------------------
class BaseReader(ABC):
    """Abstract base class for sequence file readers."""
    _CHUNK_SIZE = 65536
    __slots__ = ('_handle', '_iterator')
    def __init__(self, handle: BinaryIO, **kwargs):
        """
        Initializes the reader.

        Args:
            handle: The open binary file handle to read from.
            **kwargs: Additional arguments.
        """
        self._handle = handle
        self._iterator = None

    @classmethod
    @abstractmethod
    def sniff(cls, s: bytes) -> bool: ...
    @abstractmethod
    def __iter__(self) -> Generator: ...
    def __enter__(self): return self
    def __exit__(self, exc_type, exc_val, exc_tb): self.close()
    def __next__(self):
        if self._iterator is None:
            self._iterator = self.__iter__()
        return next(self._iterator)

    def close(self):
        """Closes the reader (the handle belongs to the caller)."""
        pass

    def read_chunks(self, chunk_size: int = None) -> Generator[bytes, None, None]:
        """Yields chunks of data from the file handle until EOF."""
        if chunk_size is None: chunk_size = self._CHUNK_SIZE
        read = self._handle.read
        while chunk := read(chunk_size):
            yield chunk


# Functions ------------------------------------------------------------------------------------------------------------
def read_records(path: Union[str, Path], score_matrix=None, min_seq_length: int = 1) -> list[Record]:
    """
    Reads every record of a FASTA file into memory with uppercase residues.

    Args:
        path: Path to the FASTA file.
        score_matrix: Optional ``ScoreMatrix``; records with residues it does not score raise a warning.
        min_seq_length: Records shorter than this are skipped.

    Returns:
        The records in file order.

    Raises:
        SeqIOError: If the file cannot be opened.
        ParserError: If the file has text before its first FASTA header.
    """
    from allvsall.io.seq import FastaReader

    try:
        handle = open(path, 'rb')
    except OSError as e:
        raise SeqIOError(f'Cannot read {path}: {e.strerror}') from e
    with handle, FastaReader(handle, min_seq_length=min_seq_length) as reader:
        records = [record.upper() for record in reader]

    if not records: warn(f'No sequences found in {path}', EmptyInputWarning)
    if score_matrix is not None:
        for record in records:
            if unknown := score_matrix.unknown(record.residues):
                warn(f'{record} contains residues outside the substitution matrix: {unknown.decode(errors="replace")}',
                     UnknownResidueWarning)
    return records
