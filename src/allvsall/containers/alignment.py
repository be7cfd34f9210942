"""Pairwise alignment results, their edit operations and the global-mode invariant."""
from enum import IntEnum
from typing import Union

import numpy as np


# Exceptions and Warnings ----------------------------------------------------------------------------------------------
class InvariantError(Exception):
    """Raised when an alignment result violates an assumption of the engine (always a defect, never recoverable)."""


class GlobalAlignmentError(InvariantError):
    """Raised when an alignment expected to be global does not cover both sequences end-to-end."""


# Constants ------------------------------------------------------------------------------------------------------------
class AlignmentMode(IntEnum):
    """Alignment strategy controlling how terminal gaps are scored."""
    LOCAL = 0
    GLOBAL = 1
    GLOCAL = 2


class AlignmentOperation(IntEnum):
    """
    One step of an alignment path.

    ``DEL`` consumes a residue of x only (gap in y), ``INS`` consumes a residue of y only (gap in x).
    Clips are stored as one code per clipped residue.
    """
    MATCH = 0
    SUBST = 1
    DEL = 2
    INS = 3
    X_CLIP = 4
    Y_CLIP = 5


# Classes --------------------------------------------------------------------------------------------------------------
class Alignment:
    """
    Represents a pairwise alignment of sequence x against sequence y.

    Attributes:
        score (int): Alignment score.
        x_start, x_end (int): Aligned span on x (half-open).
        y_start, y_end (int): Aligned span on y (half-open).
        x_len, y_len (int): Lengths of the input sequences.
        mode (AlignmentMode): The strategy that produced the alignment.
        operations (np.ndarray): uint8 array of ``AlignmentOperation`` codes, start to end.

    Examples:
        >>> aln = Alignment(8, 0, 3, 0, 3, 3, 3, np.array([0, 1, 0], dtype=np.uint8))
        >>> aln.operation_string()
        'MSM'
        >>> aln.length, aln.n_matches
        (3, 2)
    """
    _OP_SYMBOLS = np.frombuffer(b'MSDIXY', dtype=np.uint8)
    _CIGAR_SYMBOLS = (b'=', b'X', b'D', b'I', b'S', b'')
    _MIRROR = np.array([
        AlignmentOperation.MATCH, AlignmentOperation.SUBST, AlignmentOperation.INS, AlignmentOperation.DEL,
        AlignmentOperation.Y_CLIP, AlignmentOperation.X_CLIP
    ], dtype=np.uint8)
    __slots__ = ('score', 'x_start', 'x_end', 'y_start', 'y_end', 'x_len', 'y_len', 'mode', 'operations')

    def __init__(self, score: int, x_start: int, x_end: int, y_start: int, y_end: int, x_len: int, y_len: int,
                 operations: np.ndarray, mode: AlignmentMode = AlignmentMode.GLOBAL):
        self.score = int(score)
        self.x_start = int(x_start)
        self.x_end = int(x_end)
        self.y_start = int(y_start)
        self.y_end = int(y_end)
        self.x_len = int(x_len)
        self.y_len = int(y_len)
        self.mode = AlignmentMode(mode)
        self.operations = np.ascontiguousarray(operations, dtype=np.uint8)

    def __repr__(self):
        return (f"Alignment(score={self.score}, x=[{self.x_start}, {self.x_end}), y=[{self.y_start}, {self.y_end}), "
                f"ops={self.operation_string()!r})")

    def __len__(self): return self.length

    def __eq__(self, other):
        if isinstance(other, Alignment):
            return (self.score == other.score and self.mode == other.mode and
                    self.x_start == other.x_start and self.x_end == other.x_end and
                    self.y_start == other.y_start and self.y_end == other.y_end and
                    self.x_len == other.x_len and self.y_len == other.y_len and
                    np.array_equal(self.operations, other.operations))
        return False

    @property
    def n_matches(self) -> int:
        """Number of identical aligned residue pairs."""
        return int(np.count_nonzero(self.operations == AlignmentOperation.MATCH))

    @property
    def length(self) -> int:
        """Number of alignment columns: matches, substitutions and indels (clips excluded)."""
        return int(np.count_nonzero(self.operations < AlignmentOperation.X_CLIP))

    @property
    def percent_identity(self) -> float:
        """Fraction of alignment columns that are matches (0.0 for an empty alignment)."""
        if (length := self.length) == 0: return 0.0
        return self.n_matches / length

    def operation_string(self) -> str:
        """One character per operation: M, S, D, I, X or Y."""
        return self._OP_SYMBOLS[self.operations].tobytes().decode('ascii')

    def cigar(self) -> bytes:
        """
        Extended CIGAR string with x as the reference.

        Matches are ``=``, substitutions ``X``, residues of x only ``D`` and residues of y only ``I``.
        """
        ops = self.operations[self.operations != AlignmentOperation.Y_CLIP]
        if len(ops) == 0: return b''
        starts = np.concatenate(([0], np.flatnonzero(ops[1:] != ops[:-1]) + 1))
        counts = np.diff(np.append(starts, len(ops)))
        symbols = self._CIGAR_SYMBOLS
        return b''.join(b'%d' % int(c) + symbols[int(o)] for c, o in zip(counts, ops[starts]))

    def mirror(self) -> 'Alignment':
        """Returns the same alignment seen from y: spans swapped, insertions and deletions swapped."""
        return Alignment(self.score, self.y_start, self.y_end, self.x_start, self.x_end, self.y_len, self.x_len,
                         self._MIRROR[self.operations], self.mode)

    def check_global(self) -> 'Alignment':
        """
        Asserts the alignment covers both sequences completely.

        Returns:
            self, so the check can be chained.

        Raises:
            GlobalAlignmentError: If the mode is not global or a span misses part of a sequence.
        """
        if self.mode != AlignmentMode.GLOBAL:
            raise GlobalAlignmentError(f'Expected a global alignment, got {self.mode.name}')
        if self.x_start != 0 or self.x_end != self.x_len:
            raise GlobalAlignmentError(f'x span [{self.x_start}, {self.x_end}) does not cover [0, {self.x_len})')
        if self.y_start != 0 or self.y_end != self.y_len:
            raise GlobalAlignmentError(f'y span [{self.y_start}, {self.y_end}) does not cover [0, {self.y_len})')
        return self

    @classmethod
    def self_hit(cls, residues: Union['Record', np.ndarray, bytes], score_matrix=None) -> 'Alignment':
        """
        The trivial alignment of a sequence against itself, built without dynamic programming.

        Args:
            residues: A Record, uint8 array or bytes.
            score_matrix: Optional ``ScoreMatrix``; when given, the score is the sum of the diagonal scores.

        Examples:
            >>> Alignment.self_hit(b'MSK').percent_identity
            1.0
        """
        if isinstance(residues, bytes): residues = np.frombuffer(residues, dtype=np.uint8)
        elif not isinstance(residues, np.ndarray): residues = residues.array
        n = len(residues)
        score = int(score_matrix.lookup[residues, residues].sum()) if score_matrix is not None else 0
        return cls(score, 0, n, 0, n, n, n, np.full(n, AlignmentOperation.MATCH, dtype=np.uint8))
