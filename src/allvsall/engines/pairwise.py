"""Affine-gap global alignment engine (Gotoh) with traceback and reusable scratch buffers."""
from typing import Union, Iterable
from enum import IntEnum

import numpy as np

from allvsall.containers.record import Record
from allvsall.containers.alignment import Alignment, AlignmentMode, AlignmentOperation
from allvsall.lib.resources import jit


# Constants ------------------------------------------------------------------------------------------------------------
class Trace(IntEnum):
    """
    Traceback flags stored per DP cell.

    The low two bits hold the state that fed ``M`` at the cell; the extension bits record whether ``Ix``/``Iy``
    at the cell extended an existing gap rather than opening one from ``M``.
    """
    FROM_M = 0
    FROM_IX = 1
    FROM_IY = 2
    IX_EXT = 4
    IY_EXT = 8


# Numba treats module-level ints as compile-time constants
_M, _IX, _IY = int(Trace.FROM_M), int(Trace.FROM_IX), int(Trace.FROM_IY)
_IX_EXT, _IY_EXT, _SRC_MASK = int(Trace.IX_EXT), int(Trace.IY_EXT), 3
_MATCH, _SUBST = int(AlignmentOperation.MATCH), int(AlignmentOperation.SUBST)
_DEL, _INS = int(AlignmentOperation.DEL), int(AlignmentOperation.INS)
_NEG_INF = -(1 << 40)


# Classes --------------------------------------------------------------------------------------------------------------
class ScoreMatrix:
    """
    Represents a substitution matrix for alignment.

    The matrix is indexed by position in ``symbols``. For the DP kernels a 256 x 256 lookup indexed directly by
    ASCII code is derived once; symbols outside the alphabet score the matrix minimum.

    Attributes:
        _data (np.ndarray): The raw matrix data.

    Examples:
        >>> m = ScoreMatrix.blosum62()
        >>> m.score('M', 'M'), m.score('S', 'A')
        (5, 1)
    """
    _DTYPE = np.int8
    AMINO = b'ACDEFGHIKLMNPQRSTVWY'
    BLOSUM_SYMBOLS = b'ARNDCQEGHILKMFPSTWYV'
    __slots__ = ('_data', '_symbols', '_lookup')

    def __init__(self, data: Union[np.ndarray, Iterable], symbols: bytes = AMINO):
        if isinstance(symbols, str): symbols = symbols.encode('ascii')
        if len(set(symbols)) != len(symbols): raise ValueError(f'Matrix symbols "{symbols}" are not unique')
        self._data = np.ascontiguousarray(data, dtype=self._DTYPE)
        if self._data.shape != (len(symbols), len(symbols)):
            raise ValueError(f'Matrix shape {self._data.shape} does not match {len(symbols)} symbols')
        self._data.flags.writeable = False
        self._symbols = bytes(symbols)
        self._lookup = self._build_lookup()

    def __getitem__(self, item): return self._data[item]
    def __array__(self, dtype=None, copy=None): return self._data.astype(dtype, copy=False) if dtype else self._data
    def __repr__(self): return f"ScoreMatrix{self._data.shape}"
    def __contains__(self, symbol: Union[str, bytes]) -> bool:
        if isinstance(symbol, str): symbol = symbol.encode('ascii')
        return len(symbol) == 1 and symbol in self._symbols
    @property
    def shape(self): return self._data.shape
    @property
    def symbols(self) -> bytes: return self._symbols

    @property
    def lookup(self) -> np.ndarray:
        """Read-only int32 table of shape (256, 256) indexed by ASCII codes."""
        return self._lookup

    def _build_lookup(self) -> np.ndarray:
        lookup = np.full((256, 256), self._data.min(), dtype=np.int32)
        codes = np.frombuffer(self._symbols, dtype=np.uint8)
        lookup[np.ix_(codes, codes)] = self._data
        lookup.flags.writeable = False
        return lookup

    def score(self, a: Union[str, bytes], b: Union[str, bytes]) -> int:
        """Score for aligning residue ``a`` against residue ``b``."""
        return int(self._lookup[ord(a), ord(b)])

    def unknown(self, residues: bytes) -> bytes:
        """Returns the distinct symbols in ``residues`` that the matrix does not score explicitly."""
        return bytes(sorted(set(residues).difference(self._symbols)))

    @classmethod
    def blosum62(cls):
        """Returns the BLOSUM62 matrix, rows and columns in NCBI order (``BLOSUM_SYMBOLS``)."""
        data = [
            4, -1, -2, -2, 0, -1, -1, 0, -2, -1, -1, -1, -1, -2, -1, 1, 0, -3, -2, 0,
            -1, 5, 0, -2, -3, 1, 0, -2, 0, -3, -2, 2, -1, -3, -2, -1, -1, -3, -2, -3,
            -2, 0, 6, 1, -3, 0, 0, 0, 1, -3, -3, 0, -2, -3, -2, 1, 0, -4, -2, -3,
            -2, -2, 1, 6, -3, 0, 2, -1, -1, -3, -4, -1, -3, -3, -1, 0, -1, -4, -3, -3,
            0, -3, -3, -3, 9, -3, -4, -3, -3, -1, -1, -3, -1, -2, -3, -1, -1, -2, -2, -1,
            -1, 1, 0, 0, -3, 5, 2, -2, 0, -3, -2, 1, 0, -3, -1, 0, -1, -2, -1, -2,
            -1, 0, 0, 2, -4, 2, 5, -2, 0, -3, -3, 1, -2, -3, -1, 0, -1, -3, -2, -2,
            0, -2, 0, -1, -3, -2, -2, 6, -2, -4, -4, -2, -3, -3, -2, 0, -2, -2, -3, -3,
            -2, 0, 1, -1, -3, 0, 0, -2, 8, -3, -3, -1, -2, -1, -2, -1, -2, -2, 2, -3,
            -1, -3, -3, -3, -1, -3, -3, -4, -3, 4, 2, -3, 1, 0, -3, -2, -1, -3, -1, 3,
            -1, -2, -3, -4, -1, -2, -3, -4, -3, 2, 4, -2, 2, 0, -3, -2, -1, -2, -1, 1,
            -1, 2, 0, -1, -3, 1, 1, -2, -1, -3, -2, 5, -1, -3, -1, 0, -1, -3, -2, -2,
            -1, -1, -2, -3, -1, 0, -2, -3, -2, 1, 2, -1, 5, 0, -2, -1, -1, -1, -1, 1,
            -2, -3, -3, -3, -2, -3, -3, -3, -1, 0, 0, -3, 0, 6, -4, -2, -2, 1, 3, -1,
            -1, -2, -2, -1, -3, -1, -1, -2, -2, -3, -3, -1, -2, -4, 7, -1, -1, -4, -3, -2,
            1, -1, 1, 0, -1, 0, 0, 0, -1, -2, -2, 0, -1, -2, -1, 4, 1, -3, -2, -2,
            0, -1, 0, -1, -1, -1, -1, -2, -2, -1, -1, -1, -1, -2, -1, 1, 5, -2, -2, 0,
            -3, -3, -4, -4, -2, -2, -3, -2, -2, -3, -2, -3, -1, 1, -4, -3, -2, 11, 2, -3,
            -2, -2, -2, -3, -2, -1, -2, -3, 2, -1, -1, -2, -1, 3, -3, -2, -2, 2, 7, -1,
            0, -3, -3, -3, -1, -2, -2, -3, -3, 3, 1, -2, 1, -1, -2, -2, 0, -3, -1, 4
        ]
        return cls(np.array(data, dtype=cls._DTYPE).reshape(20, 20), cls.BLOSUM_SYMBOLS)

    @classmethod
    def build(cls, symbols: bytes = AMINO, match: int = 1, mismatch: int = -1):
        """Builds a simple match/mismatch matrix."""
        m = np.full((len(symbols), len(symbols)), mismatch, dtype=cls._DTYPE)
        np.fill_diagonal(m, match)
        return cls(m, symbols)


class GlobalAligner:
    """
    Affine-gap global aligner.

    Each instance owns scratch buffers that grow to the largest problem seen and are reused across calls, so an
    aligner must not be shared between threads; give every worker its own.

    A gap run of ``k`` residues scores ``gap_open + k * gap_extend``, with no free end gaps.

    Examples:
        >>> aligner = GlobalAligner(ScoreMatrix.blosum62(), gap_open=-10, gap_extend=-1)
        >>> aln = aligner.align(b'MSK', b'MAK')
        >>> aln.operation_string(), aln.score
        ('MSM', 11)
    """
    __slots__ = ('_score_matrix', '_lookup', 'gap_open', 'gap_extend', '_trace', '_scores', '_ops')

    def __init__(self, score_matrix: ScoreMatrix = None, gap_open: int = -10, gap_extend: int = -1):
        if gap_open > 0 or gap_extend > 0:
            raise ValueError(f'Gap penalties must be non-positive, got open={gap_open}, extend={gap_extend}')
        self._score_matrix = score_matrix or ScoreMatrix.blosum62()
        self._lookup = self._score_matrix.lookup
        self.gap_open = int(gap_open)
        self.gap_extend = int(gap_extend)
        self._trace = np.empty(0, dtype=np.uint8)
        self._scores = np.empty((3, 0), dtype=np.int64)
        self._ops = np.empty(0, dtype=np.uint8)

    def __repr__(self): return f'GlobalAligner(gap_open={self.gap_open}, gap_extend={self.gap_extend})'

    @property
    def score_matrix(self) -> ScoreMatrix: return self._score_matrix

    def _buffers(self, rows: int, cols: int) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
        """Returns (trace, scores, ops) views sized for the problem, growing the backing arrays when needed."""
        if rows * cols > len(self._trace):
            self._trace = np.empty(max(rows * cols, 2 * len(self._trace)), dtype=np.uint8)
        if cols > self._scores.shape[1]:
            self._scores = np.empty((3, max(cols, 2 * self._scores.shape[1])), dtype=np.int64)
        if rows + cols > len(self._ops):
            self._ops = np.empty(max(rows + cols, 2 * len(self._ops)), dtype=np.uint8)
        return self._trace[:rows * cols].reshape(rows, cols), self._scores[:, :cols], self._ops

    def score(self, x: Union[Record, bytes, str, np.ndarray], y: Union[Record, bytes, str, np.ndarray]) -> int:
        """Optimal global score without building the operations."""
        x, y = _as_array(x), _as_array(y)
        trace, scores, _ = self._buffers(len(x) + 1, len(y) + 1)
        best, _ = _global_fill_kernel(x, y, self._lookup, self.gap_open, self.gap_extend,
                                      scores[0], scores[1], scores[2], trace)
        return int(best)

    def align(self, x: Union[Record, bytes, str, np.ndarray], y: Union[Record, bytes, str, np.ndarray]) -> Alignment:
        """
        Computes the optimal global alignment of x against y.

        Args:
            x: First sequence.
            y: Second sequence.

        Returns:
            An Alignment whose spans are where the traceback started and stopped.
        """
        x, y = _as_array(x), _as_array(y)
        trace, scores, ops = self._buffers(len(x) + 1, len(y) + 1)
        best, state = _global_fill_kernel(x, y, self._lookup, self.gap_open, self.gap_extend,
                                          scores[0], scores[1], scores[2], trace)
        n_ops, x_start, y_start = _global_traceback_kernel(x, y, trace, state, ops)
        return Alignment(best, x_start, len(x), y_start, len(y), len(x), len(y), ops[:n_ops].copy(),
                         AlignmentMode.GLOBAL)


# Functions ------------------------------------------------------------------------------------------------------------
def _as_array(seq: Union[Record, bytes, str, np.ndarray]) -> np.ndarray:
    if isinstance(seq, Record): return seq.array
    if isinstance(seq, str): seq = seq.encode('ascii')
    if isinstance(seq, (bytes, bytearray)): return np.frombuffer(seq, dtype=np.uint8)
    return np.ascontiguousarray(seq, dtype=np.uint8)


# Kernels --------------------------------------------------------------------------------------------------------------
@jit(nopython=True, cache=True, nogil=True)
def _global_fill_kernel(x, y, matrix, gap_open, gap_extend, M, Ix, Iy, trace):
    """
    Fills the Gotoh recurrences row by row, keeping only the previous row of scores.

    M, Ix, Iy: int64 rows of length len(y) + 1, overwritten in place.
    trace: uint8 (len(x) + 1, len(y) + 1) matrix of ``Trace`` flags.
    Returns (best score, best state) at the bottom-right cell.
    """
    rows = len(x) + 1
    cols = len(y) + 1
    first = gap_open + gap_extend

    M[0] = 0
    Ix[0] = _NEG_INF
    Iy[0] = _NEG_INF
    trace[0, 0] = 0
    for c in range(1, cols):
        M[c] = _NEG_INF
        Ix[c] = _NEG_INF
        Iy[c] = gap_open + c * gap_extend
        trace[0, c] = _IY_EXT if c > 1 else 0

    for r in range(1, rows):
        # (r-1, c-1) values, starting at column 0
        diag_m = M[0]
        diag_x = Ix[0]
        diag_y = Iy[0]

        M[0] = _NEG_INF
        Ix[0] = gap_open + r * gap_extend
        Iy[0] = _NEG_INF
        trace[r, 0] = _IX_EXT if r > 1 else 0

        char_x = x[r - 1]
        for c in range(1, cols):
            up_m = M[c]
            up_x = Ix[c]
            up_y = Iy[c]

            # Ties: M over gap in x (Iy) over gap in y (Ix)
            best = diag_m
            flags = _M
            if diag_y > best:
                best = diag_y
                flags = _IY
            if diag_x > best:
                best = diag_x
                flags = _IX
            m = best + matrix[char_x, y[c - 1]]

            ix_open = up_m + first
            ix_ext = up_x + gap_extend
            if ix_ext >= ix_open:
                ix = ix_ext
                flags |= _IX_EXT
            else:
                ix = ix_open

            iy_open = M[c - 1] + first
            iy_ext = Iy[c - 1] + gap_extend
            if iy_ext >= iy_open:
                iy = iy_ext
                flags |= _IY_EXT
            else:
                iy = iy_open

            diag_m = up_m
            diag_x = up_x
            diag_y = up_y
            M[c] = m
            Ix[c] = ix
            Iy[c] = iy
            trace[r, c] = flags

    best = M[cols - 1]
    state = _M
    if Iy[cols - 1] > best:
        best = Iy[cols - 1]
        state = _IY
    if Ix[cols - 1] > best:
        best = Ix[cols - 1]
        state = _IX
    return best, state


@jit(nopython=True, cache=True, nogil=True)
def _global_traceback_kernel(x, y, trace, state, ops):
    """
    Walks the trace flags from the bottom-right cell back to the origin.

    Writes operation codes into ``ops`` start to end and returns (n_ops, x_stop, y_stop).
    """
    r = len(x)
    c = len(y)
    k = 0
    while r > 0 or c > 0:
        flags = trace[r, c]
        if state == _M:
            ops[k] = _MATCH if x[r - 1] == y[c - 1] else _SUBST
            state = flags & _SRC_MASK
            r -= 1
            c -= 1
        elif state == _IX:
            ops[k] = _DEL
            state = _IX if flags & _IX_EXT else _M
            r -= 1
        else:
            ops[k] = _INS
            state = _IY if flags & _IY_EXT else _M
            c -= 1
        k += 1

    for i in range(k // 2):
        tmp = ops[i]
        ops[i] = ops[k - 1 - i]
        ops[k - 1 - i] = tmp
    return k, r, c
