"""Immutable protein sequence record shared read-only between alignment workers."""
from typing import Union

import numpy as np


# Classes --------------------------------------------------------------------------------------------------------------
class Record:
    """
    A named protein sequence.

    Records are created once by the reader and then shared by every worker that aligns them,
    so they are frozen after construction.

    Args:
        residues: The residue symbols as bytes (or str), expected uppercase.
        id_: Record identifier.
        desc: Optional description line.

    Examples:
        >>> rec = Record(b'MSK', id_=b'A')
        >>> len(rec)
        3
        >>> rec.id
        b'A'
    """
    __slots__ = ('id', 'description', 'residues', '_array')
    def __init__(self, residues: Union[bytes, bytearray, str], id_: Union[bytes, str] = b'',
                 desc: Union[bytes, str] = b''):
        if isinstance(residues, str): residues = residues.encode('ascii')
        if isinstance(id_, str): id_ = id_.encode()
        if isinstance(desc, str): desc = desc.encode()
        residues = bytes(residues)
        array = np.frombuffer(residues, dtype=np.uint8)
        array.flags.writeable = False
        object.__setattr__(self, 'residues', residues)
        object.__setattr__(self, 'id', id_)
        object.__setattr__(self, 'description', desc)
        object.__setattr__(self, '_array', array)

    def __setattr__(self, key, value): raise AttributeError(f'{self.__class__.__name__} is immutable')
    def __delattr__(self, key): raise AttributeError(f'{self.__class__.__name__} is immutable')
    def __str__(self): return self.id.decode(errors='ignore')
    def __repr__(self) -> str: return f'Record({self.id!r}, {len(self)} aa)'
    def __len__(self) -> int: return len(self.residues)
    def __hash__(self) -> int: return hash((self.id, self.residues))
    def __eq__(self, other) -> bool:
        if isinstance(other, Record): return self.id == other.id and self.residues == other.residues
        return False

    @property
    def array(self) -> np.ndarray:
        """Read-only uint8 view of the residues (ASCII codes)."""
        return self._array

    def upper(self) -> 'Record':
        """Returns a record with uppercase residues, or self if already uppercase."""
        if self.residues.isupper() or not self.residues: return self
        return Record(self.residues.upper(), self.id, self.description)
