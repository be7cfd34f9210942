"""Data containers: sequence records and alignment results."""
from allvsall.containers.record import Record
from allvsall.containers.alignment import (Alignment, AlignmentMode, AlignmentOperation, InvariantError,
                                           GlobalAlignmentError)
