"""
All-vs-all global alignment of protein sequences with per-pair identity statistics.
"""
from importlib.metadata import version as _load_version, PackageNotFoundError


# Exceptions and Warnings ----------------------------------------------------------------------------------------------
class AllvsallWarning(Warning): pass
class UnknownResidueWarning(AllvsallWarning): pass
class EmptyInputWarning(AllvsallWarning): pass


# Constants ------------------------------------------------------------------------------------------------------------
try: __version__ = _load_version(__name__)
except PackageNotFoundError: __version__ = '0.0.0'
