"""
Songbook: song documents with access control and full-text search.

Quick start:
    from songbook import Songbook, Operation, OperationKind

    sb = Songbook("data")
    result = await sb.create(text, key=sb.admin_key)
    hits = await sb.search("yesterday")
"""

from .api import Songbook
from .errors import SongbookError
from .types import Operation, OperationKind, Result, Status

__version__ = "0.1.0"

__all__ = [
    "Operation",
    "OperationKind",
    "Result",
    "Songbook",
    "SongbookError",
    "Status",
    "__version__",
]
