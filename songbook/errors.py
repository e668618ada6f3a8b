"""
Error taxonomy and error logging for songbook.

Components raise the exceptions defined here; the coordinator turns them
into result descriptors. Full stack traces go to an error log file so
callers only ever see clean messages.
"""

import os
import traceback
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from .types import Status


class SongbookError(Exception):
    """Base class for every error the engine reports to callers."""

    status = Status.INTERNAL_ERROR

    def __init__(self, message: str = "", *, song_id: Optional[str] = None):
        super().__init__(message)
        self.song_id = song_id


class Forbidden(SongbookError):
    """The presented capability key does not allow the operation."""

    status = Status.FORBIDDEN


class ValidationError(SongbookError):
    """Mandatory fields are missing or an identifier is malformed."""

    status = Status.BAD_REQUEST


class SongNotFound(SongbookError):
    """The operation targets an ID with no document behind it."""

    status = Status.NOT_FOUND


class QuerySyntaxError(SongbookError):
    """A search query could not be parsed."""

    status = Status.BAD_REQUEST


class StorageError(SongbookError):
    """Reading or writing the document store failed."""


class IndexFailure(SongbookError):
    """The search index could not be read or mutated."""


def _error_log_path() -> Path:
    """Resolve error log path, respecting DATA_ROOT."""
    return Path(os.environ.get("DATA_ROOT") or "data") / "songbook-errors.log"


def log_exception(exc: Exception, context: str = "", log_path: Optional[Path] = None) -> Path:
    """
    Log exception with full traceback to file.

    Args:
        exc: The exception that occurred
        context: Optional context string (e.g., operation kind and ID)
        log_path: Explicit log file; defaults to the data root's error log

    Returns:
        Path to the error log file
    """
    log_path = log_path or _error_log_path()
    timestamp = datetime.now(timezone.utc).isoformat()
    try:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(log_path, os.O_WRONLY | os.O_CREAT | os.O_APPEND, 0o600)
        with os.fdopen(fd, "a") as f:
            f.write(f"\n{'='*60}\n")
            f.write(f"[{timestamp}]")
            if context:
                f.write(f" {context}")
            f.write("\n")
            f.write("".join(traceback.format_exception(type(exc), exc, exc.__traceback__)))
    except OSError:
        pass  # Can't write error log, don't crash over it
    return log_path
