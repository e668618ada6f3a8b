"""
Logging configuration for songbook.

Quiet by default; debug output to stderr on request; a persistent
operations log inside the data root.
"""

import logging
import os
import sys
import warnings
from logging.handlers import RotatingFileHandler
from pathlib import Path


def configure_quiet_mode(quiet: bool = True):
    """
    Configure logging to suppress verbose library output.

    This silences uvicorn access lines, asyncio debug chatter and
    Python warnings.

    Args:
        quiet: If True, suppress verbose output. If False, show everything.
    """
    if quiet:
        warnings.filterwarnings("ignore")
        logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
        logging.getLogger("asyncio").setLevel(logging.WARNING)
        logging.getLogger("httpx").setLevel(logging.WARNING)
    else:
        warnings.filterwarnings("default")


def enable_debug_mode():
    """Enable debug-level logging to stderr."""
    warnings.filterwarnings("default")

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)

    # Add stderr handler if not already present
    if not any(isinstance(h, logging.StreamHandler) and getattr(h, "stream", None) is sys.stderr
               for h in root_logger.handlers):
        handler = logging.StreamHandler(sys.stderr)
        handler.setLevel(logging.DEBUG)
        handler.setFormatter(logging.Formatter(
            "%(asctime)s %(levelname)s %(name)s: %(message)s",
            datefmt="%H:%M:%S"
        ))
        root_logger.addHandler(handler)

    for name in ("songbook", "uvicorn", "uvicorn.access"):
        logging.getLogger(name).setLevel(logging.DEBUG)


def configure_ops_log(data_root, level: str = "INFO"):
    """Configure a persistent operations log for a songbook data root.

    Writes to {data_root}/songbook-ops.log using a rotating file handler
    (1MB max, 3 backups). Always active regardless of --verbose.
    Returns the handler so it can be removed on close().
    """
    log_path = Path(data_root) / "songbook-ops.log"
    log_path.parent.mkdir(parents=True, exist_ok=True)
    handler = RotatingFileHandler(
        str(log_path),
        maxBytes=1_000_000,
        backupCount=3,
    )
    handler.setLevel(getattr(logging, level.upper(), logging.INFO))
    handler.setFormatter(logging.Formatter(
        "%(asctime)s %(levelname)s %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    ))

    songbook_logger = logging.getLogger("songbook")
    songbook_logger.addHandler(handler)
    # Ensure songbook logger allows INFO through even in quiet mode
    if songbook_logger.level == logging.NOTSET or songbook_logger.level > handler.level:
        songbook_logger.setLevel(handler.level)

    return handler


def remove_ops_log(handler) -> None:
    """Detach and close a handler returned by configure_ops_log()."""
    if handler is None:
        return
    logging.getLogger("songbook").removeHandler(handler)
    handler.close()


def verbose_from_env() -> bool:
    """True when SONGBOOK_VERBOSE=1 asks for debug output."""
    return os.environ.get("SONGBOOK_VERBOSE") == "1"
