"""
Traceback log for failures that end a command or the server.

Users see one line; the full stack trace goes to
``<home>/repomem-errors.log``.
"""

import logging
import os
import traceback
from pathlib import Path
from typing import Optional

from .config import get_home_dir
from .types import utc_now

logger = logging.getLogger(__name__)

ERROR_LOG_FILENAME = "repomem-errors.log"
SEPARATOR = "=" * 60


def error_log_path(home: Optional[Path] = None) -> Path:
    return (home if home is not None else get_home_dir()) / ERROR_LOG_FILENAME


def format_entry(exc: BaseException, context: str = "") -> str:
    """Separator, a ``[timestamp] context`` header, then the traceback."""
    header = f"[{utc_now()}] {context}".rstrip()
    trace = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
    return f"\n{SEPARATOR}\n{header}\n{trace}"


def log_exception(exc: BaseException, context: str = "", *, home: Optional[Path] = None) -> Path:
    """
    Append ``exc`` and its traceback to the error log.

    The file holds request content at times, so it is created readable
    by the owner only. Never raises; an unwritable log is reported on
    the logger instead.

    Returns:
        Path to the error log file
    """
    log_path = error_log_path(home)
    try:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(log_path, os.O_WRONLY | os.O_CREAT | os.O_APPEND, 0o600)
        with os.fdopen(fd, "a", encoding="utf-8") as f:
            f.write(format_entry(exc, context))
    except OSError as e:
        logger.warning("Cannot write error log %s: %s", log_path, e)
    return log_path
