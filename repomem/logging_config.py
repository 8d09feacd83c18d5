"""
Logging configuration for repomem.

MCP talks JSON-RPC over stdout, so every log line goes to stderr
(or to the operations log file), never to stdout.
"""

import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def _has_stderr_handler(logger: logging.Logger) -> bool:
    return any(
        isinstance(h, logging.StreamHandler) and getattr(h, "stream", None) is sys.stderr
        for h in logger.handlers
    )


def configure_logging(verbose: bool = False) -> None:
    """
    Send repomem logs to stderr.

    INFO by default; DEBUG with ``verbose`` or REPOMEM_VERBOSE=1.
    Calling it again only adjusts the level.
    """
    if os.environ.get("REPOMEM_VERBOSE") == "1":
        verbose = True
    level = logging.DEBUG if verbose else logging.INFO

    repomem_logger = logging.getLogger("repomem")
    repomem_logger.setLevel(level)

    if not _has_stderr_handler(repomem_logger):
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt="%H:%M:%S"))
        repomem_logger.addHandler(handler)

    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.DEBUG if verbose else logging.WARNING)


def enable_debug_mode() -> None:
    """Enable debug-level logging to stderr."""
    configure_logging(verbose=True)


def configure_ops_log(home):
    """Configure a persistent operations log.

    Writes to {home}/repomem-ops.log using a rotating file handler
    (1MB max, 3 backups). Returns the handler so it can be removed
    on shutdown.
    """
    log_path = Path(home) / "repomem-ops.log"
    log_path.parent.mkdir(parents=True, exist_ok=True)
    handler = RotatingFileHandler(
        str(log_path),
        maxBytes=1_000_000,
        backupCount=3,
    )
    handler.setLevel(logging.INFO)
    handler.setFormatter(logging.Formatter(
        "%(asctime)s %(levelname)s %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    ))

    repomem_logger = logging.getLogger("repomem")
    repomem_logger.addHandler(handler)
    # Ensure INFO gets through even when stderr logging is quieter
    if repomem_logger.level == logging.NOTSET or repomem_logger.level > logging.INFO:
        repomem_logger.setLevel(logging.INFO)

    return handler
