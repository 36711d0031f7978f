"""Diagnostic logging for ollama-chat.

All loggers hang below the ``ollama_chat`` logger. The chat screen belongs to
the session's rich console, so diagnostics go to a log file when one is set
(``logging.file`` or ``OLLAMA_CHAT_LOG``) and to stderr only when stderr is a
terminal. Levels, loudest last: error, warning, info, verbose, debug, trace.
"""

from __future__ import annotations

import logging
import os
import sys
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from ollama_chat.config.schema import LoggingConfig

TRACE = 5  # request bodies
VERBOSE = 15

logging.addLevelName(TRACE, "TRACE")
logging.addLevelName(VERBOSE, "VERBOSE")

logger = logging.getLogger("ollama_chat")

LEVEL_NAMES = {
    "trace": TRACE,
    "debug": logging.DEBUG,
    "verbose": VERBOSE,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "critical": logging.CRITICAL,
}

# logging.verbose: 0 errors only ... 4 everything
VERBOSITY = (logging.ERROR, logging.WARNING, logging.INFO, VERBOSE, TRACE)

LOG_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"


class _Formatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        record.levelname = record.levelname.lower()
        return super().format(record)


def resolve_level(config: LoggingConfig | None, debug: bool = False) -> int:
    """Effective level: debug mode, then ``verbose``, then ``level``, else WARNING."""
    if debug:
        return logging.DEBUG
    if config is None:
        return logging.WARNING
    if config.verbose is not None:
        return VERBOSITY[min(max(config.verbose, 0), len(VERBOSITY) - 1)]
    if config.level:
        return LEVEL_NAMES.get(config.level.lower(), logging.WARNING)
    return logging.WARNING


def _handlers(log_path: str | None) -> list[logging.Handler]:
    if log_path:
        try:
            return [logging.FileHandler(os.path.expanduser(log_path), encoding="utf-8")]
        except OSError as e:
            print(f"ollama-chat: cannot open log file {log_path!r}: {e}", file=sys.stderr)
    if sys.stderr.isatty():
        return [logging.StreamHandler(sys.stderr)]
    return []


def setup_logging(config: LoggingConfig | None = None, debug: bool = False) -> int:
    """Configure the ``ollama_chat`` logger and return its level.

    Calling it again replaces the handlers installed by the previous call.
    """
    level = resolve_level(config, debug)
    for handler in [h for h in logger.handlers if getattr(h, "_ollama_chat", False)]:
        logger.removeHandler(handler)
        handler.close()

    log_path = config.file if config and config.file else os.environ.get("OLLAMA_CHAT_LOG")
    formatter = _Formatter(LOG_FORMAT, datefmt="%H:%M:%S")
    for handler in _handlers(log_path):
        handler._ollama_chat = True
        handler.setLevel(level)
        handler.setFormatter(formatter)
        logger.addHandler(handler)
    logger.setLevel(level)
    return level


def get_logger(name: str | None = None) -> logging.Logger:
    """The package logger, or its child ``name`` (e.g. "fetcher")."""
    return logger.getChild(name) if name else logger
