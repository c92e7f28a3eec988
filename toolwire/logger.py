"""Logging setup for the ``toolwire`` logger tree.

Core classes never configure logging; they take an optional logger and
otherwise log to their module logger. Locally handled faults are logged with
the ``FaultKind`` value as the first argument (``"%s: ..."``), which lets
``FaultCounter`` tally them for ``/stats`` whatever the console level is.
"""

from __future__ import annotations

import logging
from collections import Counter
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Dict, Optional, Union

from .errors import FaultKind

__all__ = ["setup_logger", "get_logger", "resolve_logger", "fault_counts", "FaultCounter"]

ROOT_LOGGER = "toolwire"
DEFAULT_LOG_FILE = Path("~/.toolwire/logs/toolwire.log").expanduser()
CONSOLE_FORMAT = "[%(levelname).1s] %(message)s"
FILE_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
MAX_LOG_BYTES = 5 * 1024 * 1024
LOG_BACKUP_COUNT = 3
QUIET_LOGGERS = ("litellm", "LiteLLM", "httpx", "httpcore", "openai")

_FAULT_VALUES = frozenset(kind.value for kind in FaultKind)


class FaultCounter(logging.Handler):
    """Counts records whose first argument names a ``FaultKind``."""

    def __init__(self):
        super().__init__(level=logging.DEBUG)
        self.counts: Counter = Counter()

    def emit(self, record: logging.LogRecord):
        args = record.args
        if isinstance(args, tuple) and args and args[0] in _FAULT_VALUES:
            self.counts[args[0]] += 1

    def reset(self):
        self.counts.clear()


_counter = FaultCounter()


def setup_logger(
    verbose: bool = False,
    log_file: Union[str, Path, bool, None] = None,
    name: str = ROOT_LOGGER,
) -> logging.Logger:
    """Configure the ``toolwire`` logger tree. Safe to call repeatedly.

    ``verbose`` lowers the console and file level to DEBUG (otherwise
    WARNING and INFO). ``log_file`` is ``None``/``True`` for the default
    rotating log, ``False`` for none, or a path.
    """
    logger = logging.getLogger(name)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        if handler is not _counter:
            handler.close()

    # The logger itself passes everything; handlers filter.
    logger.setLevel(logging.DEBUG)
    logger.propagate = False

    console = logging.StreamHandler()
    console.setLevel(logging.DEBUG if verbose else logging.WARNING)
    console.setFormatter(logging.Formatter(CONSOLE_FORMAT))
    logger.addHandler(console)
    logger.addHandler(_counter)

    path = _log_path(log_file)
    if path is not None:
        path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(path, maxBytes=MAX_LOG_BYTES,
                                           backupCount=LOG_BACKUP_COUNT, encoding="utf-8")
        file_handler.setLevel(logging.DEBUG if verbose else logging.INFO)
        file_handler.setFormatter(logging.Formatter(FILE_FORMAT))
        logger.addHandler(file_handler)

    for noisy in QUIET_LOGGERS:
        logging.getLogger(noisy).setLevel(logging.WARNING)
    return logger


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


def resolve_logger(logger: Optional[logging.Logger], name: str) -> logging.Logger:
    """The injected logger when given, else the module logger ``name``."""
    return logger if logger is not None else logging.getLogger(name)


def fault_counts() -> Dict[str, int]:
    """Faults logged since ``setup_logger`` ran, by ``FaultKind`` value."""
    return dict(_counter.counts)


def _log_path(log_file: Union[str, Path, bool, None]) -> Path | None:
    if log_file is False:
        return None
    if log_file is None or log_file is True:
        return DEFAULT_LOG_FILE
    return Path(log_file).expanduser()
