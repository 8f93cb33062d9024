"""Logging for crew runs.

``setup_logger`` configures the ``crewgate`` logger from a ``CrewConfig``:
a rich console handler on stderr and a rotating file handler. Records
emitted while a worker runs a task carry that task's name, so interleaved
lines from concurrent tasks stay attributable in the log file.
"""

from __future__ import annotations

import contextvars
import logging
from contextlib import contextmanager
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import TYPE_CHECKING, Iterator, Optional, Union

from rich.console import Console
from rich.logging import RichHandler

if TYPE_CHECKING:
    from .config import CrewConfig

__all__ = ["setup_logger", "get_logger", "task_context", "current_task"]

ROOT_LOGGER = "crewgate"
DEFAULT_LOG_FILE = Path("~/.crewgate/logs/crew.log").expanduser()
FILE_FORMAT = "%(asctime)s [%(levelname)s] %(name)s [%(task)s] (%(threadName)s): %(message)s"
MAX_LOG_BYTES = 5 * 1024 * 1024  # 5MB
LOG_BACKUP_COUNT = 3

# Per-task progress lines the crew renderer already shows on screen.
WORKER_LOGGERS = ("crewgate.scheduler", "crewgate.worker")
THIRD_PARTY_LOGGERS = ("litellm", "LiteLLM", "httpx", "openai")

_current_task: contextvars.ContextVar[str] = contextvars.ContextVar("crewgate_log_task", default="-")


def current_task() -> str:
    return _current_task.get()


@contextmanager
def task_context(name: str) -> Iterator[None]:
    """Tag every record logged in this block (on this thread) with ``name``."""
    token = _current_task.set(name)
    try:
        yield
    finally:
        _current_task.reset(token)


class TaskContextFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        record.task = _current_task.get()
        return True


class WorkerNoiseFilter(logging.Filter):
    """Drop scheduler/worker INFO chatter from the console; warnings still pass."""

    def filter(self, record: logging.LogRecord) -> bool:
        if record.levelno >= logging.WARNING:
            return True
        return not record.name.startswith(WORKER_LOGGERS)


def setup_logger(
    config: Optional["CrewConfig"] = None,
    console: Optional[Console] = None,
) -> logging.Logger:
    """Configure the ``crewgate`` logger for one CLI or library run.

    Args:
        config: Source of ``verbose`` and ``log_file``; defaults when omitted.
            - ``verbose``: console shows INFO and the file records DEBUG;
              otherwise the console shows WARNING+ and the file INFO+.
            - ``log_file``: ``None``/``True`` for ``~/.crewgate/logs/crew.log``,
              ``False`` to disable, or a custom path.
        console: Rich console for log output; a stderr console by default.
    """
    verbose = bool(config.verbose) if config is not None else False
    log_file = config.log_file if config is not None else None

    logger = logging.getLogger(ROOT_LOGGER)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    console_level = logging.INFO if verbose else logging.WARNING
    file_level = logging.DEBUG if verbose else logging.INFO
    logger.setLevel(file_level)
    logger.propagate = False

    console_handler = RichHandler(
        console=console or Console(stderr=True),
        level=console_level,
        show_time=False,
        show_path=False,
        markup=False,
    )
    console_handler.addFilter(WorkerNoiseFilter())
    logger.addHandler(console_handler)

    log_path = _resolve_log_path(log_file)
    if log_path is not None:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            log_path,
            maxBytes=MAX_LOG_BYTES,
            backupCount=LOG_BACKUP_COUNT,
            encoding="utf-8",
        )
        file_handler.setLevel(file_level)
        file_handler.addFilter(TaskContextFilter())
        file_handler.setFormatter(logging.Formatter(FILE_FORMAT))
        logger.addHandler(file_handler)

    for name in THIRD_PARTY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    return logger


def get_logger(name: str) -> logging.Logger:
    """Return a logger by name without changing its configuration."""
    return logging.getLogger(name)


def _resolve_log_path(log_file: Union[str, Path, bool, None]) -> Optional[Path]:
    if log_file is False:
        return None
    if log_file is None or log_file is True:
        return DEFAULT_LOG_FILE
    return Path(log_file).expanduser()
