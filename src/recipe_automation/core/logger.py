"""Logging for the recipe automation engine.

Every module logs through :func:`get_logger`, which places loggers under the
``recipe_automation`` namespace. :func:`setup_logging` wires the root logger
to a Rich console handler and, when ``LoggingConfig.log_file`` is set, to a
size-rotated file. APScheduler and httpx log every job run and request at
INFO, so their loggers are held at ``LoggingConfig.library_level``.
"""

from __future__ import annotations

import logging
from contextlib import suppress
from logging.handlers import RotatingFileHandler
from pathlib import Path

from rich.console import Console
from rich.logging import RichHandler

from .config import LoggingConfig

LOGGER_NAMESPACE = "recipe_automation"
LIBRARY_LOGGERS = ("apscheduler", "httpx", "httpcore")

_loggers: dict[str, logging.Logger] = {}
_current_level: int = logging.INFO

console = Console()


class ReleasingFileHandler(RotatingFileHandler):
    """Rotating file handler that holds no descriptor between records."""

    def emit(self, record: logging.LogRecord) -> None:  # type: ignore[override]
        try:
            super().emit(record)
        finally:
            try:
                self.flush()
            finally:
                # delay=True reopens the file on the next record
                self.close()


def _reset_handlers(root: logging.Logger) -> None:
    for handler in list(root.handlers):
        with suppress(Exception):
            handler.flush()
        with suppress(Exception):
            handler.close()
    root.handlers.clear()


def _console_handler(level: int) -> RichHandler:
    # Recipe names and trigger payloads may contain [brackets]
    handler = RichHandler(
        console=console,
        show_time=True,
        show_path=True,
        markup=False,
        rich_tracebacks=True,
    )
    handler.setLevel(level)
    return handler


def _file_handler(config: LoggingConfig, level: int) -> ReleasingFileHandler:
    log_path = Path(config.log_file or "")
    log_path.parent.mkdir(parents=True, exist_ok=True)
    handler = ReleasingFileHandler(
        log_path,
        maxBytes=config.max_bytes,
        backupCount=config.backup_count,
        encoding="utf-8",
        delay=True,
    )
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(config.format))
    return handler


def setup_logging(config: LoggingConfig | None = None) -> None:
    """Configure process-wide logging for the engine.

    Safe to call repeatedly: previous root handlers are closed and replaced,
    and loggers already handed out by :func:`get_logger` follow the new level.

    Args:
        config: Logging settings; defaults when omitted.
    """
    global _current_level

    config = config or LoggingConfig()
    level = getattr(logging, config.level)

    root = logging.getLogger()
    _reset_handlers(root)
    root.setLevel(level)
    root.addHandler(_console_handler(level))
    if config.log_file:
        root.addHandler(_file_handler(config, level))

    logging.getLogger(LOGGER_NAMESPACE).setLevel(level)
    library_level = max(level, getattr(logging, config.library_level))
    for name in LIBRARY_LOGGERS:
        logging.getLogger(name).setLevel(library_level)

    _current_level = level
    for existing in _loggers.values():
        existing.setLevel(level)

    logger = get_logger("setup")
    logger.info("Logging configured: level=%s", config.level)
    if config.log_file:
        logger.info("Writing logs to %s", config.log_file)


def get_logger(name: str) -> logging.Logger:
    """Return the engine logger for ``name``, e.g. ``"automation.engine"``.

    Names already under the package namespace are used as given.
    """
    if not name.startswith(f"{LOGGER_NAMESPACE}.") and name != LOGGER_NAMESPACE:
        name = f"{LOGGER_NAMESPACE}.{name}"
    logger = _loggers.get(name)
    if logger is None:
        logger = logging.getLogger(name)
        logger.setLevel(_current_level)
        _loggers[name] = logger
    return logger


def log_exception(logger: logging.Logger, exc: Exception, context: str = "") -> None:
    """Log ``exc`` with its traceback, prefixed by ``context`` when given."""
    if context:
        logger.exception("%s: %s", context, exc)
    else:
        logger.exception("Unexpected error: %s", exc)


__all__ = [
    "LIBRARY_LOGGERS",
    "LOGGER_NAMESPACE",
    "ReleasingFileHandler",
    "console",
    "get_logger",
    "log_exception",
    "setup_logging",
]
