"""Structured logging via structlog: JSON lines to a rotating file, or console output."""

from __future__ import annotations

import logging
import os
import sys
from logging.handlers import TimedRotatingFileHandler

import structlog
from structlog.types import Processor

_SHARED_PROCESSORS: list[Processor] = [
    structlog.contextvars.merge_contextvars,
    structlog.processors.add_log_level,
    structlog.processors.TimeStamper(fmt="iso"),
    structlog.processors.StackInfoRenderer(),
    structlog.processors.format_exc_info,
]


def setup_logging(
    log_dir: str | None = "logs",
    log_level: str = "INFO",
    json_logs: bool = True,
) -> None:
    """Configure structlog.

    With ``json_logs`` each event is rendered as one JSON line and written to
    stderr and, when ``log_dir`` is set, to ``<log_dir>/ssewire.jsonl``
    rotated hourly. Otherwise events go to stderr through structlog's
    console renderer.
    """
    level = logging.getLevelName(log_level.upper())

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    stderr_handler = logging.StreamHandler()
    stderr_handler.setLevel(level)
    root_logger.addHandler(stderr_handler)

    if not json_logs:
        structlog.configure(
            processors=[*_SHARED_PROCESSORS, structlog.dev.ConsoleRenderer()],
            wrapper_class=structlog.make_filtering_bound_logger(level),
            context_class=dict,
            logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
            cache_logger_on_first_use=True,
        )
        return

    file_handler: TimedRotatingFileHandler | None = None
    if log_dir:
        os.makedirs(log_dir, exist_ok=True)
        file_handler = TimedRotatingFileHandler(
            filename=os.path.join(log_dir, "ssewire.jsonl"),
            when="H",
            interval=1,
            backupCount=48,
            utc=True,
        )
        file_handler.setLevel(level)
        file_handler.setFormatter(logging.Formatter("%(message)s"))

    class _TeeWriter:
        """Write rendered lines to stderr and the rotating log file."""

        def write(self, message: str) -> None:
            sys.stderr.write(message)
            if file_handler is not None and message.strip():
                file_handler.emit(
                    logging.makeLogRecord({"msg": message.rstrip("\n"), "levelno": level})
                )

        def flush(self) -> None:
            sys.stderr.flush()
            if file_handler is not None:
                file_handler.flush()

    structlog.configure(
        processors=[*_SHARED_PROCESSORS, structlog.processors.JSONRenderer()],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.WriteLoggerFactory(file=_TeeWriter()),
        cache_logger_on_first_use=True,
    )
