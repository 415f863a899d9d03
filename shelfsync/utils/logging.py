"""
Logging configuration for Shelf Sync.

Everything goes through structlog rendered by the stdlib root logger, so
library log lines and our own look the same on the console. Records at INFO
and above can also be kept in the sync_logs table for /api/logs.
"""

import logging
import os
import sys
from typing import Optional

import structlog
from structlog.types import Processor

from shelfsync.db.database import get_db_session
from shelfsync.db.models import SyncLog

# Keys that already have their own sync_logs column
RESERVED_KEYS = ("event", "timestamp", "level", "logger", "sync_run_id")

NOISY_LOGGERS = ("urllib3", "requests", "waitress", "sqlalchemy")

_console_handler: Optional[logging.Handler] = None
_db_handler: Optional[logging.Handler] = None


def get_log_level() -> str:
    """Get log level from environment."""
    return os.getenv("LOG_LEVEL", "INFO").upper()


def setup_logging(level: Optional[str] = None) -> None:
    """
    Configure structlog and the root console handler.

    Safe to call again (e.g. once the configured level is known); the
    previous console handler is replaced, not duplicated.
    """
    global _console_handler

    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
    ]

    structlog.configure(
        processors=shared_processors + [
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty()),
        ],
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    if _console_handler is not None:
        root_logger.removeHandler(_console_handler)
    root_logger.addHandler(handler)
    root_logger.setLevel((level or get_log_level()).upper())
    _console_handler = handler

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


class DatabaseLogHandler(logging.Handler):
    """
    Stores log records in sync_logs, keeping only the newest ``max_logs``.

    structlog hands the handler its event dict as ``record.msg``; the run id
    goes to its own column and the remaining keys become ``details``.
    """

    def __init__(self, max_logs: int = 1000):
        super().__init__()
        self.max_logs = max_logs

    def emit(self, record: logging.LogRecord) -> None:
        event = record.msg if isinstance(record.msg, dict) else {"event": record.getMessage()}
        details = {key: str(value) for key, value in event.items() if key not in RESERVED_KEYS}

        try:
            with get_db_session() as session:
                session.add(SyncLog(
                    level=record.levelname,
                    message=str(event.get("event", "")),
                    details=details or None,
                    sync_run_id=event.get("sync_run_id"),
                ))
                session.flush()

                # Newest id that falls outside the window
                cutoff = session.query(SyncLog.id)\
                    .order_by(SyncLog.id.desc())\
                    .offset(self.max_logs)\
                    .limit(1)\
                    .scalar()
                if cutoff is not None:
                    session.query(SyncLog)\
                        .filter(SyncLog.id <= cutoff)\
                        .delete(synchronize_session=False)

        except Exception:
            self.handleError(record)


def init_db_logging(max_logs: int = 1000) -> None:
    """Mirror INFO and above into the sync_logs table. Call after init_db()."""
    global _db_handler

    if _db_handler is not None:
        return

    _db_handler = DatabaseLogHandler(max_logs=max_logs)
    _db_handler.setLevel(logging.INFO)
    logging.getLogger().addHandler(_db_handler)


def get_logger(name: str = __name__) -> structlog.stdlib.BoundLogger:
    """Get a configured logger instance."""
    return structlog.get_logger(name)


def get_sync_logger(sync_run_id: str, user_id: Optional[str] = None) -> structlog.stdlib.BoundLogger:
    """Logger whose every record carries the sync run ID and user ID."""
    return get_logger("sync").bind(sync_run_id=sync_run_id, user_id=user_id)


# Initialize logging on module import
setup_logging()
