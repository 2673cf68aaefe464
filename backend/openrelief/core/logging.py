"""
Structured logging for the consensus core.

Services log through structlog; identifiers of the event and user being
processed are bound per task with `log_context` and merged into every
record emitted inside it, including records from nested services.
"""

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager

import structlog
from structlog.typing import FilteringBoundLogger

from openrelief.core.config import settings

# Loggers whose records are noisy below INFO outside development
QUIET_LOGGERS = ("uvicorn", "celery", "networkx")


def setup_logging() -> None:
    """Configure structured logging."""

    structlog.configure(
        processors=[
            # event_id / user_id bound by log_context
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            (
                structlog.processors.JSONRenderer()
                if settings.ENVIRONMENT == "production"
                else structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())
            ),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    level = logging.getLevelName(settings.LOG_LEVEL.upper())
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)
    logging.getLogger("openrelief").setLevel(level)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.INFO)
    logging.getLogger("sqlalchemy.engine").setLevel(
        logging.INFO if settings.ENVIRONMENT == "development" else logging.WARNING
    )


@contextmanager
def log_context(**values: object) -> Iterator[None]:
    """
    Bind identifiers to every log record emitted in this task.

    None values are left out. Bindings are restored on exit, so nested
    contexts (a vote triggering trust updates) stack cleanly.
    """
    bound = {key: value for key, value in values.items() if value is not None}
    with structlog.contextvars.bound_contextvars(**bound):
        yield


def get_logger(name: str) -> FilteringBoundLogger:
    """Get a structured logger instance."""
    return structlog.get_logger(name)
