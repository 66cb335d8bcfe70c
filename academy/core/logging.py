"""Structured logging configuration."""

import logging
import sys
from contextlib import contextmanager
from typing import Iterator

import structlog
from structlog.processors import JSONRenderer, TimeStamper, add_log_level
from structlog.stdlib import add_logger_name

from academy.core.config import settings

# Chatty third-party loggers and the level they are capped at
QUIET_LOGGERS = {
    "aiosqlite": logging.WARNING,
    "asyncio": logging.WARNING,
    "uvicorn.access": logging.WARNING,
}


def setup_logging():
    """Configure structlog on top of stdlib logging.

    Every event carries the service name and environment; progression
    operations add the learner and operation through ``operation_context``.
    """
    if settings.LOG_FORMAT == "json":
        renderer = JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=False)

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.contextvars.merge_contextvars,
            add_log_level,
            add_logger_name,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            TimeStamper(fmt="iso", utc=True),
            renderer,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, settings.LOG_LEVEL),
    )
    for name, level in QUIET_LOGGERS.items():
        logging.getLogger(name).setLevel(level)
    # SQL echo is driven by DATABASE_ECHO, not by the service log level
    logging.getLogger("sqlalchemy.engine").setLevel(
        logging.INFO if settings.DATABASE_ECHO else logging.WARNING
    )

    structlog.contextvars.bind_contextvars(
        service=settings.SERVICE_NAME,
        environment=settings.ENVIRONMENT,
    )


@contextmanager
def operation_context(operation: str, learner_id: str) -> Iterator[None]:
    """Tag every log event inside the block with the operation and learner."""
    with structlog.contextvars.bound_contextvars(operation=operation, learner_id=learner_id):
        yield
