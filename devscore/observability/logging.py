"""
Structured logging configuration using structlog.

JSON logs in production, coloured console output in development. Library
modules keep using ``logging.getLogger(__name__)``; those records are routed
through the same renderer so evaluation logs carry the bound
``project_id``/``account_id`` context.
"""

import logging
import sys

import structlog
from structlog.types import Processor

from devscore.config.settings import get_settings


def setup_logging(level: str | None = None) -> None:
    """
    Configure structured logging for the application.

    Args:
        level: Optional override for ``Settings.log_level``.

    Usage:
        setup_logging()
        logger = structlog.get_logger()
        logger.info("Evaluation finished", project_id="p_1", status="evaluated")
    """
    settings = get_settings()
    log_level = level or settings.log_level

    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if settings.is_production:
        processors = shared_processors + [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors = shared_processors + [
            structlog.dev.ConsoleRenderer(colors=True),
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level),
    )

    # Quiet the HTTP stack used by the evaluator SDK
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("openai").setLevel(logging.WARNING)
    logging.getLogger("asyncio").setLevel(logging.WARNING)


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Get a structured logger."""
    return structlog.get_logger(name)


def bind_context(**kwargs) -> None:
    """
    Bind context variables to all subsequent log messages.

    The orchestrator binds ``project_id`` and ``account_id`` for the
    duration of one evaluation.
    """
    structlog.contextvars.bind_contextvars(**kwargs)


def clear_context() -> None:
    """Clear all bound context variables."""
    structlog.contextvars.clear_contextvars()
