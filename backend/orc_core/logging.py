"""Structured logging with structlog."""

import logging
import os
import sys

import structlog


def configure_logging(level: str | None = None, fmt: str | None = None) -> None:
    """Configure structlog for processes embedding the core."""

    # purpose: route core events through the stdlib root handler with structlog rendering
    # inputs: optional level/format overrides, else ORC_LOG_LEVEL / ORC_LOG_FORMAT
    # outputs: configured structlog + root handler formatter
    # status: active
    level = (level or os.getenv("ORC_LOG_LEVEL", "INFO")).upper()
    fmt = fmt or os.getenv("ORC_LOG_FORMAT", "console")

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, level, logging.INFO),
    )

    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
    ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    if fmt == "json":
        formatter = structlog.stdlib.ProcessorFormatter(
            processor=structlog.processors.JSONRenderer(),
        )
    else:
        formatter = structlog.stdlib.ProcessorFormatter(
            processor=structlog.dev.ConsoleRenderer(colors=False),
        )

    for handler in logging.root.handlers:
        handler.setFormatter(formatter)


def bind_context(**kwargs) -> None:
    """Bind context variables (actor, commission) for the current call chain."""
    structlog.contextvars.bind_contextvars(**kwargs)


def clear_context() -> None:
    structlog.contextvars.clear_contextvars()
