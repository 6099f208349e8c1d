import logging
from typing import Any

import structlog


def configure_logging(level: int | str = logging.INFO) -> None:
    """Configure structlog on top of the standard logging module."""

    timestamper = structlog.processors.TimeStamper(fmt="iso", utc=True)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            timestamper,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(level=level, format="%(message)s")


def bind_context(**kwargs: Any) -> structlog.stdlib.BoundLogger:
    """Bind contextual fields (execution_id, incident_key, ...) for downstream logs."""

    logger = structlog.get_logger()
    return logger.bind(**kwargs)


def bind_run_context(**kwargs: Any) -> None:
    """Bind fields into the contextvars store so every log line in this task carries them."""

    structlog.contextvars.bind_contextvars(**kwargs)


RUN_CONTEXT_KEYS = ("run_id", "incident_key", "playbook_id")


def clear_run_context(*keys: str) -> None:
    """Drop only the run fields; anything the caller bound stays in place."""

    structlog.contextvars.unbind_contextvars(*(keys or RUN_CONTEXT_KEYS))
