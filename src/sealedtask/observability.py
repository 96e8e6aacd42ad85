"""Structured logging configuration with structlog.

Production emits one JSON object per line; development renders a
readable console line. The audit trail of ledger mutations is the
event log, not these logs: operational logs carry task keys and
identities but never disclosed cleartext values.

Usage:
    from sealedtask.observability import configure_logging

    configure_logging("production")

    import structlog
    log = structlog.get_logger(__name__)
    log.info("task_created", task_key="t1")
"""

from __future__ import annotations

import logging
import os
import sys

import structlog
from structlog.typing import Processor

LOG_LEVEL_ENV = "SEALEDTASK_LOG_LEVEL"
DEFAULT_LOG_LEVEL = "INFO"


def _get_log_level() -> int:
    level_name = os.getenv(LOG_LEVEL_ENV, DEFAULT_LOG_LEVEL).upper()
    return getattr(logging, level_name, logging.INFO)


def configure_logging(environment: str = "production") -> None:
    """Configure structlog once at process start."""
    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if environment == "production":
        final_processor: Processor = structlog.processors.JSONRenderer()
    else:
        final_processor = structlog.dev.ConsoleRenderer(colors=False)

    structlog.configure(
        processors=shared_processors + [final_processor],
        wrapper_class=structlog.make_filtering_bound_logger(_get_log_level()),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )
