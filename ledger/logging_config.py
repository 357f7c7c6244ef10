"""Structured logging for the rewards ledger.

Every event carries the service name and environment so ledger events
from several deployments can share one log sink.
"""

import logging
import sys
from typing import Optional

import structlog

from ledger.settings import Settings, settings as default_settings


def _service_context(config: Settings):
    def add_service_context(logger, method_name, event_dict):
        event_dict.setdefault("service", config.app_name)
        event_dict.setdefault("env", config.env)
        return event_dict

    return add_service_context


def setup_logging(config: Optional[Settings] = None) -> None:
    config = config or default_settings
    level = logging.getLevelName(config.log_level.upper())

    shared = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        _service_context(config),
    ]
    if config.log_format == "json":
        processors = shared + [
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors = shared + [
            structlog.processors.TimeStamper(fmt="%Y-%m-%d %H:%M:%S"),
            structlog.dev.ConsoleRenderer(),
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stdout),
        cache_logger_on_first_use=True,
    )

    # uvicorn logs through the standard library
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)


def get_logger(name: str) -> structlog.BoundLogger:
    return structlog.get_logger(name)
