"""
Structured JSON logging via structlog.

In development: coloured console output.
In production:  JSON lines for the platform log drain / any log aggregator.

Every line carries `service` and `env`. Lines written while the orchestrator
runs a cycle carry its `cycle_id` (bound through structlog contextvars), and
lines written while serving an HTTP request carry the `request_id` assigned by
the correlation-id middleware, so a cron-triggered cycle can be followed from
the request that started it through every stage it ran.
"""

from __future__ import annotations

import logging
import sys
from typing import Any

import structlog
from asgi_correlation_id import correlation_id

from newsdesk.core.config import Settings, get_settings

SERVICE_NAME = "newsdesk-automation"

_NOISY_LOGGERS = ("httpx", "httpcore", "asyncio", "aiosqlite", "sqlalchemy.engine", "redis")


def service_context(settings: Settings) -> structlog.types.Processor:
    """Stamp the service name and deployment environment on every event."""

    def processor(logger: Any, method_name: str, event_dict: dict) -> dict:
        event_dict.setdefault("service", SERVICE_NAME)
        event_dict.setdefault("env", settings.app_env)
        return event_dict

    return processor


def add_request_id(logger: Any, method_name: str, event_dict: dict) -> dict:
    request_id = correlation_id.get()
    if request_id:
        event_dict.setdefault("request_id", request_id)
    return event_dict


def setup_logging(settings: Settings | None = None) -> None:
    settings = settings or get_settings()
    is_prod = settings.app_env == "production"

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        add_request_id,
        service_context(settings),
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if is_prod:
        renderer: structlog.types.Processor = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=True)

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    # foreign (stdlib) records get the same context as structlog ones
    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(settings.log_level.upper())

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)
