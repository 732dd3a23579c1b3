############################################################
#
# callgate - LLM Call Gateway, Response Cache and Call Ledger
#
# logging_config.py: structlog setup, request context and secret masking
#
# Luke Sheneman
# Research Computing and Data Services (RCDS)
# Institute for Interdisciplinary Data Sciences (IIDS)
# University of Idaho
# sheneman@uidaho.edu
#
############################################################

"""structlog setup for the gateway.

Every line carries ``request_id`` and, once authenticated, ``project_id``
from the request context. Fields that may hold credentials are masked
before rendering.
"""

import logging
import sys
from typing import Any

import structlog
from structlog.types import EventDict, Processor

from backend.app.settings import get_settings

# Silenced below WARNING so a request logs one gateway line, not a dozen
_NOISY_LOGGERS = ("uvicorn.access", "httpx", "httpcore", "aiosqlite", "sqlalchemy.engine")

_SECRET_FIELDS = frozenset({"api_key", "authorization", "openai_api_key", "key_hash"})


def mask_secrets(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """Replace credential-bearing fields with a fixed marker."""
    for name in _SECRET_FIELDS.intersection(event_dict):
        event_dict[name] = "***"
    return event_dict


def _renderer(log_format: str) -> Processor:
    if log_format == "json":
        return structlog.processors.JSONRenderer()
    return structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())


def setup_logging() -> None:
    """Route structlog and stdlib loggers through one formatter chosen by ``log_format``."""
    settings = get_settings()
    level = getattr(logging, settings.log_level.upper(), logging.INFO)

    pre_chain: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        mask_secrets,
        structlog.processors.StackInfoRenderer(),
    ]

    structlog.configure(
        processors=[*pre_chain, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=pre_chain,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            _renderer(settings.log_format),
        ],
    )

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if settings.log_file:
        handlers.append(logging.FileHandler(settings.log_file))
    for handler in handlers:
        handler.setFormatter(formatter)
        handler.setLevel(level)

    root = logging.getLogger()
    root.handlers = handlers
    root.setLevel(level)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


def bind_request_context(**kwargs: Any) -> None:
    """Add fields such as ``request_id`` or ``project_id`` to every line of this request."""
    structlog.contextvars.bind_contextvars(**kwargs)


def clear_request_context() -> None:
    structlog.contextvars.clear_contextvars()
