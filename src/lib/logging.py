"""
Structured logging for the Viseu letter guard.

structlog renders both its own loggers and stdlib loggers (uvicorn,
FastAPI) through one handler: JSON in production, console output when
VISEU_DEV_MODE=1. Client IPs never reach a log line in the clear; log them
through ``hash_identifier`` or under a raw key that ``redact_identifiers``
rewrites.

Usage:
    from src.lib.logging import hash_identifier, setup_logging

    setup_logging()  # Call once at application startup
    logger.warning("rate_limit_exceeded", client=hash_identifier(ip))
"""

import hashlib
import logging
import os
import sys
from collections.abc import MutableMapping
from typing import Any

import structlog

# Event keys that may carry a raw client IP
RAW_IDENTIFIER_KEYS = ("identifier", "ip", "client_ip")

QUIET_LOGGERS = ("httpx", "httpcore", "uvicorn.access")


def hash_identifier(identifier: str) -> str:
    """Return a 12-char SHA-256 prefix for log-safe client identification."""
    return hashlib.sha256(identifier.encode()).hexdigest()[:12]


def redact_identifiers(
    logger: Any, method_name: str, event_dict: MutableMapping[str, Any]
) -> MutableMapping[str, Any]:
    """Move raw identifiers to ``client`` as their hash."""
    for key in RAW_IDENTIFIER_KEYS:
        value = event_dict.pop(key, None)
        if value is not None:
            event_dict.setdefault("client", hash_identifier(str(value)))
    return event_dict


def _renderer(dev_mode: bool) -> structlog.types.Processor:
    if dev_mode:
        return structlog.dev.ConsoleRenderer()
    return structlog.processors.JSONRenderer(ensure_ascii=False)


def setup_logging(dev_mode: bool | None = None, level: str | None = None) -> None:
    """
    Configure structlog and stdlib logging for the application.

    Args:
        dev_mode: Console rendering; defaults to VISEU_DEV_MODE == "1"
        level: Root level name; defaults to LOG_LEVEL, then INFO
    """
    if dev_mode is None:
        dev_mode = os.environ.get("VISEU_DEV_MODE") == "1"
    level = (level or os.environ.get("LOG_LEVEL", "INFO")).upper()

    pre_chain: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        redact_identifiers,
    ]

    structlog.configure(
        processors=[*pre_chain, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=pre_chain,
            processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, _renderer(dev_mode)],
        )
    )

    root_logger = logging.getLogger()
    root_logger.handlers[:] = [handler]
    root_logger.setLevel(getattr(logging, level, logging.INFO))

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
