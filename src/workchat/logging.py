"""Structured logging configuration."""

from __future__ import annotations

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

import structlog

_SECRET_MARKERS = ("token", "secret", "password", "api_key", "authorization")


def redact_secrets(_logger: Any, _method: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    """Mask values whose key looks like a credential (platform tokens travel through requests)."""
    for key in list(event_dict):
        if key == "event":
            continue
        lowered = key.lower()
        value = event_dict[key]
        if isinstance(value, str) and value and any(marker in lowered for marker in _SECRET_MARKERS):
            event_dict[key] = "***"
    return event_dict


@contextmanager
def bind_conversation(conversation_id: str, **extra: Any) -> Iterator[None]:
    """Attach the conversation id to every log line emitted inside the block."""
    tokens = structlog.contextvars.bind_contextvars(conversation_id=conversation_id, **extra)
    try:
        yield
    finally:
        structlog.contextvars.reset_contextvars(**tokens)


def setup_logging(level: str = "INFO", fmt: str = "json") -> None:
    """Configure structlog for workchat, rendering through the stdlib root logger."""
    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        redact_secrets,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if fmt == "console":
        renderer: structlog.types.Processor = structlog.dev.ConsoleRenderer(colors=True)
    else:
        renderer = structlog.processors.JSONRenderer()

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
        foreign_pre_chain=shared_processors,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    # LiteLLM and the HTTP stack log every request at INFO
    for name in ("uvicorn.access", "httpcore", "httpx", "LiteLLM", "litellm", "aiosqlite"):
        logging.getLogger(name).setLevel(logging.WARNING)
