"""
JSON logging for the API process.

stdlib logging is the sink (uvicorn, boto and the OpenAI SDK log through it);
structlog renders every record, ours and foreign, as one JSON object per line.
"""

from __future__ import annotations

import logging
import sys
from typing import Any

import structlog

from .context import get_request_id

# Keys whose values must never reach a log line. Portal access tokens travel in
# query strings and request bodies, so they are the main concern here.
_SECRET_KEYS = frozenset({"access_token", "token", "authorization", "api_key", "openai_api_key"})
_MAX_FIELD_CHARS = 2000

_NOISY_LOGGERS = ("botocore", "boto3", "urllib3", "httpx", "httpcore", "openai")

_configured = False


def _add_request_id(_: Any, __: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    rid = get_request_id()
    if rid and "request_id" not in event_dict:
        event_dict["request_id"] = rid
    return event_dict


def _scrub(_: Any, __: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    for key, value in list(event_dict.items()):
        if key.lower() in _SECRET_KEYS and value:
            event_dict[key] = "[redacted]"
        elif isinstance(value, str) and len(value) > _MAX_FIELD_CHARS:
            event_dict[key] = value[:_MAX_FIELD_CHARS] + "...[truncated]"
    return event_dict


def _shared_processors() -> list[Any]:
    return [
        structlog.contextvars.merge_contextvars,
        _add_request_id,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        _scrub,
    ]


def configure_logging(*, level: str | int | None = None) -> None:
    """Idempotent; the first call wins."""
    global _configured
    if _configured:
        return

    if level is None:
        from ..settings import settings

        level = settings.log_level
    if isinstance(level, str):
        level = logging.getLevelName(level.strip().upper() or "INFO")
        if not isinstance(level, int):
            level = logging.INFO

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                structlog.processors.JSONRenderer(),
            ],
            foreign_pre_chain=_shared_processors(),
        )
    )

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(level)

    for name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        lg = logging.getLogger(name)
        lg.handlers = []
        lg.propagate = True
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            *_shared_processors(),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
    _configured = True


def get_logger(name: str | None = None) -> Any:
    return structlog.get_logger(name)
