from __future__ import annotations

import contextvars
import json
import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any
from uuid import UUID

_request_id_ctx_var: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "request_id", default=None
)
_tenant_id_ctx_var: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "tenant_id", default=None
)
_provider_id_ctx_var: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "provider_id", default=None
)

_CONTEXT_FIELDS = ("request_id", "tenant_id", "provider_id")

_STANDARD_ATTRIBUTES = frozenset(
    {
        "name",
        "msg",
        "args",
        "levelname",
        "levelno",
        "pathname",
        "filename",
        "module",
        "exc_info",
        "exc_text",
        "stack_info",
        "lineno",
        "funcName",
        "created",
        "msecs",
        "relativeCreated",
        "thread",
        "threadName",
        "processName",
        "process",
        "taskName",
        "message",
    }
)


def _as_text(value: UUID | str | None) -> str | None:
    if value is None:
        return None
    return str(value)


class RequestContextFilter(logging.Filter):
    """Inject request scoped context variables into log records."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = _request_id_ctx_var.get()
        record.tenant_id = _tenant_id_ctx_var.get()
        record.provider_id = _provider_id_ctx_var.get()
        return True


class JSONLogFormatter(logging.Formatter):
    """Serialize log records as JSON with context metadata."""

    def __init__(self) -> None:
        super().__init__(datefmt="%Y-%m-%dT%H:%M:%S%z")

    def format(self, record: logging.LogRecord) -> str:
        log_entry: dict[str, Any] = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for field in _CONTEXT_FIELDS:
            log_entry[field] = record.__dict__.get(field)

        for key, value in record.__dict__.items():
            if key in _CONTEXT_FIELDS:
                continue
            if key.startswith("_") or key in _STANDARD_ATTRIBUTES:
                continue
            log_entry[key] = value

        if record.exc_info:
            log_entry["exc_info"] = self.formatException(record.exc_info)

        return json.dumps(log_entry, ensure_ascii=False, default=str)


_configured = False


def configure_logging(level: int = logging.INFO) -> None:
    """Configure the root logger for structured JSON output."""

    global _configured
    if _configured:
        return

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONLogFormatter())
    handler.addFilter(RequestContextFilter())

    root_logger = logging.getLogger()
    root_logger.handlers = []
    root_logger.setLevel(level)
    root_logger.addHandler(handler)

    for logger_name in ("uvicorn", "uvicorn.error", "uvicorn.access", "celery"):
        logger = logging.getLogger(logger_name)
        logger.handlers = []
        logger.propagate = True

    _configured = True


def set_tenant_context(tenant_id: UUID | str | None) -> None:
    """Bind the tenant identifier to the current logging context."""

    _tenant_id_ctx_var.set(_as_text(tenant_id))


@contextmanager
def provider_context(
    provider_id: UUID | str | None, tenant_id: UUID | str | None = None
) -> Iterator[None]:
    """Bind provider (and optionally tenant) ids for the duration of a block."""

    provider_token = _provider_id_ctx_var.set(_as_text(provider_id))
    tenant_token = _tenant_id_ctx_var.set(_as_text(tenant_id)) if tenant_id else None
    try:
        yield
    finally:
        _provider_id_ctx_var.reset(provider_token)
        if tenant_token is not None:
            _tenant_id_ctx_var.reset(tenant_token)


def get_current_tenant() -> str:
    """Return the tenant id bound to the current context."""

    tenant = _tenant_id_ctx_var.get()
    return tenant or "anonymous"


def get_request_id() -> str:
    """Return the request id bound to the current context."""

    request_id = _request_id_ctx_var.get()
    return request_id or "unknown"


__all__ = [
    "JSONLogFormatter",
    "RequestContextFilter",
    "configure_logging",
    "get_current_tenant",
    "get_request_id",
    "provider_context",
    "set_tenant_context",
    "_request_id_ctx_var",
    "_tenant_id_ctx_var",
]
