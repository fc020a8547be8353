import logging
import re
import sys
from contextlib import contextmanager
from typing import Any, Awaitable, Callable, Iterator, TextIO
from uuid import uuid4

import structlog
from structlog import contextvars
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from sysguard.core.config import get_settings

MAX_LOG_VALUE_LENGTH = 2048
TRUNCATION_SUFFIX = "...(truncated)"
_MAX_MASK_DEPTH = 4

# user:password@ in database, redis and S3 endpoint URLs
_URL_CREDENTIALS = re.compile(r"(?P<prefix>[a-zA-Z][a-zA-Z0-9+.-]*://[^:/@\s]*:)(?P<secret>[^@\s]+)(?P<suffix>@)")
# Environment overlays handed to dump tools.
_CREDENTIAL_ENV_KEYS = {"mysql_pwd", "pgpassword", "aws_secret_access_key"}


def _clip(value: str) -> str:
    if len(value) <= MAX_LOG_VALUE_LENGTH:
        return value
    return f"{value[:MAX_LOG_VALUE_LENGTH]}{TRUNCATION_SUFFIX}"


def _truncate_large_values(_: Any, __: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    """Clip long strings such as dump tool stderr or archive listings."""

    for key, value in list(event_dict.items()):
        if isinstance(value, str):
            event_dict[key] = _clip(value)
        elif isinstance(value, (bytes, bytearray)):
            event_dict[key] = _clip(bytes(value).decode("utf-8", errors="replace"))
        elif isinstance(value, (list, tuple)):
            event_dict[key] = [_clip(item) if isinstance(item, str) else item for item in value]
    return event_dict


def _mask_sensitive_values(_: Any, __: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    settings = get_settings()
    redacted_keys = {entry.lower() for entry in settings.redact_fields} | _CREDENTIAL_ENV_KEYS
    placeholder = settings.redaction_placeholder

    def _mask(value: Any, depth: int) -> Any:
        if depth > _MAX_MASK_DEPTH:
            return value
        if isinstance(value, str):
            return _URL_CREDENTIALS.sub(rf"\g<prefix>{placeholder}\g<suffix>", value)
        if isinstance(value, dict):
            return {
                key: placeholder if isinstance(key, str) and key.lower() in redacted_keys else _mask(item, depth + 1)
                for key, item in value.items()
            }
        if isinstance(value, (list, tuple)):
            return type(value)(_mask(item, depth + 1) for item in value)
        return value

    return _mask(event_dict, 0)


def configure_logging(level: int | str | None = None, stream: TextIO | None = None) -> None:
    """Route structlog through stdlib logging as one JSON document per line.

    The CLI passes ``sys.stderr`` so that ``--json`` output on stdout stays
    machine readable.
    """

    resolved = level if level is not None else get_settings().log_level
    if isinstance(resolved, str):
        resolved = logging.getLevelName(resolved.upper())
    logging.basicConfig(
        level=resolved,
        handlers=[logging.StreamHandler(stream or sys.stdout)],
        format="%(message)s",
        force=True,
    )
    for logger_name in ("uvicorn", "uvicorn.error", "uvicorn.access", "botocore", "urllib3"):
        logging.getLogger(logger_name).handlers = []

    structlog.configure(
        processors=[
            contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            _mask_sensitive_values,
            structlog.processors.format_exc_info,
            _truncate_large_values,
            structlog.processors.JSONRenderer(),
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def bind_log_context(**params: Any) -> None:
    payload = {key: str(value) for key, value in params.items() if value is not None}
    if payload:
        contextvars.bind_contextvars(**payload)


def unbind_log_context(*keys: str) -> None:
    contextvars.unbind_contextvars(*keys)


@contextmanager
def run_log_context(backup_id: str, kind: str) -> Iterator[None]:
    """Tag every event emitted during a backup run with its id and kind."""

    bind_log_context(backup_id=backup_id, backup_kind=kind)
    try:
        yield
    finally:
        unbind_log_context("backup_id", "backup_kind")


class RequestIdMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: Callable[[Request], Awaitable[Response]]) -> Response:  # type: ignore[override]
        request_id = request.headers.get("X-Request-ID") or uuid4().hex
        contextvars.clear_contextvars()
        bind_log_context(request_id=request_id, method=request.method, path=request.url.path)

        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response


def get_logger(name: str | None = None, **initial_values: Any) -> structlog.stdlib.BoundLogger:
    if name is not None:
        return structlog.get_logger(name, **initial_values)
    return structlog.get_logger(**initial_values)


__all__ = [
    "RequestIdMiddleware",
    "bind_log_context",
    "configure_logging",
    "get_logger",
    "run_log_context",
    "unbind_log_context",
]
