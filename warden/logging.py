"""structlog setup for warden.

Every log line carries the request id of the HTTP request that produced it and
passes through ``_scrub`` before rendering, so credentials and connection
passwords never reach the log sink.
"""

from __future__ import annotations

import logging
import os
import uuid
from contextvars import ContextVar
from typing import Any, Dict, Optional
from urllib.parse import urlsplit

import structlog

request_id_var: ContextVar[Optional[str]] = ContextVar("warden_request_id", default=None)

# Substring match against the lower-cased key
_SECRET_KEY_PARTS = ("password", "secret", "token", "authorization", "admin_code")
_URL_KEYS = ("dsn",)
_REDACTED = "[redacted]"
_TRUTHY = {"1", "true", "yes", "on"}


def current_request_id() -> Optional[str]:
    return request_id_var.get()


def bind_request_id(request_id: Optional[str] = None) -> str:
    """Bind ``request_id`` (or a fresh uuid4) to the current context and return it."""
    value = request_id or uuid.uuid4().hex
    request_id_var.set(value)
    return value


def mask_email(value: str) -> str:
    """``alice@x.com`` -> ``a***@x.com``; the domain stays readable."""
    local, sep, domain = value.partition("@")
    if not sep:
        return _REDACTED
    return f"{local[:1]}***@{domain}"


def mask_url_password(url: Optional[str]) -> Optional[str]:
    """Replace the password in a connection URL with ``***``.

    ``postgresql://warden:hunter2@db/warden`` -> ``postgresql://warden:***@db/warden``
    """
    if not url:
        return url
    try:
        parts = urlsplit(url)
        if not parts.password:
            return url
        host = parts.hostname or ""
        if parts.port:
            host = f"{host}:{parts.port}"
    except ValueError:
        return _REDACTED
    return parts._replace(netloc=f"{parts.username or ''}:***@{host}").geturl()


def _attach_request_id(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    request_id = current_request_id()
    if request_id:
        event_dict.setdefault("request_id", request_id)
    return event_dict


def _scrub(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Redact secrets, mask emails and strip passwords out of connection URLs."""
    for key, value in event_dict.items():
        if key == "event" or value is None:
            continue
        name = key.lower()
        if any(part in name for part in _SECRET_KEY_PARTS):
            event_dict[key] = _REDACTED
        elif "email" in name and isinstance(value, str):
            event_dict[key] = mask_email(value)
        elif (name.endswith("_url") or name in _URL_KEYS) and isinstance(value, str):
            event_dict[key] = mask_url_password(value)
    return event_dict


def _env_flag(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in _TRUTHY


def configure_logging(
    level: Optional[str] = None,
    *,
    json_output: Optional[bool] = None,
    dev_mode: Optional[bool] = None,
) -> None:
    """(Re)configure structlog. Unset arguments fall back to LOG_LEVEL, LOG_JSON and LOG_DEV_MODE."""
    level_name = (level or os.getenv("LOG_LEVEL", "INFO")).upper()
    if json_output is None:
        json_output = _env_flag("LOG_JSON", True)
    if dev_mode is None:
        dev_mode = _env_flag("LOG_DEV_MODE", False)

    processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        _attach_request_id,
        _scrub,
        structlog.processors.StackInfoRenderer(),
    ]
    if dev_mode or not json_output:
        processors.append(structlog.dev.ConsoleRenderer(colors=dev_mode))
    else:
        processors += [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]

    level_no = logging.getLevelName(level_name)
    if not isinstance(level_no, int):
        level_no = logging.INFO

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(level_no),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


configure_logging()


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)
