from __future__ import annotations

import logging
import re
from collections.abc import Callable, MutableMapping
from typing import Any, TypeAlias, cast

import structlog

_SENSITIVE_KEY_PARTS = ("key", "token", "secret", "password", "authorization", "cookie", "credential")

_BEARER_RE = re.compile(r"(?i)\bBearer\s+([A-Za-z0-9._-]{6,})")
# Groq keys look like gsk_<...>
_GROQ_KEY_RE = re.compile(r"\bgsk_[A-Za-z0-9]{8,}")

Processor: TypeAlias = Callable[[Any, str, MutableMapping[str, Any]], Any]


def _scrub(value: Any, secrets: tuple[str, ...]) -> Any:
    if isinstance(value, str):
        for secret in secrets:
            value = value.replace(secret, "[REDACTED]")
        value = _BEARER_RE.sub("Bearer [REDACTED]", value)
        return _GROQ_KEY_RE.sub("[REDACTED]", value)
    if isinstance(value, (list, tuple)):
        return type(value)(_scrub(v, secrets) for v in value)
    if isinstance(value, dict):
        return {
            k: "[REDACTED]" if any(p in str(k).lower() for p in _SENSITIVE_KEY_PARTS) else _scrub(v, secrets)
            for k, v in value.items()
        }
    return value


def redaction_processor(secrets: list[str] | None = None) -> Processor:
    known = tuple(s for s in (secrets or []) if s)

    def _processor(_logger: Any, _method_name: str, event_dict: MutableMapping[str, Any]) -> Any:
        return _scrub(dict(event_dict), known)

    return _processor


def configure_logging(level: str = "INFO", fmt: str = "json", *, secrets: list[str] | None = None) -> None:
    numeric_level = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(level=numeric_level)

    renderer = structlog.processors.JSONRenderer() if fmt == "json" else structlog.dev.ConsoleRenderer()
    processors: list[Processor] = [
        cast(Processor, structlog.contextvars.merge_contextvars),
        cast(Processor, structlog.processors.add_log_level),
        cast(Processor, structlog.processors.TimeStamper(fmt="iso")),
        redaction_processor(secrets),
        cast(Processor, renderer),
    ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        cache_logger_on_first_use=True,
    )
