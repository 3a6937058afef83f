from __future__ import annotations

import logging
import re
from collections.abc import Callable, Mapping, MutableMapping
from typing import Any, TypeAlias, cast

import structlog

REDACTED = "[REDACTED]"

# Audit payloads carry tool arguments verbatim; these keys never reach a log line.
_SENSITIVE_KEYS = {
    "authorization",
    "cookie",
    "x-api-key",
    "api_key",
    "apikey",
    "api_key_encrypted",
    "access_token",
    "refresh_token",
    "client_secret",
    "password",
    "fernet_key",
    "credentials",
}

_SENSITIVE_SUFFIXES = ("_key", "_token", "secret", "password")

_BEARER_RE = re.compile(r"(?i)\bBearer\s+([A-Za-z0-9._-]{6,})")

ProcessorReturn: TypeAlias = Mapping[str, Any] | str | bytes | bytearray | tuple[Any, ...]
Processor: TypeAlias = Callable[[Any, str, MutableMapping[str, Any]], ProcessorReturn]


def _is_sensitive_key(key: Any) -> bool:
    name = str(key).lower()
    return name in _SENSITIVE_KEYS or name.endswith(_SENSITIVE_SUFFIXES)


def redact(obj: Any, *, secrets: list[str]) -> Any:
    """Mask sensitive keys, known secret values and bearer tokens, recursively."""
    if isinstance(obj, str):
        out = obj
        for secret in secrets:
            if secret and secret in out:
                out = out.replace(secret, REDACTED)
        return _BEARER_RE.sub(f"Bearer {REDACTED}", out)
    if isinstance(obj, list):
        return [redact(v, secrets=secrets) for v in obj]
    if isinstance(obj, tuple):
        return tuple(redact(v, secrets=secrets) for v in obj)
    if isinstance(obj, dict):
        return {k: REDACTED if _is_sensitive_key(k) else redact(v, secrets=secrets) for k, v in obj.items()}
    return obj


def truncate(obj: Any, *, max_chars: int) -> Any:
    """Shorten long strings (model answers, prompts, product payloads) to `max_chars`."""
    if isinstance(obj, str):
        if len(obj) <= max_chars:
            return obj
        return f"{obj[:max_chars]}...[+{len(obj) - max_chars} chars]"
    if isinstance(obj, list):
        return [truncate(v, max_chars=max_chars) for v in obj]
    if isinstance(obj, tuple):
        return tuple(truncate(v, max_chars=max_chars) for v in obj)
    if isinstance(obj, dict):
        return {k: truncate(v, max_chars=max_chars) for k, v in obj.items()}
    return obj


def _make_redaction_processor(*, secrets: list[str]) -> Processor:
    secrets_norm = [s for s in secrets if isinstance(s, str) and s]

    def _processor(_logger: Any, _method_name: str, event_dict: MutableMapping[str, Any]) -> ProcessorReturn:
        return cast(dict[str, Any], redact(dict(event_dict), secrets=secrets_norm))

    return _processor


def _make_truncation_processor(*, max_chars: int) -> Processor:
    def _processor(_logger: Any, _method_name: str, event_dict: MutableMapping[str, Any]) -> ProcessorReturn:
        event = event_dict.pop("event", None)
        out = cast(dict[str, Any], truncate(dict(event_dict), max_chars=max_chars))
        if event is not None:
            out["event"] = event
        return out

    return _processor


def configure_logging(
    level: str = "INFO",
    fmt: str = "json",
    *,
    secrets: list[str] | None = None,
    max_value_chars: int = 2000,
) -> None:
    numeric_level = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(level=numeric_level)

    processors: list[Processor] = [
        cast(Processor, structlog.contextvars.merge_contextvars),
        cast(Processor, structlog.processors.add_log_level),
        cast(Processor, structlog.processors.TimeStamper(fmt="iso")),
        # Key-based redaction always applies; value-based only when secrets are known.
        _make_redaction_processor(secrets=secrets or []),
    ]
    if max_value_chars > 0:
        processors.append(_make_truncation_processor(max_chars=max_value_chars))

    if fmt == "json":
        processors.append(cast(Processor, structlog.processors.dict_tracebacks))
        processors.append(cast(Processor, structlog.processors.JSONRenderer()))
    else:
        processors.append(cast(Processor, structlog.dev.ConsoleRenderer()))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        cache_logger_on_first_use=True,
    )
