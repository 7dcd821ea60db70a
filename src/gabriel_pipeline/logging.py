from __future__ import annotations

import logging
import re
from collections.abc import Callable, Mapping, MutableMapping
from typing import TYPE_CHECKING, Any, TypeAlias, cast

import structlog

if TYPE_CHECKING:
    from .config import PipelineConfig


_SENSITIVE_KEYS = {
    "authorization",
    "proxy-authorization",
    "cookie",
    "set-cookie",
    "api_key",
    "apikey",
    "openai_api_key",
    "token",
    "secret",
    "password",
}

_BEARER_RE = re.compile(r"(?i)\bBearer\s+([A-Za-z0-9._-]{6,})")
# OpenAI-style secret keys ("sk-...", "sk-proj-...") that leak into error strings.
_OPENAI_KEY_RE = re.compile(r"\bsk-[A-Za-z0-9_-]{8,}")

ProcessorReturn: TypeAlias = Mapping[str, Any] | str | bytes | bytearray | tuple[Any, ...]
Processor: TypeAlias = Callable[[Any, str, MutableMapping[str, Any]], ProcessorReturn]


def _redact_str(value: str, *, secrets: list[str]) -> str:
    out = value
    for secret in secrets:
        if secret and secret in out:
            out = out.replace(secret, "[REDACTED]")
    out = _BEARER_RE.sub("Bearer [REDACTED]", out)
    return _OPENAI_KEY_RE.sub("sk-[REDACTED]", out)


def _is_sensitive_key(key: str) -> bool:
    return key in _SENSITIVE_KEYS or any(s in key for s in ("api_key", "token", "secret", "password"))


def redact(obj: Any, *, secrets: list[str] | None = None) -> Any:
    secrets_norm = [s for s in (secrets or []) if isinstance(s, str) and s]
    if obj is None or isinstance(obj, (int, float, bool)):
        return obj
    if isinstance(obj, str):
        return _redact_str(obj, secrets=secrets_norm)
    if isinstance(obj, list):
        return [redact(v, secrets=secrets_norm) for v in obj]
    if isinstance(obj, tuple):
        return tuple(redact(v, secrets=secrets_norm) for v in obj)
    if isinstance(obj, dict):
        return {
            k: "[REDACTED]" if _is_sensitive_key(str(k).lower()) else redact(v, secrets=secrets_norm)
            for k, v in obj.items()
        }
    return obj


def _make_redaction_processor(*, secrets: list[str]) -> Processor:
    def _processor(_logger: Any, _method_name: str, event_dict: MutableMapping[str, Any]) -> ProcessorReturn:
        return cast(dict[str, Any], redact(dict(event_dict), secrets=secrets))

    return _processor


def configure_logging(level: str = "INFO", fmt: str = "json", *, secrets: list[str] | None = None) -> None:
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO))

    processors: list[Processor] = [
        cast(Processor, structlog.contextvars.merge_contextvars),
        cast(Processor, structlog.processors.add_log_level),
        cast(Processor, structlog.processors.TimeStamper(fmt="iso")),
        # Key-pattern redaction applies even without explicit secrets.
        _make_redaction_processor(secrets=secrets or []),
    ]

    if fmt == "json":
        processors.append(cast(Processor, structlog.processors.JSONRenderer()))
    else:
        processors.append(cast(Processor, structlog.dev.ConsoleRenderer()))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, level.upper(), logging.INFO)
        ),
        cache_logger_on_first_use=True,
    )


def configure_logging_from_config(cfg: PipelineConfig) -> None:
    configure_logging(
        level=cfg.log_level,
        fmt=cfg.log_format,
        secrets=[s for s in (cfg.openai_api_key,) if s],
    )
