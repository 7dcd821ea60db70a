"""
Map raw provider failures onto a small, stable error taxonomy.

Categories are tested in a fixed order (auth, rate_limit, entity_not_found,
network, server, unknown) and the first match wins. Provider messages often mix
vocabulary ("rate limit exceeded for this API key"), so the order is part of the
contract.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any

import httpx

from .errors import (
    AssistantNotFoundError,
    AuthenticationError,
    CircuitBreakerOpenError,
    GenerationError,
    PollTimeoutError,
    RateLimitError,
    RequestTimeoutError,
)


class ErrorKind(str, Enum):
    AUTH = "auth"
    RATE_LIMIT = "rate_limit"
    ENTITY_NOT_FOUND = "entity_not_found"
    NETWORK = "network"
    SERVER = "server"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class ErrorReport:
    kind: ErrorKind
    message: str
    recommendation: str
    retryable: bool
    fatal: bool
    title: str = ""
    code: str = ""
    status_code: int | None = None
    debug: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))


@dataclass(frozen=True)
class _Category:
    kind: ErrorKind
    title: str
    code: str
    message: str
    recommendation: str
    retryable: bool
    fatal: bool
    matches: Callable[[BaseException, int | None, str], bool]


def _any_in(text: str, needles: tuple[str, ...]) -> bool:
    return any(n in text for n in needles)


_AUTH_KEYWORDS = ("auth", "invalid api key", "incorrect api key", "credential")
_RATE_LIMIT_KEYWORDS = ("rate limit", "rate_limit", "too many requests")
_ENTITY_NOT_FOUND_KEYWORDS = ("no assistant found with id", "no such assistant", "assistant not found")
_NETWORK_KEYWORDS = ("network", "timeout", "timed out", "etimedout", "econnrefused", "enotfound", "connection")
_SERVER_KEYWORDS = ("server", "internal error", "overloaded")


def _is_auth(exc: BaseException, status: int | None, msg: str) -> bool:
    return isinstance(exc, AuthenticationError) or status == 401 or _any_in(msg, _AUTH_KEYWORDS)


def _is_rate_limit(exc: BaseException, status: int | None, msg: str) -> bool:
    return isinstance(exc, RateLimitError) or status == 429 or _any_in(msg, _RATE_LIMIT_KEYWORDS)


def _is_entity_not_found(exc: BaseException, status: int | None, msg: str) -> bool:
    if isinstance(exc, AssistantNotFoundError):
        return True
    if status == 404 and "assistant" in msg:
        return True
    return _any_in(msg, _ENTITY_NOT_FOUND_KEYWORDS)


def _is_network(exc: BaseException, status: int | None, msg: str) -> bool:
    return isinstance(exc, (httpx.TransportError, ConnectionError, RequestTimeoutError)) or _any_in(msg, _NETWORK_KEYWORDS)


def _is_server(exc: BaseException, status: int | None, msg: str) -> bool:
    if isinstance(exc, CircuitBreakerOpenError):
        return True
    return (status is not None and status >= 500) or _any_in(msg, _SERVER_KEYWORDS)


_CATEGORIES: tuple[_Category, ...] = (
    _Category(
        kind=ErrorKind.AUTH,
        title="Authentication Error",
        code="auth_error",
        message="Gabriel cannot connect due to authentication issues.",
        recommendation="Please contact the administrator to check the OpenAI API key configuration.",
        retryable=False,
        fatal=True,
        matches=_is_auth,
    ),
    _Category(
        kind=ErrorKind.RATE_LIMIT,
        title="Rate Limit Reached",
        code="rate_limit",
        message="Gabriel is experiencing high demand right now.",
        recommendation="Please try again in a few minutes.",
        retryable=True,
        fatal=False,
        matches=_is_rate_limit,
    ),
    _Category(
        kind=ErrorKind.ENTITY_NOT_FOUND,
        title="Assistant Not Found",
        code="assistant_not_found",
        message="Gabriel assistant could not be found.",
        recommendation="Check the OPENAI_ASSISTANT_ID setting; requests fall back to direct completions meanwhile.",
        retryable=False,
        fatal=False,
        matches=_is_entity_not_found,
    ),
    _Category(
        kind=ErrorKind.NETWORK,
        title="Network Error",
        code="network_error",
        message="Gabriel is having trouble connecting to the AI service.",
        recommendation="Please check your internet connection and try again.",
        retryable=True,
        fatal=False,
        matches=_is_network,
    ),
    _Category(
        kind=ErrorKind.SERVER,
        title="Server Error",
        code="server_error",
        message="The AI service is currently experiencing issues.",
        recommendation="Please try again later.",
        retryable=True,
        fatal=False,
        matches=_is_server,
    ),
)

_UNKNOWN = _Category(
    kind=ErrorKind.UNKNOWN,
    title="AI Service Error",
    code="unknown_error",
    message="An unexpected error occurred while communicating with Gabriel.",
    recommendation="Please try again later.",
    retryable=True,
    fatal=False,
    matches=lambda _exc, _status, _msg: True,
)


def _status_of(exc: BaseException) -> int | None:
    for attr in ("status_code", "status"):
        value = getattr(exc, attr, None)
        if isinstance(value, int):
            return value
    response = getattr(exc, "response", None)
    value = getattr(response, "status_code", None)
    return value if isinstance(value, int) else None


def _report(category: _Category, exc: BaseException, status: int | None, raw_message: str) -> ErrorReport:
    return ErrorReport(
        kind=category.kind,
        message=category.message,
        recommendation=category.recommendation,
        retryable=category.retryable,
        fatal=category.fatal,
        title=category.title,
        code=category.code,
        status_code=status,
        debug=MappingProxyType({"error_type": type(exc).__name__, "original_message": raw_message}),
    )


def classify(raw_error: BaseException | None) -> ErrorReport:
    if raw_error is None:
        return ErrorReport(
            kind=ErrorKind.UNKNOWN,
            message="No error information available.",
            recommendation=_UNKNOWN.recommendation,
            retryable=True,
            fatal=False,
            title=_UNKNOWN.title,
            code="null_error",
        )

    if isinstance(raw_error, GenerationError):
        return raw_error.report

    raw_message = str(raw_error) or type(raw_error).__name__
    status = _status_of(raw_error)

    if isinstance(raw_error, PollTimeoutError):
        return ErrorReport(
            kind=ErrorKind.UNKNOWN,
            message="Gabriel took too long to respond.",
            recommendation="Please try again; if this keeps happening, raise RUN_POLL_MAX_ATTEMPTS.",
            retryable=False,
            fatal=True,
            title="Generation Timed Out",
            code="run_timeout",
            status_code=status,
            debug=MappingProxyType(
                {
                    "error_type": type(raw_error).__name__,
                    "original_message": raw_message,
                    "attempts": raw_error.attempts,
                    "run_id": raw_error.run_id,
                    "last_status": raw_error.last_status,
                }
            ),
        )

    msg = raw_message.lower()
    for category in _CATEGORIES:
        if category.matches(raw_error, status, msg):
            return _report(category, raw_error, status, raw_message)
    return _report(_UNKNOWN, raw_error, status, raw_message)
