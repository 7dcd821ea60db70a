from __future__ import annotations

import asyncio
import random
import time
from collections.abc import Awaitable, Callable
from typing import Any

import httpx
import structlog

from .config import OPENAI_API_BASE
from .errors import (
    AssistantNotFoundError,
    AuthenticationError,
    CircuitBreakerOpenError,
    RateLimitError,
    UpstreamProtocolError,
)
from .metrics import (
    upstream_circuit_breaker_events_total,
    upstream_request_latency_seconds,
    upstream_requests_total,
)

log = structlog.get_logger()


def upstream_error_message(resp: httpx.Response) -> str:
    try:
        data = resp.json()
    except ValueError:
        return resp.text[:500] or f"Upstream error {resp.status_code}."
    if isinstance(data, dict):
        err = data.get("error")
        if isinstance(err, dict) and isinstance(err.get("message"), str):
            return err["message"]
        if isinstance(err, str):
            return err
    return f"Upstream error {resp.status_code}."


class OpenAIHttpSession:
    """
    Bearer-authenticated JSON transport for OpenAI-compatible APIs.

    Retries 429, 5xx and transport failures with exponential backoff, and trips a
    circuit breaker after consecutive failures. Subclasses add the endpoints.
    """

    provider_name = "openai"

    def __init__(
        self,
        api_key: str | None,
        *,
        client: httpx.AsyncClient | None = None,
        base_url: str = OPENAI_API_BASE,
        timeout_seconds: float = 120,
        max_attempts: int = 3,
        backoff_initial_seconds: float = 0.5,
        backoff_max_seconds: float = 8.0,
        circuit_breaker_failures: int = 5,
        circuit_breaker_reset_seconds: float = 30.0,
        sleeper: Callable[[float], Awaitable[None]] | None = None,
        clock: Callable[[], float] | None = None,
    ):
        self.api_key = api_key
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout_seconds)
        self._base_url = base_url.rstrip("/")
        self._max_attempts = max(1, max_attempts)
        self._backoff_initial_seconds = max(0.0, backoff_initial_seconds)
        self._backoff_max_seconds = max(self._backoff_initial_seconds, backoff_max_seconds)
        self._sleep: Callable[[float], Awaitable[None]] = sleeper or asyncio.sleep
        self._clock: Callable[[], float] = clock or time.monotonic

        self._cb_threshold = max(0, int(circuit_breaker_failures))
        self._cb_reset_seconds = max(0.0, float(circuit_breaker_reset_seconds))
        self._cb_failures = 0
        self._cb_open_until: float | None = None

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    def _headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.api_key}"}

    def _circuit_remaining_seconds(self) -> int | None:
        if self._cb_open_until is None:
            return None
        remaining = self._cb_open_until - self._clock()
        if remaining <= 0:
            return None
        return int(remaining) + 1

    def _circuit_allow(self) -> None:
        if self._cb_threshold <= 0:
            return
        remaining = self._circuit_remaining_seconds()
        if remaining is None:
            return
        upstream_circuit_breaker_events_total.labels(provider=self.provider_name, event="short_circuit").inc()
        raise CircuitBreakerOpenError(retry_after_seconds=remaining)

    def _circuit_on_success(self) -> None:
        if self._cb_threshold <= 0:
            return
        self._cb_failures = 0
        self._cb_open_until = None

    def _circuit_on_failure(self) -> None:
        if self._cb_threshold <= 0:
            return
        self._cb_failures += 1
        if self._cb_failures < self._cb_threshold:
            return
        if self._cb_reset_seconds <= 0:
            return
        self._cb_open_until = self._clock() + self._cb_reset_seconds
        upstream_circuit_breaker_events_total.labels(provider=self.provider_name, event="open").inc()

    def _compute_backoff(self, attempt_index: int) -> float:
        # attempt_index: 0-based retry count (0 for first retry)
        base = float(min(self._backoff_max_seconds, self._backoff_initial_seconds * (2**attempt_index)))
        jitter = float(random.uniform(0.0, min(0.25, base * 0.1))) if base > 0 else 0.0
        return base + jitter

    def _raise_for_client_error(self, resp: httpx.Response) -> None:
        message = upstream_error_message(resp)
        if resp.status_code in (401, 403):
            raise AuthenticationError(f"Upstream rejected credentials: {message}")
        if resp.status_code == 404 and "assistant" in message.lower():
            raise AssistantNotFoundError(message, status_code=404)
        raise UpstreamProtocolError(message, status_code=resp.status_code)

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> dict[str, Any]:
        self._circuit_allow()

        if not self.api_key:
            raise AuthenticationError("Missing OPENAI_API_KEY for generation provider call.")

        url = f"{self._base_url}{path}"
        req_headers = {**self._headers(), **(headers or {})}

        last_rate_limit: RateLimitError | None = None
        for attempt in range(self._max_attempts):
            started = time.monotonic()
            try:
                resp = await self._client.request(method, url, json=json, params=params, headers=req_headers)
            except httpx.TimeoutException as e:
                upstream_requests_total.labels(provider=self.provider_name, status="timeout").inc()
                self._circuit_on_failure()
                if attempt >= self._max_attempts - 1:
                    raise UpstreamProtocolError("Upstream request timed out.") from e
                await self._sleep(self._compute_backoff(attempt))
                continue
            except httpx.HTTPError as e:
                upstream_requests_total.labels(provider=self.provider_name, status="transport_error").inc()
                self._circuit_on_failure()
                if attempt >= self._max_attempts - 1:
                    raise UpstreamProtocolError(f"Upstream network request failed: {e}") from e
                await self._sleep(self._compute_backoff(attempt))
                continue
            finally:
                upstream_request_latency_seconds.labels(provider=self.provider_name).observe(
                    max(0.0, time.monotonic() - started)
                )

            upstream_requests_total.labels(provider=self.provider_name, status=str(resp.status_code)).inc()

            if resp.status_code == 429:
                retry_after = resp.headers.get("retry-after")
                retry_seconds = int(retry_after) if retry_after and retry_after.isdigit() else None
                last_rate_limit = RateLimitError(
                    retry_after_seconds=retry_seconds,
                    message=f"Rate limit reached: {upstream_error_message(resp)}",
                )
                self._circuit_on_failure()
                if attempt >= self._max_attempts - 1:
                    raise last_rate_limit
                sleep_for = retry_seconds if retry_seconds is not None else self._compute_backoff(attempt)
                await self._sleep(sleep_for)
                continue

            if 500 <= resp.status_code <= 599:
                self._circuit_on_failure()
                if attempt >= self._max_attempts - 1:
                    log.warning(
                        "openai_upstream_5xx",
                        provider=self.provider_name,
                        status_code=resp.status_code,
                        body=resp.text[:500],
                    )
                    raise UpstreamProtocolError(
                        f"Upstream server error {resp.status_code}: {upstream_error_message(resp)}",
                        status_code=resp.status_code,
                    )
                await self._sleep(self._compute_backoff(attempt))
                continue

            if resp.status_code >= 400:
                self._raise_for_client_error(resp)

            try:
                data = resp.json()
            except ValueError as e:
                raise UpstreamProtocolError("Upstream returned a non-JSON body.") from e
            break
        else:  # pragma: no cover
            if last_rate_limit is not None:
                raise last_rate_limit
            raise UpstreamProtocolError("Upstream request failed after retries.")

        self._circuit_on_success()

        if not isinstance(data, dict):
            raise UpstreamProtocolError("Upstream returned an unexpected JSON shape.")
        return data
