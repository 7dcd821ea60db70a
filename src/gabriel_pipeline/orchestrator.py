from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable, Sequence
from typing import Any, Protocol

import structlog

from .contracts import ChatMessage
from .errors import (
    ConfigurationError,
    EmptyResponseError,
    PollTimeoutError,
    RequestTimeoutError,
    RunFailedError,
)
from .metrics import run_poll_attempts
from .models import Run

log = structlog.get_logger()


class AssistantsApi(Protocol):
    async def create_thread(self) -> str: ...

    async def add_message(self, thread_id: str, role: str, content: str) -> Any: ...

    async def create_run(self, thread_id: str, assistant_id: str, instructions: str | None = None) -> Run: ...

    async def retrieve_run(self, thread_id: str, run_id: str) -> Run: ...

    async def list_messages(self, thread_id: str) -> list[dict[str, Any]]: ...


def _message_text(message: dict[str, Any]) -> str:
    parts: list[str] = []
    for segment in message.get("content") or []:
        if not isinstance(segment, dict) or segment.get("type") != "text":
            continue
        text = segment.get("text")
        # Assistants v2 nests the string under text.value; tolerate a bare string.
        value = text.get("value") if isinstance(text, dict) else text
        if isinstance(value, str):
            parts.append(value)
    return "".join(parts)


class RunOrchestrator:
    """Drives one assistant exchange: thread, messages, run, poll, answer."""

    def __init__(
        self,
        session: AssistantsApi,
        *,
        poll_interval_seconds: float = 1.0,
        poll_max_attempts: int = 120,
        sleeper: Callable[[float], Awaitable[None]] | None = None,
        clock: Callable[[], float] | None = None,
    ):
        self.session = session
        self.poll_interval_seconds = max(0.0, poll_interval_seconds)
        self.poll_max_attempts = max(1, poll_max_attempts)
        self._sleep: Callable[[float], Awaitable[None]] = sleeper or asyncio.sleep
        self._clock: Callable[[], float] = clock or time.monotonic

    async def create_thread(self) -> str:
        thread_id = await self.session.create_thread()
        log.debug("assistant_thread_created", thread_id=thread_id)
        return thread_id

    async def submit_message(self, thread_id: str, content: str, role: str = "user") -> None:
        if not isinstance(content, str) or not content.strip():
            raise ConfigurationError("Message content must be non-empty text.")
        if role not in ("user", "assistant"):
            raise ConfigurationError(f"Unsupported thread message role: {role!r}")
        await self.session.add_message(thread_id, role, content)

    async def start_run(self, thread_id: str, assistant_id: str, instructions: str | None = None) -> Run:
        run = await self.session.create_run(thread_id, assistant_id, instructions)
        log.info("assistant_run_started", thread_id=thread_id, run_id=run.id, status=run.status)
        return run

    async def poll(
        self,
        thread_id: str,
        run_id: str,
        interval_seconds: float | None = None,
        max_attempts: int | None = None,
        *,
        initial: Run | None = None,
        deadline: float | None = None,
    ) -> Run:
        """
        Retrieve the run until it reaches a terminal status.

        States: pending (``run`` unknown or non-terminal) and terminal. From
        pending, the loop sleeps (only once a state is known), retrieves, and
        counts one attempt. At most ``max_attempts`` retrievals are made;
        running out raises ``PollTimeoutError``. ``deadline`` is an absolute
        ``clock()`` value checked before every sleep.
        """
        interval = self.poll_interval_seconds if interval_seconds is None else max(0.0, interval_seconds)
        limit = self.poll_max_attempts if max_attempts is None else max(1, max_attempts)

        run = initial
        attempts = 0
        while run is None or not run.is_terminal:
            if attempts >= limit:
                run_poll_attempts.observe(attempts)
                log.warning("assistant_run_poll_exhausted", run_id=run_id, attempts=attempts)
                raise PollTimeoutError(run_id=run_id, attempts=attempts, last_status=run.status if run else None)
            if deadline is not None and self._clock() >= deadline:
                raise RequestTimeoutError(f"Generation deadline exceeded while waiting for run {run_id}.")
            if run is not None:
                await self._sleep(interval)
            run = await self.session.retrieve_run(thread_id, run_id)
            attempts += 1
            log.debug("assistant_run_polled", run_id=run_id, status=run.status, attempt=attempts)

        run_poll_attempts.observe(attempts)
        return run

    async def fetch_latest_assistant_message(self, thread_id: str) -> str:
        messages = await self.session.list_messages(thread_id)
        replies = [m for m in messages if m.get("role") == "assistant"]
        if not replies:
            raise EmptyResponseError("No assistant messages found in thread.")
        latest = max(replies, key=lambda m: m.get("created_at") or 0)
        text = _message_text(latest)
        if not text:
            raise EmptyResponseError("Empty response received from assistant.")
        return text

    async def run_exchange(
        self,
        messages: Sequence[ChatMessage],
        assistant_id: str,
        instructions: str | None = None,
        *,
        deadline: float | None = None,
    ) -> str:
        # System framing belongs to the assistant (or the per-run instructions).
        turns = [m for m in messages if m.role != "system"]
        if not turns:
            raise ConfigurationError("No user message provided.")

        thread_id = await self.create_thread()
        for message in turns:
            await self.submit_message(thread_id, message.content, role=message.role)

        run = await self.start_run(thread_id, assistant_id, instructions)
        run = await self.poll(thread_id, run.id, initial=run, deadline=deadline)
        if run.status != "completed":
            reason = run.error_message
            raise RunFailedError(
                run.status,
                f"Run failed with status: {run.status}" + (f" ({reason})" if reason else ""),
            )

        text = await self.fetch_latest_assistant_message(thread_id)
        log.info("assistant_run_completed", thread_id=thread_id, run_id=run.id, response_chars=len(text))
        return text
