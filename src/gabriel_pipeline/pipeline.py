from __future__ import annotations

import dataclasses
import time
from collections.abc import Callable, Mapping, Sequence

import httpx
import structlog
from pydantic import ValidationError

from .assistants_session import AssistantsSession
from .cascade import FallbackCascade
from .completions_session import CompletionsSession
from .config import PipelineConfig
from .contracts import CascadeResult, ChatMessage, GenerationRequest, OutputShape, Route
from .errors import ConfigurationError, GenerationError
from .extractor import ResponseExtractor, parse_sermon_json
from .logging import configure_logging_from_config
from .metrics import generation_latency_seconds, generation_requests_total, maybe_start_metrics
from .models import StructuredDocument
from .orchestrator import RunOrchestrator
from .prompts import (
    BIBLE_CHAT_INSTRUCTIONS,
    BIBLE_CHAT_SYSTEM_PROMPT,
    GABRIEL_CHAT_SYSTEM_PROMPT,
    SERMON_JSON_INSTRUCTIONS,
    SERMON_MARKDOWN_INSTRUCTIONS,
    SERMON_SYSTEM_PROMPT,
    SermonRequest,
    corrective_prompt,
    sermon_prompt,
)

log = structlog.get_logger()

_ROLES = ("system", "user", "assistant")


def to_chat_messages(messages: Sequence[ChatMessage | Mapping[str, str]]) -> list[ChatMessage]:
    out: list[ChatMessage] = []
    for msg in messages:
        if isinstance(msg, ChatMessage):
            out.append(msg)
            continue
        content = msg.get("content", "")
        if not isinstance(content, str):
            raise ConfigurationError("Message content must be a string.")
        role = msg.get("role")
        # Unknown roles are treated as user turns.
        out.append(ChatMessage(role=role if role in _ROLES else "user", content=content))  # type: ignore[arg-type]
    if not any(m.role == "user" and m.content.strip() for m in out):
        raise ConfigurationError("No user message provided.")
    return out


class GenerationPipeline:
    """Entry point for the chat, Bible chat and sermon handlers."""

    def __init__(
        self,
        cfg: PipelineConfig,
        cascade: FallbackCascade,
        *,
        extractor: ResponseExtractor | None = None,
        clock: Callable[[], float] | None = None,
        http_client: httpx.AsyncClient | None = None,
    ):
        self.cfg = cfg
        self.cascade = cascade
        self.extractor = extractor or ResponseExtractor()
        self._clock: Callable[[], float] = clock or time.monotonic
        self._http_client = http_client

    @classmethod
    def from_config(
        cls,
        cfg: PipelineConfig | None = None,
        *,
        client: httpx.AsyncClient | None = None,
    ) -> "GenerationPipeline":
        cfg = cfg or PipelineConfig()
        # One client for both providers; an injected client stays open on close().
        owned = client is None
        client = client or httpx.AsyncClient(timeout=cfg.upstream_timeout_seconds)
        session_kwargs = dict(
            client=client,
            base_url=cfg.openai_base_url,
            max_attempts=cfg.upstream_max_attempts,
            backoff_initial_seconds=cfg.upstream_backoff_initial_seconds,
            backoff_max_seconds=cfg.upstream_backoff_max_seconds,
            circuit_breaker_failures=cfg.upstream_circuit_breaker_failures,
            circuit_breaker_reset_seconds=cfg.upstream_circuit_breaker_reset_seconds,
        )
        orchestrator = RunOrchestrator(
            AssistantsSession(cfg.openai_api_key, **session_kwargs),
            poll_interval_seconds=cfg.run_poll_interval_seconds,
            poll_max_attempts=cfg.run_poll_max_attempts,
        )
        secondary = CompletionsSession(cfg.openai_api_key, model=cfg.secondary_model, **session_kwargs)
        return cls(cfg, FallbackCascade(cfg, orchestrator, secondary), http_client=client if owned else None)

    async def close(self) -> None:
        if self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None

    def _deadline(self) -> float | None:
        if self.cfg.request_timeout_seconds <= 0:
            return None
        return self._clock() + self.cfg.request_timeout_seconds

    async def generate(self, request: GenerationRequest) -> StructuredDocument | str:
        started = time.monotonic()
        deadline = self._deadline()
        with structlog.contextvars.bound_contextvars(handler=request.handler):
            try:
                result = await self.cascade.execute_with_fallback(request, deadline=deadline)
                if request.output_shape is OutputShape.JSON:
                    result = await self._ensure_valid_json(request, result, deadline)
            except GenerationError as e:
                generation_requests_total.labels(handler=request.handler, route="none", status=e.report.kind.value).inc()
                log.warning("generation_failed", kind=e.report.kind.value, code=e.report.code)
                raise
            finally:
                generation_latency_seconds.labels(handler=request.handler).observe(max(0.0, time.monotonic() - started))

            generation_requests_total.labels(handler=request.handler, route=result.route.value, status="success").inc()
            log.info(
                "generation_completed",
                route=result.route.value,
                used_secondary=result.used_secondary,
                response_chars=len(result.text),
            )
            if request.output_shape is OutputShape.FREEFORM:
                return result.text
            return self.extractor.extract(result.text, request.subject, title=request.title)

    async def _ensure_valid_json(
        self,
        request: GenerationRequest,
        result: CascadeResult,
        deadline: float | None,
    ) -> CascadeResult:
        try:
            parse_sermon_json(result.text)
            return result
        except ValidationError as e:
            first = e.errors()[0]
            problem = f"{'.'.join(str(p) for p in first.get('loc', ())) or 'body'}: {first.get('msg', 'invalid')}"
            log.warning("structured_output_invalid", errors=e.error_count(), problem=problem)

        retry = dataclasses.replace(
            request,
            messages=[
                *request.messages,
                ChatMessage(role="assistant", content=result.text),
                ChatMessage(role="user", content=corrective_prompt(problem)),
            ],
            force_primary=result.route is Route.PRIMARY,
            force_secondary=result.route is Route.SECONDARY,
        )
        second = await self.cascade.execute_with_fallback(retry, deadline=deadline)
        return CascadeResult(
            text=second.text,
            used_secondary=result.used_secondary or second.used_secondary,
            route=second.route,
        )

    async def chat(self, messages: Sequence[ChatMessage | Mapping[str, str]]) -> str:
        request = GenerationRequest(
            messages=to_chat_messages(messages),
            handler="chat",
            system_prompt=GABRIEL_CHAT_SYSTEM_PROMPT,
        )
        return await self._generate_text(request)

    async def bible_chat(self, messages: Sequence[ChatMessage | Mapping[str, str]]) -> str:
        request = GenerationRequest(
            messages=to_chat_messages(messages),
            handler="bible_chat",
            force_primary=True,
            instructions=BIBLE_CHAT_INSTRUCTIONS,
            system_prompt=BIBLE_CHAT_SYSTEM_PROMPT,
        )
        return await self._generate_text(request)

    async def generate_sermon(self, sermon: SermonRequest, *, json_output: bool = False) -> StructuredDocument:
        request = GenerationRequest(
            messages=[ChatMessage(role="user", content=sermon_prompt(sermon, json_output=json_output))],
            handler="sermon",
            instructions=SERMON_JSON_INSTRUCTIONS if json_output else SERMON_MARKDOWN_INSTRUCTIONS,
            system_prompt=SERMON_SYSTEM_PROMPT,
            output_shape=OutputShape.JSON if json_output else OutputShape.DOCUMENT,
            subject=sermon.bible_passage,
            title=sermon.title,
            parameters={"max_tokens": 2000},
        )
        document = await self.generate(request)
        assert isinstance(document, StructuredDocument)
        return document

    async def _generate_text(self, request: GenerationRequest) -> str:
        text = await self.generate(request)
        assert isinstance(text, str)
        return text


def create_pipeline(cfg: PipelineConfig | None = None) -> GenerationPipeline:
    cfg = cfg or PipelineConfig()
    configure_logging_from_config(cfg)
    maybe_start_metrics(enable=cfg.enable_metrics, bind=cfg.metrics_bind, port=cfg.metrics_port)
    return GenerationPipeline.from_config(cfg)
