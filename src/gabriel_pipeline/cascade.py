from __future__ import annotations

from typing import Any, Protocol

import structlog

from .classifier import ErrorKind, classify
from .config import PipelineConfig
from .contracts import CascadeResult, ChatMessage, GenerationRequest, Route
from .errors import GenerationError
from .metrics import cascade_reroutes_total, error_reports_total
from .orchestrator import RunOrchestrator

log = structlog.get_logger()


class SecondaryProvider(Protocol):
    async def complete(self, messages: list[dict[str, str]], parameters: dict[str, Any] | None = None) -> str: ...


def decide_route(
    cfg: PipelineConfig,
    *,
    force_primary: bool | None = None,
    force_secondary: bool | None = None,
) -> Route:
    """
    Pick the route for one request.

    Force flags (request hint or config) beat the environment default, and
    force-primary beats force-secondary. Unforced, only environments listed in
    ``secondary_default_environments`` default to the secondary route.
    """
    if force_primary or cfg.force_primary:
        return Route.PRIMARY
    if force_secondary or cfg.force_secondary:
        return Route.SECONDARY
    if cfg.environment in cfg.secondary_default_environments:
        return Route.SECONDARY
    return Route.PRIMARY


class FallbackCascade:
    def __init__(
        self,
        cfg: PipelineConfig,
        orchestrator: RunOrchestrator,
        secondary: SecondaryProvider,
    ):
        self.cfg = cfg
        self.orchestrator = orchestrator
        self.secondary = secondary

    def _secondary_messages(self, request: GenerationRequest) -> list[dict[str, str]]:
        history = [m for m in request.messages if m.role != "system"]
        limit = self.cfg.secondary_history_limit
        if limit > 0:
            history = history[-limit:]
        out: list[dict[str, str]] = []
        system_parts = [request.system_prompt or ""] + [m.content for m in request.messages if m.role == "system"]
        system = "\n\n".join(p.strip() for p in system_parts if p and p.strip())
        if system:
            out.append(ChatMessage(role="system", content=system).as_dict())
        out.extend(m.as_dict() for m in history)
        return out

    def _secondary_parameters(self, request: GenerationRequest) -> dict[str, Any]:
        return {
            "model": self.cfg.secondary_model,
            "temperature": self.cfg.secondary_temperature,
            "max_tokens": self.cfg.secondary_max_tokens,
            **request.parameters,
        }

    async def _run_primary(self, request: GenerationRequest, deadline: float | None) -> str:
        return await self.orchestrator.run_exchange(
            request.messages,
            self.cfg.assistant_id,
            request.instructions,
            deadline=deadline,
        )

    async def _run_secondary(self, request: GenerationRequest) -> str:
        try:
            return await self.secondary.complete(
                self._secondary_messages(request),
                self._secondary_parameters(request),
            )
        except Exception as e:
            report = classify(e)
            error_reports_total.labels(kind=report.kind.value).inc()
            log.warning(
                "secondary_generation_failed",
                handler=request.handler,
                kind=report.kind.value,
                error=str(e),
            )
            raise GenerationError(report) from e

    async def execute_with_fallback(
        self,
        request: GenerationRequest,
        *,
        deadline: float | None = None,
    ) -> CascadeResult:
        route = decide_route(
            self.cfg,
            force_primary=request.force_primary,
            force_secondary=request.force_secondary,
        )
        if route is Route.SECONDARY:
            text = await self._run_secondary(request)
            return CascadeResult(text=text, used_secondary=True, route=Route.SECONDARY)

        try:
            text = await self._run_primary(request, deadline)
        except Exception as e:
            report = classify(e)
            if report.kind is not ErrorKind.ENTITY_NOT_FOUND:
                error_reports_total.labels(kind=report.kind.value).inc()
                log.warning(
                    "primary_generation_failed",
                    handler=request.handler,
                    kind=report.kind.value,
                    error=str(e),
                )
                raise GenerationError(report) from e

            cascade_reroutes_total.labels(kind=report.kind.value).inc()
            log.warning(
                "cascade_reroute",
                handler=request.handler,
                assistant_id=self.cfg.assistant_id,
                error=str(e),
            )
            text = await self._run_secondary(request)
            return CascadeResult(text=text, used_secondary=True, route=Route.SECONDARY)

        return CascadeResult(text=text, used_secondary=False, route=Route.PRIMARY)
