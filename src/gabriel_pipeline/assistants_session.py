from __future__ import annotations

from typing import Any

import structlog

from .errors import UpstreamProtocolError
from .http_session import OpenAIHttpSession
from .models import Run

log = structlog.get_logger()

_ASSISTANTS_BETA_HEADER = {"OpenAI-Beta": "assistants=v2"}


class AssistantsSession(OpenAIHttpSession):
    """Thread / message / run operations of the OpenAI Assistants API."""

    provider_name = "assistants"

    def _headers(self) -> dict[str, str]:
        return {**super()._headers(), **_ASSISTANTS_BETA_HEADER}

    async def create_thread(self) -> str:
        data = await self._request("POST", "/threads", json={})
        thread_id = data.get("id")
        if not isinstance(thread_id, str) or not thread_id:
            raise UpstreamProtocolError("Missing thread id in upstream response.")
        return thread_id

    async def add_message(self, thread_id: str, role: str, content: str) -> dict[str, Any]:
        return await self._request(
            "POST",
            f"/threads/{thread_id}/messages",
            json={"role": role, "content": content},
        )

    async def create_run(self, thread_id: str, assistant_id: str, instructions: str | None = None) -> Run:
        payload: dict[str, Any] = {"assistant_id": assistant_id}
        if instructions:
            payload["instructions"] = instructions
        data = await self._request("POST", f"/threads/{thread_id}/runs", json=payload)
        return self._parse_run(data, thread_id)

    async def retrieve_run(self, thread_id: str, run_id: str) -> Run:
        data = await self._request("GET", f"/threads/{thread_id}/runs/{run_id}")
        return self._parse_run(data, thread_id)

    async def list_messages(self, thread_id: str) -> list[dict[str, Any]]:
        data = await self._request("GET", f"/threads/{thread_id}/messages", params={"order": "desc", "limit": 100})
        messages = data.get("data")
        if not isinstance(messages, list):
            raise UpstreamProtocolError("Missing message list in upstream response.")
        return [m for m in messages if isinstance(m, dict)]

    @staticmethod
    def _parse_run(data: dict[str, Any], thread_id: str) -> Run:
        if not isinstance(data.get("id"), str) or not isinstance(data.get("status"), str):
            raise UpstreamProtocolError("Missing run id or status in upstream response.")
        data.setdefault("thread_id", thread_id)
        return Run.from_payload(data)
