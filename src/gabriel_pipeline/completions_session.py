from __future__ import annotations

from typing import Any

import structlog

from .errors import EmptyResponseError, UpstreamProtocolError
from .http_session import OpenAIHttpSession

log = structlog.get_logger()

_GENERATION_PARAMS = ("temperature", "top_p", "max_tokens", "stop", "presence_penalty", "frequency_penalty")


class CompletionsSession(OpenAIHttpSession):
    """Single-shot chat completions, used as the secondary route."""

    provider_name = "chat_completions"

    def __init__(self, api_key: str | None, *, model: str = "gpt-4o", **kwargs: Any):
        super().__init__(api_key, **kwargs)
        self.model = model

    async def complete(self, messages: list[dict[str, str]], parameters: dict[str, Any] | None = None) -> str:
        params = dict(parameters or {})
        model = params.pop("model", None) or self.model
        ignored = [k for k in params if k not in _GENERATION_PARAMS]
        if ignored:
            log.debug("completions_ignored_params", keys=ignored)

        payload: dict[str, Any] = {"model": model, "messages": messages}
        for key in _GENERATION_PARAMS:
            if params.get(key) is not None:
                payload[key] = params[key]

        data = await self._request("POST", "/chat/completions", json=payload)

        choices = data.get("choices")
        if not isinstance(choices, list) or not choices:
            raise UpstreamProtocolError("Missing choices in upstream response.")
        message = choices[0].get("message") if isinstance(choices[0], dict) else None
        if not isinstance(message, dict):
            raise UpstreamProtocolError("Missing message in upstream response.")
        text = message.get("content")
        if not isinstance(text, str) or not text.strip():
            raise EmptyResponseError("Empty response received from the completion provider.")

        log.debug("completions_ok", model=model, prompt_chars=sum(len(m.get("content", "")) for m in messages))
        return text
