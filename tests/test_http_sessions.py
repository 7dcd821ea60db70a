import json

import httpx
import pytest

from gabriel_pipeline.assistants_session import AssistantsSession
from gabriel_pipeline.completions_session import CompletionsSession
from gabriel_pipeline.errors import (
    AssistantNotFoundError,
    AuthenticationError,
    CircuitBreakerOpenError,
    EmptyResponseError,
    RateLimitError,
    UpstreamProtocolError,
)


async def no_sleep(_: float) -> None:
    return None


def _client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
async def test_assistants_session_sends_beta_header_and_parses_run():
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        assert request.headers["authorization"] == "Bearer k"
        assert request.headers["openai-beta"] == "assistants=v2"
        body = json.loads(request.content.decode("utf-8"))
        assert body == {"assistant_id": "asst_1", "instructions": "Be brief."}
        return httpx.Response(200, json={"id": "run_1", "status": "queued"})

    client = _client(handler)
    s = AssistantsSession("k", client=client, base_url="https://example.test/v1")
    try:
        run = await s.create_run("thread_1", "asst_1", "Be brief.")
    finally:
        await client.aclose()

    assert seen[0].url.path == "/v1/threads/thread_1/runs"
    assert run.id == "run_1"
    assert run.status == "queued"
    assert run.thread_id == "thread_1"
    assert not run.is_terminal


@pytest.mark.asyncio
async def test_assistants_session_lists_messages_newest_first():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.params.get("order") == "desc"
        return httpx.Response(200, json={"data": [{"id": "m2", "role": "assistant"}, "junk"]})

    client = _client(handler)
    s = AssistantsSession("k", client=client)
    try:
        out = await s.list_messages("thread_1")
    finally:
        await client.aclose()
    assert out == [{"id": "m2", "role": "assistant"}]


@pytest.mark.asyncio
async def test_missing_assistant_raises_assistant_not_found():
    def handler(_: httpx.Request) -> httpx.Response:
        return httpx.Response(404, json={"error": {"message": "No assistant found with id 'asst_gone'."}})

    client = _client(handler)
    s = AssistantsSession("k", client=client)
    try:
        with pytest.raises(AssistantNotFoundError) as exc:
            await s.create_run("thread_1", "asst_gone")
    finally:
        await client.aclose()
    assert exc.value.status_code == 404
    assert "No assistant found with id" in str(exc.value)


@pytest.mark.asyncio
async def test_other_404_is_a_protocol_error():
    def handler(_: httpx.Request) -> httpx.Response:
        return httpx.Response(404, json={"error": {"message": "No thread found with id 'thread_x'."}})

    client = _client(handler)
    s = AssistantsSession("k", client=client)
    try:
        with pytest.raises(UpstreamProtocolError) as exc:
            await s.retrieve_run("thread_x", "run_1")
    finally:
        await client.aclose()
    assert not isinstance(exc.value, AssistantNotFoundError)
    assert exc.value.status_code == 404


@pytest.mark.asyncio
async def test_missing_key_raises_authentication_error_without_calling_upstream():
    def handler(_: httpx.Request) -> httpx.Response:
        raise AssertionError("upstream must not be called")

    client = _client(handler)
    s = AssistantsSession(None, client=client)
    try:
        with pytest.raises(AuthenticationError):
            await s.create_thread()
    finally:
        await client.aclose()


@pytest.mark.asyncio
async def test_401_raises_authentication_error():
    def handler(_: httpx.Request) -> httpx.Response:
        return httpx.Response(401, json={"error": {"message": "Incorrect API key provided: sk-abc"}})

    client = _client(handler)
    s = CompletionsSession("k", client=client)
    try:
        with pytest.raises(AuthenticationError):
            await s.complete([{"role": "user", "content": "hi"}])
    finally:
        await client.aclose()


@pytest.mark.asyncio
async def test_429_is_retried_then_succeeds():
    calls = {"n": 0}
    sleeps: list[float] = []

    async def record_sleep(seconds: float) -> None:
        sleeps.append(seconds)

    def handler(_: httpx.Request) -> httpx.Response:
        calls["n"] += 1
        if calls["n"] == 1:
            return httpx.Response(429, headers={"retry-after": "2"}, json={"error": {"message": "slow down"}})
        return httpx.Response(200, json={"choices": [{"message": {"content": "hello"}}]})

    client = _client(handler)
    s = CompletionsSession("k", client=client, max_attempts=2, sleeper=record_sleep)
    try:
        out = await s.complete([{"role": "user", "content": "hi"}])
    finally:
        await client.aclose()
    assert out == "hello"
    assert calls["n"] == 2
    assert sleeps == [2]


@pytest.mark.asyncio
async def test_429_exhausted_raises_rate_limit_error():
    def handler(_: httpx.Request) -> httpx.Response:
        return httpx.Response(429, headers={"retry-after": "12"}, json={"error": {"message": "rl"}})

    client = _client(handler)
    s = CompletionsSession("k", client=client, max_attempts=1, sleeper=no_sleep)
    try:
        with pytest.raises(RateLimitError) as exc:
            await s.complete([{"role": "user", "content": "hi"}])
    finally:
        await client.aclose()
    assert exc.value.retry_after_seconds == 12


@pytest.mark.asyncio
async def test_completions_payload_uses_model_override_and_known_params_only():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path.endswith("/chat/completions")
        body = json.loads(request.content.decode("utf-8"))
        assert body["model"] == "gpt-4o-mini"
        assert body["temperature"] == 0.7
        assert body["max_tokens"] == 2000
        assert "assistant_id" not in body
        return httpx.Response(200, json={"choices": [{"message": {"content": "ok"}}]})

    client = _client(handler)
    s = CompletionsSession("k", client=client)
    try:
        out = await s.complete(
            [{"role": "user", "content": "hi"}],
            {"model": "gpt-4o-mini", "temperature": 0.7, "max_tokens": 2000, "assistant_id": "x"},
        )
    finally:
        await client.aclose()
    assert out == "ok"


@pytest.mark.asyncio
async def test_completions_empty_content_raises_empty_response():
    def handler(_: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"choices": [{"message": {"content": "  "}}]})

    client = _client(handler)
    s = CompletionsSession("k", client=client)
    try:
        with pytest.raises(EmptyResponseError):
            await s.complete([{"role": "user", "content": "hi"}])
    finally:
        await client.aclose()


@pytest.mark.asyncio
async def test_circuit_breaker_opens_after_consecutive_failures():
    now = {"t": 100.0}
    calls = {"n": 0}

    def handler(_: httpx.Request) -> httpx.Response:
        calls["n"] += 1
        return httpx.Response(503, json={"error": {"message": "overloaded"}})

    client = _client(handler)
    s = CompletionsSession(
        "k",
        client=client,
        max_attempts=1,
        circuit_breaker_failures=2,
        circuit_breaker_reset_seconds=30,
        sleeper=no_sleep,
        clock=lambda: now["t"],
    )
    try:
        for _ in range(2):
            with pytest.raises(UpstreamProtocolError):
                await s.complete([{"role": "user", "content": "hi"}])
        with pytest.raises(CircuitBreakerOpenError) as exc:
            await s.complete([{"role": "user", "content": "hi"}])
        assert exc.value.retry_after_seconds == 31
        assert calls["n"] == 2

        now["t"] += 31
        with pytest.raises(UpstreamProtocolError):
            await s.complete([{"role": "user", "content": "hi"}])
        assert calls["n"] == 3
    finally:
        await client.aclose()


@pytest.mark.asyncio
async def test_transport_failure_is_reported_as_network_failure():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    client = _client(handler)
    s = CompletionsSession("k", client=client, max_attempts=2, sleeper=no_sleep)
    try:
        with pytest.raises(UpstreamProtocolError) as exc:
            await s.complete([{"role": "user", "content": "hi"}])
    finally:
        await client.aclose()
    assert "network request failed" in str(exc.value)


@pytest.mark.asyncio
async def test_close_leaves_injected_client_open():
    def handler(_: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"id": "thread_1"})

    client = _client(handler)
    s = AssistantsSession("k", client=client)
    await s.close()
    try:
        assert not client.is_closed
        assert await s.create_thread() == "thread_1"
    finally:
        await client.aclose()
