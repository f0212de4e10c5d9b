"""Tests for the OpenAI-compatible streaming client against a mocked HTTP transport."""

import json

import httpx
import pytest

from pagechat.errors import ErrorKind, GenerationError, classify_backend_error
from pagechat.llm_client import OpenAICompatibleBackend

MESSAGES = [{"role": "system", "content": "sys"}, {"role": "user", "content": "hi"}]


def _sse(*payloads: str) -> bytes:
    return "".join(f"data: {p}\n\n" for p in payloads).encode("utf-8")


async def _drain(backend: OpenAICompatibleBackend) -> list[str]:
    return [f async for f in backend.stream_chat(MESSAGES, model="gpt-test", temperature=0.3, max_tokens=64)]


async def test_streams_delta_content_until_done() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        body = _sse(
            json.dumps({"choices": [{"delta": {"role": "assistant"}}]}),
            json.dumps({"choices": [{"delta": {"content": "Hel"}}]}),
            json.dumps({"choices": [{"delta": {"content": "lo"}}]}),
            "[DONE]",
            json.dumps({"choices": [{"delta": {"content": "ignored"}}]}),
        )
        return httpx.Response(200, content=body, headers={"content-type": "text/event-stream"})

    backend = OpenAICompatibleBackend(
        api_key="sk-test", base_url="http://llm.local/", transport=httpx.MockTransport(handler)
    )

    assert await _drain(backend) == ["Hel", "lo"]

    [request] = seen
    assert str(request.url) == "http://llm.local/v1/chat/completions"
    assert request.headers["Authorization"] == "Bearer sk-test"
    payload = json.loads(request.content)
    assert payload["stream"] is True
    assert (payload["model"], payload["temperature"], payload["max_tokens"]) == ("gpt-test", 0.3, 64)
    assert payload["messages"] == MESSAGES


async def test_error_status_carries_provider_code() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            429,
            json={"error": {"message": "You exceeded your current quota", "code": "insufficient_quota"}},
        )

    backend = OpenAICompatibleBackend(api_key="sk-test", transport=httpx.MockTransport(handler))

    with pytest.raises(GenerationError) as exc_info:
        await _drain(backend)

    assert exc_info.value.status == 429
    assert exc_info.value.code == "insufficient_quota"
    assert classify_backend_error(exc_info.value) is ErrorKind.QUOTA_EXCEEDED


async def test_non_json_error_body() -> None:
    backend = OpenAICompatibleBackend(
        api_key="sk-test", transport=httpx.MockTransport(lambda r: httpx.Response(502, text="<html>bad gateway"))
    )

    with pytest.raises(GenerationError) as exc_info:
        await _drain(backend)

    assert exc_info.value.status == 502
    assert exc_info.value.code is None
    assert classify_backend_error(exc_info.value) is ErrorKind.BACKEND_UNAVAILABLE


async def test_timeout_is_reported_as_timeout() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("read timed out", request=request)

    backend = OpenAICompatibleBackend(api_key="sk-test", timeout_s=2, transport=httpx.MockTransport(handler))

    with pytest.raises(GenerationError) as exc_info:
        await _drain(backend)

    assert exc_info.value.code == "timeout"
    assert classify_backend_error(exc_info.value) is ErrorKind.TIMEOUT


async def test_connection_failure_is_unknown() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    backend = OpenAICompatibleBackend(api_key="sk-test", transport=httpx.MockTransport(handler))

    with pytest.raises(GenerationError) as exc_info:
        await _drain(backend)

    assert exc_info.value.code == "ConnectError"
    assert classify_backend_error(exc_info.value) is ErrorKind.UNKNOWN
