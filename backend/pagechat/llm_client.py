from __future__ import annotations

import json
from typing import Any, AsyncIterator, Protocol

import httpx

from .config import LLM_BASE_URL
from .errors import GenerationError
from .logging_utils import get_logger

log = get_logger(__name__)


class GenerationBackend(Protocol):
    def stream_chat(
        self,
        messages: list[dict[str, Any]],
        *,
        model: str,
        temperature: float,
        max_tokens: int,
    ) -> AsyncIterator[str]: ...


def _error_code(resp: httpx.Response, body: str) -> tuple[str | None, str]:
    try:
        data = json.loads(body)
    except (json.JSONDecodeError, ValueError):
        return None, f"HTTP {resp.status_code}"
    err = data.get("error") if isinstance(data, dict) else None
    if not isinstance(err, dict):
        return None, f"HTTP {resp.status_code}"
    code = err.get("code") or err.get("type")
    msg = str(err.get("message") or "").strip() or f"HTTP {resp.status_code}"
    return (str(code) if code else None), msg


def _delta_content(data_str: str) -> str | None:
    try:
        data = json.loads(data_str)
    except json.JSONDecodeError:
        return None
    if not isinstance(data, dict):
        return None
    choices = data.get("choices") or [{}]
    choice0 = choices[0] if isinstance(choices[0], dict) else {}
    delta = choice0.get("delta") or {}
    content = delta.get("content") if isinstance(delta, dict) else None
    return str(content) if content else None


class OpenAICompatibleBackend:
    """Streams chat completions from any server speaking the OpenAI /v1/chat/completions dialect."""

    def __init__(
        self,
        *,
        api_key: str,
        base_url: str = LLM_BASE_URL,
        timeout_s: float = 60.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout_s = timeout_s
        self.transport = transport

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    async def stream_chat(
        self,
        messages: list[dict[str, Any]],
        *,
        model: str,
        temperature: float,
        max_tokens: int,
    ) -> AsyncIterator[str]:
        payload = {
            "model": model,
            "messages": messages,
            "temperature": temperature,
            "max_tokens": max_tokens,
            "stream": True,
        }

        # For streaming, read timeout is per-chunk.
        timeout = httpx.Timeout(self.timeout_s, connect=10.0, read=self.timeout_s, write=10.0, pool=10.0)
        async with httpx.AsyncClient(timeout=timeout, transport=self.transport) as client:
            try:
                async with client.stream(
                    "POST", f"{self.base_url}/v1/chat/completions", json=payload, headers=self._headers()
                ) as resp:
                    if resp.status_code >= 400:
                        body = (await resp.aread()).decode("utf-8", errors="replace")
                        code, msg = _error_code(resp, body)
                        raise GenerationError(msg, status=resp.status_code, code=code)
                    async for line in resp.aiter_lines():
                        s = line.strip()
                        if not s.startswith("data:"):
                            continue
                        data_str = s[len("data:") :].strip()
                        if not data_str:
                            continue
                        if data_str == "[DONE]":
                            break
                        content = _delta_content(data_str)
                        if content:
                            yield content
            except httpx.TimeoutException as e:
                raise GenerationError(
                    f"Generation request timed out after {self.timeout_s:.1f}s ({type(e).__name__}).", code="timeout"
                ) from e
            except httpx.HTTPError as e:
                msg = str(e).strip() or repr(e)
                raise GenerationError(
                    f"Generation request failed ({type(e).__name__}): {msg}", code=type(e).__name__
                ) from e
