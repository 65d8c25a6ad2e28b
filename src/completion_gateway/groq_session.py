from __future__ import annotations

import json
from collections.abc import AsyncIterator, Sequence
from typing import Any

import httpx
import structlog

from .contracts import ChatMessage, ProviderReply, SingleReply, StreamReply
from .errors import (
    AttemptTimeoutError,
    AuthenticationError,
    MalformedReplyError,
    ProviderError,
    RateLimitError,
    TransportError,
)
from .streaming import iter_sse_data

log = structlog.get_logger()

GROQ_API_BASE = "https://api.groq.com/openai/v1"


class GroqSession:
    """
    One-shot client for an OpenAI-compatible chat completions endpoint.

    Each `complete` call is exactly one HTTP request. Retries, backoff and
    failover belong to the dispatcher, so this class only maps transport and
    status failures onto the gateway's attempt errors.
    """

    def __init__(
        self,
        api_key: str | None,
        *,
        client: httpx.AsyncClient | None = None,
        base_url: str = GROQ_API_BASE,
        timeout_seconds: float = 30,
    ):
        self.api_key = api_key
        self._client = client or httpx.AsyncClient(timeout=timeout_seconds)
        self._base_url = base_url.rstrip("/")

    async def close(self) -> None:
        await self._client.aclose()

    def _headers(self) -> dict[str, str]:
        if not self.api_key:
            raise AuthenticationError("Missing GROQ_API_KEY for upstream call.")
        return {"Authorization": f"Bearer {self.api_key}"}

    @staticmethod
    def _raise_for_status(status_code: int, headers: httpx.Headers, body: str) -> None:
        if status_code in (401, 403):
            raise AuthenticationError("Upstream rejected credentials (check GROQ_API_KEY).", status_code=status_code)
        if status_code == 429:
            retry_after = headers.get("retry-after")
            retry_seconds = int(retry_after) if retry_after and retry_after.isdigit() else None
            raise RateLimitError(retry_after_seconds=retry_seconds)
        if status_code >= 400:
            if status_code >= 500:
                log.warning("upstream_5xx", status_code=status_code, body=body[:500])
            raise ProviderError(f"Upstream error {status_code}.", status_code=status_code)

    async def complete(
        self,
        *,
        model: str,
        messages: Sequence[ChatMessage],
        temperature: float | None = None,
        max_tokens: int | None = None,
        top_p: float | None = None,
        stream: bool = False,
    ) -> ProviderReply:
        headers = self._headers()
        url = f"{self._base_url}/chat/completions"

        payload: dict[str, Any] = {
            "model": model,
            "messages": [m.as_dict() for m in messages],
            "stream": stream,
        }
        if temperature is not None:
            payload["temperature"] = temperature
        if max_tokens is not None:
            payload["max_tokens"] = max_tokens
        if top_p is not None:
            payload["top_p"] = top_p

        if stream:
            return StreamReply(self._stream_chunks(url, headers, payload))

        try:
            resp = await self._client.post(url, headers=headers, json=payload)
        except httpx.TimeoutException as e:
            raise AttemptTimeoutError("Upstream request timed out.") from e
        except httpx.HTTPError as e:
            raise TransportError(f"Upstream request failed: {e.__class__.__name__}.") from e

        self._raise_for_status(resp.status_code, resp.headers, resp.text)
        try:
            data = resp.json()
        except ValueError as e:
            raise MalformedReplyError("Upstream response is not JSON.") from e

        log.debug("upstream_complete_ok", model=model, prompt_chars=sum(len(m.content) for m in messages))
        return SingleReply(data)

    async def _stream_chunks(self, url: str, headers: dict[str, str], payload: dict[str, Any]) -> AsyncIterator[Any]:
        try:
            async with self._client.stream("POST", url, headers=headers, json=payload) as resp:
                if resp.status_code >= 400:
                    body = (await resp.aread()).decode("utf-8", errors="replace")
                    self._raise_for_status(resp.status_code, resp.headers, body)
                async for raw in iter_sse_data(resp.aiter_lines()):
                    try:
                        yield json.loads(raw)
                    except json.JSONDecodeError as e:
                        raise MalformedReplyError("Failed to decode upstream SSE JSON.") from e
        except httpx.TimeoutException as e:
            raise AttemptTimeoutError("Upstream stream timed out.") from e
        except httpx.HTTPError as e:
            raise TransportError(f"Upstream stream failed: {e.__class__.__name__}.") from e
