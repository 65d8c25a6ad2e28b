from __future__ import annotations

import json
import time
import uuid
from collections.abc import AsyncIterator
from typing import Any

SSE_DONE = "[DONE]"


async def iter_sse_data(lines: AsyncIterator[str]) -> AsyncIterator[str]:
    """Yield the `data:` payloads of an event stream, stopping at `[DONE]`."""
    async for line in lines:
        if not line or not line.startswith("data:"):
            continue
        raw = line[len("data:") :].strip()
        if not raw:
            continue
        if raw == SSE_DONE:
            return
        yield raw


def sse_encode(data: str) -> bytes:
    return f"data: {data}\n\n".encode("utf-8")


def completion_chunk(
    *,
    chunk_id: str,
    created: int,
    model: str,
    delta: dict[str, Any],
    finish_reason: str | None = None,
) -> dict[str, Any]:
    return {
        "id": chunk_id,
        "object": "chat.completion.chunk",
        "created": created,
        "model": model,
        "choices": [{"index": 0, "delta": delta, "finish_reason": finish_reason}],
    }


async def sse_from_text_stream(*, model: str, text_stream: AsyncIterator[str]) -> AsyncIterator[bytes]:
    chunk_id = f"chatcmpl-{uuid.uuid4().hex}"
    created = int(time.time())
    yield sse_encode(json.dumps(completion_chunk(chunk_id=chunk_id, created=created, model=model, delta={"role": "assistant"})))
    async for piece in text_stream:
        if not piece:
            continue
        yield sse_encode(
            json.dumps(completion_chunk(chunk_id=chunk_id, created=created, model=model, delta={"content": piece}))
        )
    yield sse_encode(
        json.dumps(completion_chunk(chunk_id=chunk_id, created=created, model=model, delta={}, finish_reason="stop"))
    )
    yield sse_encode(SSE_DONE)
