import json

import pytest

from completion_gateway.streaming import iter_sse_data, sse_from_text_stream


async def _lines(*lines):
    for line in lines:
        yield line


@pytest.mark.asyncio
async def test_iter_sse_data_skips_comments_and_stops_at_done():
    out = [
        raw
        async for raw in iter_sse_data(
            _lines(": ping", "", "event: message", "data: {\"a\": 1}", "data:", "data: [DONE]", "data: late")
        )
    ]

    assert out == ['{"a": 1}']


@pytest.mark.asyncio
async def test_sse_generator_emits_done_and_consistent_id():
    async def gen():
        yield "he"
        yield ""
        yield "llo"

    chunks = []
    async for b in sse_from_text_stream(model="m", text_stream=gen()):
        chunks.append(b.decode("utf-8"))

    assert chunks[-1] == "data: [DONE]\n\n"
    payloads = [json.loads(c[len("data: ") :]) for c in chunks[:-1]]
    assert len({p["id"] for p in payloads}) == 1
    assert payloads[0]["choices"][0]["delta"] == {"role": "assistant"}
    assert [p["choices"][0]["delta"].get("content") for p in payloads[1:-1]] == ["he", "llo"]
    assert payloads[-1]["choices"][0]["finish_reason"] == "stop"
