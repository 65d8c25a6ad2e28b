import json

import httpx
import pytest

from completion_gateway.config import GatewayConfig
from completion_gateway.contracts import SingleReply
from completion_gateway.errors import TransportError
from completion_gateway.gateway import CompletionGateway
from completion_gateway.registry import ProviderDescriptor, ProviderRegistry


class FakeSession:
    """Fails for every model in `failing`, answers `text` otherwise."""

    def __init__(self, text="hello from slow", failing=("fast",)):
        self.text = text
        self.failing = set(failing)
        self.calls = []

    async def complete(self, *, model, messages, **kwargs):
        self.calls.append(model)
        if model in self.failing:
            raise TransportError("connection reset")
        return SingleReply({"choices": [{"message": {"role": "assistant", "content": self.text}}]})


async def _no_sleep(_seconds: float) -> None:
    return None


def _app(session=None, **cfg_overrides):
    pytest.importorskip("fastapi")
    from completion_gateway.server import create_app

    cfg = GatewayConfig(enable_metrics=False, groq_api_key=None, fernet_key=None, **cfg_overrides)
    registry = ProviderRegistry(
        [
            ProviderDescriptor("fast", "Fast", 8192, True, 1),
            ProviderDescriptor("org/slow", "Slow", 8192, True, 2),
        ]
    )
    gateway = CompletionGateway(cfg, session=session or FakeSession(failing=("fast",)), registry=registry, sleeper=_no_sleep)
    return create_app(cfg=cfg, gateway=gateway), gateway


def _client(app):
    return httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test")


CHAT = {"model": "auto", "messages": [{"role": "user", "content": "hi"}]}


@pytest.mark.asyncio
async def test_chat_completion_reports_failover_metadata():
    app, _ = _app()
    async with _client(app) as client:
        resp = await client.post("/v1/chat/completions", json=CHAT)

    assert resp.status_code == 200
    body = resp.json()
    assert body["choices"][0]["message"]["content"] == "hello from slow"
    assert body["model"] == "org/slow"
    assert body["x_gateway"]["provider_used"] == "org/slow"
    assert body["x_gateway"]["attempt_count"] == 1
    assert len(body["x_gateway"]["errors"]) == 4
    assert resp.headers.get("X-Request-Id")


@pytest.mark.asyncio
async def test_total_failure_maps_to_503_with_error_log_and_request_id():
    app, _ = _app(session=FakeSession(failing=("fast", "org/slow")))
    async with _client(app) as client:
        resp = await client.post("/v1/chat/completions", json=CHAT, headers={"X-Request-Id": "req-12345678"})

    assert resp.status_code == 503
    error = resp.json()["error"]
    assert error["type"] == "upstream_unavailable"
    assert error["code"] == "req-12345678"
    assert len(error["errors"]) == 8
    assert resp.headers["X-Request-Id"] == "req-12345678"


@pytest.mark.asyncio
async def test_no_active_providers_maps_to_503():
    app, gateway = _app()
    gateway.registry.set_active("fast", False)
    gateway.registry.set_active("org/slow", False)
    async with _client(app) as client:
        resp = await client.post("/v1/chat/completions", json=CHAT)

    assert resp.status_code == 503
    assert resp.json()["error"]["errors"] == []


@pytest.mark.asyncio
async def test_invalid_message_role_rejected():
    app, _ = _app()
    async with _client(app) as client:
        resp = await client.post("/v1/chat/completions", json={"messages": [{"role": "robot", "content": "hi"}]})

    assert resp.status_code == 422


@pytest.mark.asyncio
async def test_too_many_messages_is_400():
    app, _ = _app(max_messages=1)
    payload = {"messages": [{"role": "user", "content": "a"}, {"role": "user", "content": "b"}]}
    async with _client(app) as client:
        resp = await client.post("/v1/chat/completions", json=payload)

    assert resp.status_code == 400
    assert resp.json()["error"]["type"] == "invalid_request_error"


@pytest.mark.asyncio
async def test_oversized_body_is_413():
    app, _ = _app(max_request_body_bytes=64)
    payload = {"messages": [{"role": "user", "content": "x" * 500}]}
    async with _client(app) as client:
        resp = await client.post("/v1/chat/completions", json=payload)

    assert resp.status_code == 413


@pytest.mark.asyncio
async def test_stream_request_returns_single_sse_chunk():
    app, _ = _app()
    async with _client(app) as client:
        resp = await client.post("/v1/chat/completions", json={**CHAT, "stream": True})

    assert resp.status_code == 200
    assert resp.headers["content-type"].startswith("text/event-stream")
    assert resp.headers["X-Gateway-Provider"] == "org/slow"
    lines = [line for line in resp.text.split("\n\n") if line]
    assert lines[-1] == "data: [DONE]"
    contents = [
        json.loads(line[len("data: ") :])["choices"][0]["delta"].get("content") for line in lines[:-1]
    ]
    assert [c for c in contents if c] == ["hello from slow"]


@pytest.mark.asyncio
async def test_journal_analysis_falls_back_when_upstream_down():
    app, _ = _app(session=FakeSession(failing=("fast", "org/slow")))
    async with _client(app) as client:
        resp = await client.post(
            "/v1/journal/analysis", json={"journal_text": "I exercised today and felt great", "mood": 4}
        )

    assert resp.status_code == 200
    report = resp.json()
    assert report["source"] == "fallback"
    assert report["verdict"] == "Positive"
    assert report["reason_line"] == "Prioritizing physical wellbeing"
    assert len(report["diagnostics"]) == 8


@pytest.mark.asyncio
async def test_journal_analysis_parses_model_reply():
    session = FakeSession(text="Assessment: ⛔ Drove after two drinks\nReward: Call a friend instead", failing=())
    app, _ = _app(session=session)
    async with _client(app) as client:
        resp = await client.post("/v1/journal/analysis", json={"journal_text": "...", "mood": 3})

    report = resp.json()
    assert report["source"] == "model"
    assert report["verdict"] == "Severe"
    assert report["model_used"] == "fast"
    assert report["encouragement"] == "Call a friend instead"


@pytest.mark.asyncio
async def test_journal_prompts_fall_back_to_canned_prompts():
    app, _ = _app(session=FakeSession(failing=("fast", "org/slow")))
    async with _client(app) as client:
        resp = await client.post("/v1/journal/prompts", json={"history": ["walked"], "mood": 2})

    assert resp.status_code == 200
    assert len(resp.json()["prompts"]) == 3


@pytest.mark.asyncio
async def test_provider_listing_and_update():
    app, gateway = _app()
    async with _client(app) as client:
        listed = await client.get("/v1/providers")
        missing = await client.patch("/v1/providers/nope", json={"active": False})
        empty = await client.patch("/v1/providers/fast", json={})
        updated = await client.patch("/v1/providers/org/slow", json={"priority": 0})

    assert [s["model"]["id"] for s in listed.json()] == ["fast", "org/slow"]
    assert missing.status_code == 404
    assert empty.status_code == 400
    assert updated.status_code == 200
    assert [d.id for d in gateway.registry.active_providers_ordered()] == ["org/slow", "fast"]


@pytest.mark.asyncio
async def test_upstream_health_reports_counts():
    app, gateway = _app(session=FakeSession(failing=()))
    gateway.registry.set_active("fast", False)
    async with _client(app) as client:
        resp = await client.get("/v1/health")
        liveness = await client.get("/healthz")

    body = resp.json()
    assert body["is_healthy"] is True
    assert body["active_models"] == 1
    assert body["total_models"] == 2
    assert "T" in body["last_check"]
    assert liveness.json() == {"status": "ok"}
