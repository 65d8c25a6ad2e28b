import asyncio

import pytest

from completion_gateway.contracts import CompletionRequest, SingleReply, StreamReply
from completion_gateway.dispatcher import CompletionDispatcher
from completion_gateway.errors import (
    AllProvidersFailedError,
    DispatchCancelledError,
    NoProvidersAvailableError,
    TransportError,
)
from completion_gateway.health import HealthTracker
from completion_gateway.registry import ProviderDescriptor, ProviderRegistry


def _reply(text: str) -> SingleReply:
    return SingleReply({"choices": [{"message": {"role": "assistant", "content": text}}]})


class ScriptedSession:
    """Per-model outcomes in order; the last outcome repeats. Exceptions are raised."""

    def __init__(self, script):
        self.script = {k: list(v) for k, v in script.items()}
        self.calls = []

    async def complete(self, *, model, messages, temperature=None, max_tokens=None, top_p=None, stream=False):
        self.calls.append({"model": model, "max_tokens": max_tokens, "stream": stream})
        outcomes = self.script[model]
        outcome = outcomes.pop(0) if len(outcomes) > 1 else outcomes[0]
        if isinstance(outcome, BaseException):
            raise outcome
        if callable(outcome):
            return await outcome()
        return _reply(outcome)


def _registry(*ids: str, max_tokens: int = 8192) -> ProviderRegistry:
    return ProviderRegistry(ProviderDescriptor(pid, pid, max_tokens, True, i + 1) for i, pid in enumerate(ids))


def _dispatcher(registry, session, **kwargs):
    delays = []

    async def record_sleep(seconds: float) -> None:
        delays.append(seconds)

    d = CompletionDispatcher(registry, session, sleeper=record_sleep, **kwargs)
    return d, delays


def _request(**kwargs) -> CompletionRequest:
    return CompletionRequest.from_prompt("hi", **kwargs)


@pytest.mark.asyncio
async def test_failover_scenario_fast_fails_slow_succeeds():
    session = ScriptedSession({"fast": [TransportError("connection reset")], "slow": ["hello"]})
    d, delays = _dispatcher(_registry("fast", "slow"), session)

    result = await d.dispatch(_request())

    assert result.text == "hello"
    assert result.provider_used == "slow"
    assert result.attempt_count == 1
    assert len(result.errors) == 4
    assert all(e.startswith("[fast#") and "TransportError" in e for e in result.errors)
    assert [c["model"] for c in session.calls] == ["fast"] * 4 + ["slow"]
    assert delays == [1.0, 2.0, 4.0]


@pytest.mark.asyncio
@pytest.mark.parametrize("k", [0, 1, 2, 3])
async def test_fair_retry_stays_on_recovering_provider(k):
    outcomes = [TransportError("flaky")] * k + ["recovered"]
    session = ScriptedSession({"p1": outcomes, "p2": ["unused"]})
    d, _ = _dispatcher(_registry("p1", "p2"), session, max_retries=3)

    result = await d.dispatch(_request())

    assert result.provider_used == "p1"
    assert result.attempt_count == k + 1
    assert len(result.errors) == k
    assert all(c["model"] == "p1" for c in session.calls)


@pytest.mark.asyncio
@pytest.mark.parametrize("max_retries", [0, 1, 3])
async def test_total_failure_logs_every_attempt(max_retries):
    session = ScriptedSession({pid: [TransportError("down")] for pid in ("a", "b", "c")})
    health = HealthTracker()
    d, _ = _dispatcher(_registry("a", "b", "c"), session, health=health, max_retries=max_retries)

    with pytest.raises(AllProvidersFailedError) as exc:
        await d.dispatch(_request())

    assert len(exc.value.errors) == (max_retries + 1) * 3
    assert exc.value.attempts == (max_retries + 1) * 3
    assert exc.value.kind == "AllProvidersFailed"
    assert health.state().healthy is False


@pytest.mark.asyncio
@pytest.mark.parametrize("blank", ["", "   ", "\n\t"])
async def test_empty_reply_counts_as_failed_attempt(blank):
    session = ScriptedSession({"p1": [blank, "finally"]})
    d, _ = _dispatcher(_registry("p1"), session)

    result = await d.dispatch(_request())

    assert result.text == "finally"
    assert result.attempt_count == 2
    assert result.errors[0].startswith("[p1#1] EmptyResponse")


@pytest.mark.asyncio
async def test_stream_with_no_fragments_is_rejected_like_empty_reply():
    async def empty_stream():
        async def gen():
            if False:
                yield ""

        return StreamReply(gen())

    async def text_stream():
        async def gen():
            yield {"choices": [{"delta": {"role": "assistant"}}]}
            yield {"choices": [{"delta": {"content": "he"}}]}
            yield {"choices": [{"delta": {"content": "llo"}}]}

        return StreamReply(gen())

    session = ScriptedSession({"p1": [empty_stream, text_stream]})
    d, _ = _dispatcher(_registry("p1"), session)

    result = await d.dispatch(_request(stream=True))

    assert result.text == "hello"
    assert "EmptyResponse" in result.errors[0]
    assert session.calls[0]["stream"] is True


@pytest.mark.asyncio
async def test_no_active_providers_fails_immediately():
    registry = _registry("a")
    registry.set_active("a", False)
    session = ScriptedSession({"a": ["never"]})
    d, _ = _dispatcher(registry, session)

    with pytest.raises(NoProvidersAvailableError):
        await d.dispatch(_request())
    assert session.calls == []


@pytest.mark.asyncio
async def test_max_tokens_clamped_to_provider_ceiling():
    session = ScriptedSession({"small": [TransportError("x")], "big": ["ok"]})
    registry = ProviderRegistry(
        [ProviderDescriptor("small", "s", 100, True, 1), ProviderDescriptor("big", "b", 100000, True, 2)]
    )
    d, _ = _dispatcher(registry, session, max_retries=0)

    await d.dispatch(_request(max_tokens=4096))

    assert [c["max_tokens"] for c in session.calls] == [100, 4096]


@pytest.mark.asyncio
async def test_attempt_timeout_is_recorded_and_retried():
    async def slow():
        await asyncio.sleep(5)
        return _reply("too late")

    session = ScriptedSession({"p1": [slow], "p2": ["fast answer"]})
    d, _ = _dispatcher(_registry("p1", "p2"), session, max_retries=1)

    result = await d.dispatch(_request(timeout_seconds=0.01))

    assert result.provider_used == "p2"
    assert len(result.errors) == 2
    assert all("AttemptTimeout" in e for e in result.errors)


@pytest.mark.asyncio
async def test_unexpected_exception_is_logged_as_provider_failure():
    session = ScriptedSession({"p1": [KeyError("choices")], "p2": ["ok"]})
    d, _ = _dispatcher(_registry("p1", "p2"), session, max_retries=0)

    result = await d.dispatch(_request())

    assert result.provider_used == "p2"
    assert result.errors == ("[p1#1] ProviderError: KeyError: 'choices'",)


@pytest.mark.asyncio
async def test_malformed_reply_is_retried():
    session = ScriptedSession({"p1": [lambda: _async(SingleReply({"unexpected": True})), "ok"]})
    d, _ = _dispatcher(_registry("p1"), session)

    result = await d.dispatch(_request())

    assert result.attempt_count == 2
    assert "MalformedReply" in result.errors[0]


async def _async(value):
    return value


@pytest.mark.asyncio
async def test_success_marks_health_healthy():
    health = HealthTracker()
    health.record_outcome(False)
    d, _ = _dispatcher(_registry("p1"), ScriptedSession({"p1": ["ok"]}), health=health)

    await d.dispatch(_request())

    assert health.state().healthy is True


@pytest.mark.asyncio
async def test_cancel_before_retry_returns_log_so_far():
    cancel = asyncio.Event()

    async def fail_and_cancel():
        cancel.set()
        raise TransportError("boom")

    session = ScriptedSession({"p1": [fail_and_cancel], "p2": ["never"]})
    d, _ = _dispatcher(_registry("p1", "p2"), session)

    with pytest.raises(DispatchCancelledError) as exc:
        await d.dispatch(_request(), cancel=cancel)

    assert exc.value.attempts == 1
    assert len(exc.value.errors) == 1
    assert [c["model"] for c in session.calls] == ["p1"]


@pytest.mark.asyncio
async def test_cancel_during_attempt_abandons_call():
    cancel = asyncio.Event()

    async def hang():
        await asyncio.sleep(10)
        return _reply("late")

    session = ScriptedSession({"p1": [hang]})
    d, _ = _dispatcher(_registry("p1"), session)

    async def cancel_soon():
        await asyncio.sleep(0.01)
        cancel.set()

    canceller = asyncio.ensure_future(cancel_soon())
    with pytest.raises(DispatchCancelledError) as exc:
        await d.dispatch(_request(), cancel=cancel)
    await canceller

    assert exc.value.attempts == 1
    assert exc.value.errors == ()


@pytest.mark.asyncio
async def test_concurrent_dispatches_share_registry_and_health():
    release = asyncio.Event()

    class GatedSession:
        """Provider "a" refuses prompts starting with "fail" and holds the rest until released."""

        def __init__(self):
            self.calls = []

        async def complete(self, *, model, messages, **kwargs):
            prompt = messages[-1].content
            self.calls.append((model, prompt))
            if model == "a":
                if prompt.startswith("fail"):
                    raise TransportError("down")
                await release.wait()
            return _reply(f"{model}:{prompt}")

    session = GatedSession()
    registry = _registry("a", "b")
    health = HealthTracker()
    d, _ = _dispatcher(registry, session, health=health)

    in_flight = [asyncio.ensure_future(d.generate_completion(p)) for p in ("ok-1", "fail-1", "ok-2", "fail-2")]
    for _ in range(10):
        await asyncio.sleep(0)

    # Dispatches already running keep their snapshot; new ones see the change.
    assert registry.set_active("a", False) is True
    late = await d.generate_completion("ok-late")
    release.set()
    ok_1, fail_1, ok_2, fail_2 = await asyncio.gather(*in_flight)

    assert (late.text, late.provider_used, late.errors) == ("b:ok-late", "b", ())
    for result, prompt in ((ok_1, "ok-1"), (ok_2, "ok-2")):
        assert (result.text, result.provider_used, result.errors) == (f"a:{prompt}", "a", ())
    for result, prompt in ((fail_1, "fail-1"), (fail_2, "fail-2")):
        assert result.text == f"b:{prompt}"
        assert len(result.errors) == 4
        assert all(e.startswith("[a#") for e in result.errors)
    assert ("a", "ok-late") not in session.calls
    assert health.state().healthy is True


@pytest.mark.asyncio
async def test_generate_completion_builds_system_and_user_messages():
    seen = {}

    class Session:
        async def complete(self, *, model, messages, **kwargs):
            seen["messages"] = [m.as_dict() for m in messages]
            seen.update(kwargs)
            return _reply("ok")

    d, _ = _dispatcher(_registry("p1"), Session())

    result = await d.generate_completion("How was my day?", "Be kind.", temperature=0.2, top_p=0.9)

    assert result.text == "ok"
    assert seen["messages"] == [
        {"role": "system", "content": "Be kind."},
        {"role": "user", "content": "How was my day?"},
    ]
    assert seen["temperature"] == 0.2
    assert seen["top_p"] == 0.9
    assert seen["max_tokens"] == 2048


@pytest.mark.asyncio
async def test_error_event_after_partial_stream_fails_over():
    async def broken_stream():
        async def gen():
            yield {"choices": [{"delta": {"content": "The first half of an ans"}}]}
            yield {"error": {"message": "model overloaded"}}

        return StreamReply(gen())

    session = ScriptedSession({"a": [broken_stream], "b": ["complete answer"]})
    d, _ = _dispatcher(_registry("a", "b"), session, max_retries=1)

    result = await d.dispatch(_request(stream=True))

    assert result.text == "complete answer"
    assert result.provider_used == "b"
    assert result.errors == (
        "[a#1] ProviderError: Upstream error: model overloaded",
        "[a#2] ProviderError: Upstream error: model overloaded",
    )
    assert [c["model"] for c in session.calls] == ["a", "a", "b"]
