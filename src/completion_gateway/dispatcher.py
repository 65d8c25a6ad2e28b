from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable, Iterable, Mapping, Sequence
from typing import Any, Protocol, TypeVar

import structlog

from .assembler import assemble
from .contracts import ChatMessage, CompletionRequest, CompletionResult, ProviderReply
from .errors import (
    AllProvidersFailedError,
    AttemptError,
    AttemptTimeoutError,
    DispatchCancelledError,
    DispatchError,
    EmptyResponseError,
    NoProvidersAvailableError,
    ProviderError,
)
from .health import HealthTracker
from .metrics import attempt_latency_seconds, attempts_total, dispatches_total
from .registry import ProviderDescriptor, ProviderRegistry

log = structlog.get_logger()

T = TypeVar("T")


class CompletionSession(Protocol):
    async def complete(
        self,
        *,
        model: str,
        messages: Sequence[ChatMessage],
        temperature: float | None = None,
        max_tokens: int | None = None,
        top_p: float | None = None,
        stream: bool = False,
    ) -> ProviderReply: ...


class _CancelRequested(Exception):
    pass


class CompletionDispatcher:
    """
    Ordered failover over the registry's active providers.

    Each provider gets `max_retries + 1` attempts with exponential backoff
    between them before the next provider is tried. Every failed attempt is
    kept in the error log, which is returned with the result or attached to
    the raised `DispatchError`.
    """

    def __init__(
        self,
        registry: ProviderRegistry,
        session: CompletionSession,
        *,
        health: HealthTracker | None = None,
        max_retries: int = 3,
        backoff_base_seconds: float = 1.0,
        timeout_seconds: float = 30.0,
        default_max_tokens: int = 2048,
        probe_max_retries: int = 0,
        probe_max_tokens: int = 10,
        sleeper: Callable[[float], Awaitable[None]] | None = None,
        clock: Callable[[], float] | None = None,
    ):
        self.registry = registry
        self.session = session
        self.health = health or HealthTracker()
        self._max_retries = max(0, int(max_retries))
        self._backoff_base_seconds = max(0.0, float(backoff_base_seconds))
        self._timeout_seconds = float(timeout_seconds)
        self._default_max_tokens = int(default_max_tokens)
        self._probe_max_retries = max(0, int(probe_max_retries))
        self._probe_max_tokens = int(probe_max_tokens)
        self._sleep: Callable[[float], Awaitable[None]] = sleeper or asyncio.sleep
        self._clock: Callable[[], float] = clock or time.monotonic
        self.health.attach_prober(self.probe)

    @classmethod
    def from_config(
        cls,
        cfg: Any,
        registry: ProviderRegistry,
        session: CompletionSession,
        *,
        health: HealthTracker | None = None,
        **kwargs: Any,
    ) -> "CompletionDispatcher":
        return cls(
            registry,
            session,
            health=health,
            max_retries=cfg.max_retries,
            backoff_base_seconds=cfg.backoff_base_seconds,
            timeout_seconds=cfg.request_timeout_seconds,
            default_max_tokens=cfg.default_max_tokens,
            probe_max_retries=cfg.probe_max_retries,
            probe_max_tokens=cfg.probe_max_tokens,
            **kwargs,
        )

    def backoff_delay(self, retry_index: int) -> float:
        # retry_index: 0 for the first retry on a provider
        return self._backoff_base_seconds * (2**retry_index)

    async def dispatch(
        self,
        request: CompletionRequest,
        *,
        max_retries: int | None = None,
        cancel: asyncio.Event | None = None,
    ) -> CompletionResult:
        providers = self.registry.active_providers_ordered()
        if not providers:
            dispatches_total.labels(status="no_providers").inc()
            log.error("dispatch_no_providers")
            raise NoProvidersAvailableError()

        retries = self._max_retries if max_retries is None else max(0, int(max_retries))
        timeout = request.timeout_seconds or self._timeout_seconds
        wanted_tokens = request.max_tokens or self._default_max_tokens
        started = self._clock()
        errors: list[str] = []
        total_attempts = 0

        try:
            for index, provider in enumerate(providers):
                if index:
                    log.info("provider_failover", provider=provider.id, previous=providers[index - 1].id)
                for retry_index in range(retries + 1):
                    if cancel is not None and cancel.is_set():
                        raise _CancelRequested()
                    total_attempts += 1
                    attempt_no = retry_index + 1
                    try:
                        text = await self._guarded(self._attempt(provider, request, wanted_tokens), timeout, cancel)
                    except _CancelRequested:
                        raise
                    except asyncio.TimeoutError:
                        failure: AttemptError = AttemptTimeoutError(f"No reply within {timeout:g}s.")
                    except AttemptError as e:
                        failure = e
                    except Exception as e:
                        failure = ProviderError(f"{e.__class__.__name__}: {e}")
                    else:
                        return self._succeed(provider, text, attempt_no, started, errors)

                    entry = f"[{provider.id}#{attempt_no}] {failure.kind}: {failure}"
                    errors.append(entry)
                    attempts_total.labels(provider=provider.id, outcome=failure.kind).inc()
                    log.warning(
                        "dispatch_attempt_failed",
                        provider=provider.id,
                        attempt=attempt_no,
                        kind=failure.kind,
                        error=str(failure),
                    )
                    if retry_index < retries:
                        delay = self.backoff_delay(retry_index)
                        log.info("dispatch_retry_scheduled", provider=provider.id, delay_seconds=delay)
                        await self._guarded(self._sleep(delay), None, cancel)
        except _CancelRequested:
            dispatches_total.labels(status="cancelled").inc()
            log.warning("dispatch_cancelled", attempts=total_attempts)
            raise DispatchCancelledError(
                "Dispatch cancelled by caller.", errors=errors, attempts=total_attempts
            ) from None

        self.health.record_outcome(False)
        dispatches_total.labels(status="failed").inc()
        log.error("dispatch_all_providers_failed", providers=len(providers), attempts=total_attempts)
        raise AllProvidersFailedError(
            f"All {len(providers)} providers failed after {retries + 1} attempts each.",
            errors=errors,
            attempts=total_attempts,
        )

    async def _attempt(self, provider: ProviderDescriptor, request: CompletionRequest, wanted_tokens: int) -> str:
        with attempt_latency_seconds.labels(provider=provider.id).time():
            reply = await self.session.complete(
                model=provider.id,
                messages=request.messages,
                temperature=request.temperature,
                max_tokens=min(wanted_tokens, provider.max_tokens),
                top_p=request.top_p,
                stream=request.stream,
            )
            text = await assemble(reply)
        if not text.strip():
            raise EmptyResponseError("Empty response from upstream.")
        return text

    async def _guarded(self, aw: Awaitable[T], timeout: float | None, cancel: asyncio.Event | None) -> T:
        if cancel is None:
            return await asyncio.wait_for(aw, timeout=timeout)

        work = asyncio.ensure_future(asyncio.wait_for(aw, timeout=timeout))
        stopper = asyncio.ensure_future(cancel.wait())
        try:
            done, _ = await asyncio.wait({work, stopper}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            stopper.cancel()
            if not work.done():
                # abandoned; any late result is discarded
                work.cancel()
        if work in done:
            return work.result()
        raise _CancelRequested()

    def _succeed(
        self,
        provider: ProviderDescriptor,
        text: str,
        attempt_no: int,
        started: float,
        errors: list[str],
    ) -> CompletionResult:
        elapsed = max(0.0, self._clock() - started)
        self.health.record_outcome(True)
        attempts_total.labels(provider=provider.id, outcome="success").inc()
        dispatches_total.labels(status="success").inc()
        log.info(
            "dispatch_succeeded",
            provider=provider.id,
            attempt=attempt_no,
            prior_failures=len(errors),
            elapsed_seconds=round(elapsed, 3),
        )
        return CompletionResult(
            text=text,
            provider_used=provider.id,
            attempt_count=attempt_no,
            elapsed_seconds=elapsed,
            errors=tuple(errors),
        )

    async def generate_completion(
        self,
        prompt: str,
        system_prompt: str | None = None,
        *,
        max_retries: int | None = None,
        cancel: asyncio.Event | None = None,
        **options: Any,
    ) -> CompletionResult:
        request = CompletionRequest.from_prompt(prompt, system_prompt, **options)
        return await self.dispatch(request, max_retries=max_retries, cancel=cancel)

    async def generate_chat_completion(
        self,
        messages: Iterable[ChatMessage | Mapping[str, Any]],
        *,
        max_retries: int | None = None,
        cancel: asyncio.Event | None = None,
        **options: Any,
    ) -> CompletionResult:
        request = CompletionRequest(messages=tuple(messages), **options)
        return await self.dispatch(request, max_retries=max_retries, cancel=cancel)

    async def probe(self) -> bool:
        """Minimal completion used by the health tracker; never calls back into it."""
        try:
            await self.generate_completion(
                "Health check",
                max_tokens=self._probe_max_tokens,
                max_retries=self._probe_max_retries,
            )
        except DispatchError as e:
            log.warning("health_probe_failed", error=str(e), attempts=e.attempts)
            return False
        return True
