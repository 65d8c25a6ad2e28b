from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Any

import structlog

from .config import GatewayConfig
from .credentials import resolve_api_key
from .dispatcher import CompletionDispatcher, CompletionSession
from .fallback import RuleBasedAnalyzer
from .groq_session import GroqSession
from .health import HealthTracker
from .mentor import JournalAnalyzer
from .registry import ProviderRegistry

log = structlog.get_logger()


class CompletionGateway:
    """Wires registry, session, health tracker, dispatcher and journal analyzer from config."""

    def __init__(
        self,
        cfg: GatewayConfig | None = None,
        *,
        session: CompletionSession | None = None,
        registry: ProviderRegistry | None = None,
        sleeper: Callable[[float], Awaitable[None]] | None = None,
        clock: Callable[[], float] | None = None,
    ):
        self.cfg = cfg or GatewayConfig()
        self.registry = registry or ProviderRegistry.from_config(self.cfg)
        self.session = session or GroqSession(
            api_key=resolve_api_key(self.cfg),
            base_url=self.cfg.upstream_base_url,
            timeout_seconds=self.cfg.request_timeout_seconds,
        )
        self.health = HealthTracker(check_interval_seconds=self.cfg.health_check_interval_seconds)
        self.dispatcher = CompletionDispatcher.from_config(
            self.cfg, self.registry, self.session, health=self.health, sleeper=sleeper, clock=clock
        )
        self.analyzer = JournalAnalyzer(
            self.dispatcher,
            fallback=RuleBasedAnalyzer(low_mood_threshold=self.cfg.low_mood_threshold),
            generation={
                "temperature": self.cfg.default_temperature,
                "max_tokens": self.cfg.default_max_tokens,
                "top_p": self.cfg.default_top_p,
            },
        )
        log.info(
            "gateway_initialized",
            active_models=len(self.registry.active_providers_ordered()),
            max_retries=self.cfg.max_retries,
            timeout_seconds=self.cfg.request_timeout_seconds,
        )

    def health_status(self) -> dict[str, Any]:
        return self.health.status(
            active_models=len(self.registry.active_providers_ordered()),
            total_models=len(self.registry.descriptors()),
        )

    async def close(self) -> None:
        close = getattr(self.session, "close", None)
        if callable(close):
            await close()
