from __future__ import annotations

import asyncio
import threading
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

import structlog

from .metrics import upstream_healthy

log = structlog.get_logger()

Prober = Callable[[], Awaitable[bool]]


@dataclass(frozen=True)
class HealthState:
    healthy: bool
    last_checked: float
    check_interval_seconds: float


class HealthTracker:
    """
    Advisory record of whether the upstream looks healthy.

    Nothing here blocks a dispatch. `is_healthy()` answers from cache inside
    the check interval and otherwise runs one probe shared by all concurrent
    callers.
    """

    def __init__(
        self,
        *,
        check_interval_seconds: float = 300.0,
        prober: Prober | None = None,
        clock: Callable[[], float] | None = None,
    ):
        self._clock: Callable[[], float] = clock or time.time
        self._interval = max(0.0, float(check_interval_seconds))
        self._prober = prober
        self._lock = threading.Lock()
        self._healthy = True
        self._last_checked = 0.0
        self._inflight: asyncio.Future[bool] | None = None
        upstream_healthy.set(1)

    def attach_prober(self, prober: Prober) -> None:
        self._prober = prober

    def record_outcome(self, success: bool) -> None:
        with self._lock:
            self._healthy = bool(success)
            self._last_checked = self._clock()
        upstream_healthy.set(1 if success else 0)

    def state(self) -> HealthState:
        with self._lock:
            return HealthState(
                healthy=self._healthy,
                last_checked=self._last_checked,
                check_interval_seconds=self._interval,
            )

    def _fresh(self) -> bool:
        return self._clock() - self._last_checked < self._interval

    async def is_healthy(self) -> bool:
        with self._lock:
            if self._fresh() or self._prober is None:
                return self._healthy
            probe = self._inflight
            if probe is None:
                probe = asyncio.ensure_future(self._run_probe())
                self._inflight = probe
        return await asyncio.shield(probe)

    async def _run_probe(self) -> bool:
        assert self._prober is not None
        log.info("health_probe_started")
        try:
            ok = bool(await self._prober())
        except Exception as e:
            log.warning("health_probe_error", error=str(e))
            ok = False
        finally:
            with self._lock:
                self._inflight = None
        self.record_outcome(ok)
        log.info("health_probe_finished", healthy=ok)
        return ok

    def status(self, *, active_models: int, total_models: int) -> dict[str, Any]:
        state = self.state()
        return {
            "is_healthy": state.healthy,
            "last_check": datetime.fromtimestamp(state.last_checked, tz=timezone.utc),
            "active_models": active_models,
            "total_models": total_models,
        }
