"""Ordered catalog of upstream models the dispatcher may try."""

from __future__ import annotations

import dataclasses
import json
import threading
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any

import structlog

from .errors import ConfigurationError

log = structlog.get_logger()


@dataclass(frozen=True)
class ProviderDescriptor:
    id: str
    display_name: str
    max_tokens: int
    active: bool = True
    priority: int = 0

    def __post_init__(self) -> None:
        if not self.id:
            raise ConfigurationError("Provider id must be non-empty.")
        if self.max_tokens <= 0:
            raise ConfigurationError(f"Provider {self.id!r} max_tokens must be > 0.")


DEFAULT_PROVIDERS: tuple[ProviderDescriptor, ...] = (
    ProviderDescriptor("llama-3.1-8b-instant", "Llama 3.1 8B Instant", 8192, True, 1),
    ProviderDescriptor("llama-3.3-70b-versatile", "Llama 3.3 70B Versatile", 32768, True, 2),
    ProviderDescriptor("meta-llama/llama-guard-4-12b", "Llama Guard 4 12B", 8192, True, 3),
    ProviderDescriptor("openai/gpt-oss-120b", "GPT OSS 120B", 4096, True, 4),
    ProviderDescriptor("openai/gpt-oss-20b", "GPT OSS 20B", 4096, True, 5),
    # Speech-to-text model; never used for chat completions.
    ProviderDescriptor("whisper-large-v3", "Whisper Large V3", 4096, False, 6),
    ProviderDescriptor("groq/compound", "Groq Compound", 8192, True, 7),
    ProviderDescriptor("meta-llama/llama-4-maverick-17b-128e-instruct", "Llama 4 Maverick 17B", 131072, True, 8),
    ProviderDescriptor("meta-llama/llama-4-scout-17b-16e-instruct", "Llama 4 Scout 17B", 16384, True, 9),
    ProviderDescriptor("qwen/qwen3-32b", "Qwen 3 32B", 32768, True, 10),
)


def parse_providers_json(raw: str) -> list[ProviderDescriptor]:
    try:
        items = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ConfigurationError("GATEWAY_PROVIDERS_JSON is not valid JSON.") from e
    if not isinstance(items, list):
        raise ConfigurationError("GATEWAY_PROVIDERS_JSON must be a JSON list.")

    out: list[ProviderDescriptor] = []
    for index, item in enumerate(items):
        if not isinstance(item, dict) or "id" not in item:
            raise ConfigurationError(f"Provider entry {index} must be an object with an 'id'.")
        out.append(
            ProviderDescriptor(
                id=str(item["id"]),
                display_name=str(item.get("display_name") or item.get("name") or item["id"]),
                max_tokens=int(item.get("max_tokens", 4096)),
                active=bool(item.get("active", True)),
                priority=int(item.get("priority", index + 1)),
            )
        )
    return out


class ProviderRegistry:
    """
    Holds provider descriptors in insertion order.

    Readers get an immutable tuple snapshot; writers build a new tuple and swap
    it in under the lock, so a dispatch never sees a half-applied update.
    """

    def __init__(self, providers: Iterable[ProviderDescriptor] = DEFAULT_PROVIDERS):
        descriptors = tuple(providers)
        seen: set[str] = set()
        for d in descriptors:
            if d.id in seen:
                raise ConfigurationError(f"Duplicate provider id: {d.id!r}")
            seen.add(d.id)
        self._lock = threading.Lock()
        self._descriptors = descriptors

    @classmethod
    def from_config(cls, cfg: Any) -> "ProviderRegistry":
        raw = getattr(cfg, "providers_json", None)
        if raw:
            return cls(parse_providers_json(raw))
        return cls(DEFAULT_PROVIDERS)

    def descriptors(self) -> tuple[ProviderDescriptor, ...]:
        return self._descriptors

    def get(self, provider_id: str) -> ProviderDescriptor | None:
        for d in self._descriptors:
            if d.id == provider_id:
                return d
        return None

    def active_providers_ordered(self) -> tuple[ProviderDescriptor, ...]:
        # sorted() is stable, so equal priorities keep insertion order.
        snapshot = self._descriptors
        return tuple(sorted((d for d in snapshot if d.active), key=lambda d: d.priority))

    def set_active(self, provider_id: str, active: bool) -> bool:
        changed = self._update(provider_id, active=bool(active))
        if changed:
            log.info("provider_active_changed", provider=provider_id, active=bool(active))
        else:
            log.warning("provider_not_found", provider=provider_id)
        return changed

    def set_priority(self, provider_id: str, priority: int) -> bool:
        changed = self._update(provider_id, priority=int(priority))
        if changed:
            log.info("provider_priority_changed", provider=provider_id, priority=int(priority))
        else:
            log.warning("provider_not_found", provider=provider_id)
        return changed

    def model_status(self) -> list[dict[str, Any]]:
        return [
            {"model": dataclasses.asdict(d), "status": "Active" if d.active else "Inactive"}
            for d in self._descriptors
        ]

    def _update(self, provider_id: str, **changes: Any) -> bool:
        with self._lock:
            current = self._descriptors
            for index, d in enumerate(current):
                if d.id == provider_id:
                    updated = dataclasses.replace(d, **changes)
                    self._descriptors = current[:index] + (updated,) + current[index + 1 :]
                    return True
        return False
