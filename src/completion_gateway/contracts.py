from __future__ import annotations

from collections.abc import AsyncIterator, Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any, Union

from .errors import ConfigurationError

ROLES = ("system", "user", "assistant")


@dataclass(frozen=True)
class ChatMessage:
    role: str
    content: str

    def __post_init__(self) -> None:
        if self.role not in ROLES:
            raise ConfigurationError(f"Unsupported message role: {self.role!r}")
        if not isinstance(self.content, str):
            raise ConfigurationError("Message content must be a string.")

    def as_dict(self) -> dict[str, str]:
        return {"role": self.role, "content": self.content}


def to_messages(messages: Iterable[ChatMessage | Mapping[str, Any]]) -> tuple[ChatMessage, ...]:
    out: list[ChatMessage] = []
    for msg in messages:
        if isinstance(msg, ChatMessage):
            out.append(msg)
        else:
            out.append(ChatMessage(role=str(msg.get("role")), content=msg.get("content", "")))
    return tuple(out)


@dataclass(frozen=True)
class CompletionRequest:
    messages: tuple[ChatMessage, ...]
    temperature: float = 0.7
    max_tokens: int | None = None
    top_p: float = 1.0
    stream: bool = False
    timeout_seconds: float | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "messages", to_messages(self.messages))
        if not self.messages:
            raise ConfigurationError("At least one message is required.")
        if not (0.0 <= self.temperature <= 2.0):
            raise ConfigurationError("temperature must be between 0 and 2.")
        if not (0.0 < self.top_p <= 1.0):
            raise ConfigurationError("top_p must be > 0 and <= 1.")
        if self.max_tokens is not None and self.max_tokens <= 0:
            raise ConfigurationError("max_tokens must be > 0.")
        if self.timeout_seconds is not None and self.timeout_seconds <= 0:
            raise ConfigurationError("timeout_seconds must be > 0.")

    @classmethod
    def from_prompt(cls, prompt: str, system_prompt: str | None = None, **options: Any) -> "CompletionRequest":
        messages = []
        if system_prompt:
            messages.append(ChatMessage(role="system", content=system_prompt))
        messages.append(ChatMessage(role="user", content=prompt))
        return cls(messages=tuple(messages), **options)


@dataclass(frozen=True)
class CompletionResult:
    text: str
    provider_used: str
    attempt_count: int
    elapsed_seconds: float
    errors: tuple[str, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class SingleReply:
    payload: Any


@dataclass(frozen=True)
class StreamReply:
    fragments: AsyncIterator[Any]


ProviderReply = Union[SingleReply, StreamReply]
