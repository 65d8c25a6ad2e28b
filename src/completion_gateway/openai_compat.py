from __future__ import annotations

import time
import uuid
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .contracts import ChatMessage, CompletionRequest, CompletionResult


class ChatCompletionMessage(BaseModel):
    role: Literal["system", "user", "assistant"]
    content: str


class ChatCompletionRequest(BaseModel):
    model_config = ConfigDict(extra="allow")

    # Ignored for routing: the registry decides which models are tried.
    model: str = "auto"
    messages: list[ChatCompletionMessage]
    stream: bool = False

    temperature: float | None = None
    max_tokens: int | None = None
    max_completion_tokens: int | None = None
    top_p: float | None = None
    timeout_seconds: float | None = None

    @model_validator(mode="after")
    def _validate_max_tokens_alias(self) -> "ChatCompletionRequest":
        if self.max_tokens is not None and self.max_completion_tokens is not None:
            if self.max_tokens != self.max_completion_tokens:
                raise ValueError("Provide only one of max_tokens or max_completion_tokens.")
        return self

    @field_validator("temperature")
    @classmethod
    def _validate_temperature(cls, v: float | None) -> float | None:
        if v is not None and not (0.0 <= v <= 2.0):
            raise ValueError("temperature must be between 0 and 2.")
        return v

    @field_validator("top_p")
    @classmethod
    def _validate_top_p(cls, v: float | None) -> float | None:
        if v is not None and not (0.0 < v <= 1.0):
            raise ValueError("top_p must be > 0 and <= 1.")
        return v

    @field_validator("max_tokens", "max_completion_tokens")
    @classmethod
    def _validate_max_tokens(cls, v: int | None) -> int | None:
        if v is not None and v <= 0:
            raise ValueError("max tokens must be > 0.")
        return v

    @field_validator("timeout_seconds")
    @classmethod
    def _validate_timeout(cls, v: float | None) -> float | None:
        if v is not None and v <= 0:
            raise ValueError("timeout_seconds must be > 0.")
        return v

    def effective_max_tokens(self) -> int | None:
        return self.max_tokens if self.max_tokens is not None else self.max_completion_tokens

    def to_completion_request(self, *, default_temperature: float, default_top_p: float) -> CompletionRequest:
        return CompletionRequest(
            messages=tuple(ChatMessage(role=m.role, content=m.content) for m in self.messages),
            temperature=self.temperature if self.temperature is not None else default_temperature,
            max_tokens=self.effective_max_tokens(),
            top_p=self.top_p if self.top_p is not None else default_top_p,
            stream=self.stream,
            timeout_seconds=self.timeout_seconds,
        )


class ChatCompletionAssistantMessage(BaseModel):
    role: Literal["assistant"] = "assistant"
    content: str


class ChatCompletionChoice(BaseModel):
    index: int = 0
    message: ChatCompletionAssistantMessage
    finish_reason: Literal["stop"] = "stop"


class GatewayMetadata(BaseModel):
    provider_used: str
    attempt_count: int
    elapsed_seconds: float
    errors: list[str] = Field(default_factory=list)


class ChatCompletionResponse(BaseModel):
    id: str = Field(default_factory=lambda: f"chatcmpl-{uuid.uuid4().hex}")
    object: Literal["chat.completion"] = "chat.completion"
    created: int = Field(default_factory=lambda: int(time.time()))
    model: str
    choices: list[ChatCompletionChoice]
    x_gateway: GatewayMetadata


def make_chat_completion_response(result: CompletionResult) -> ChatCompletionResponse:
    return ChatCompletionResponse(
        model=result.provider_used,
        choices=[ChatCompletionChoice(message=ChatCompletionAssistantMessage(content=result.text))],
        x_gateway=GatewayMetadata(
            provider_used=result.provider_used,
            attempt_count=result.attempt_count,
            elapsed_seconds=result.elapsed_seconds,
            errors=list(result.errors),
        ),
    )


class ErrorDetail(BaseModel):
    message: str
    type: str = "api_error"
    param: str | None = None
    code: str | None = None
    errors: list[str] | None = None


class ErrorResponse(BaseModel):
    error: ErrorDetail


def make_error_response(
    *,
    message: str,
    type: str = "api_error",
    code: str | None = None,
    errors: list[str] | None = None,
) -> dict[str, Any]:
    return ErrorResponse(error=ErrorDetail(message=message, type=type, code=code, errors=errors)).model_dump(
        exclude_none=True
    )


class PromptSuggestionRequest(BaseModel):
    history: list[str] = Field(default_factory=list)
    mood: int = Field(default=3, ge=1, le=5)


class PromptSuggestionResponse(BaseModel):
    prompts: list[str]


class ProviderUpdate(BaseModel):
    active: bool | None = None
    priority: int | None = None
