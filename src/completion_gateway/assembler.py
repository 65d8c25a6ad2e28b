"""
Turns an upstream reply into plain text.

Every access to the upstream response shape goes through this module, so a
change in field names only needs handling here.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from .contracts import ProviderReply, SingleReply, StreamReply
from .errors import MalformedReplyError, ProviderError


def _raise_if_error(payload: Mapping[str, Any]) -> None:
    # Error events arrive with a 200 status, either as the whole body or mid-stream.
    error = payload.get("error")
    if not error:
        return
    if isinstance(error, Mapping):
        message = error.get("message") or error.get("type") or "unknown error"
        code = error.get("code")
        status_code = code if isinstance(code, int) else None
    else:
        message, status_code = str(error), None
    raise ProviderError(f"Upstream error: {message}", status_code=status_code)


def _first_choice(payload: Mapping[str, Any]) -> Mapping[str, Any] | None:
    choices = payload.get("choices")
    if not isinstance(choices, list) or not choices:
        return None
    choice = choices[0]
    return choice if isinstance(choice, Mapping) else None


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    if not isinstance(value, str):
        raise MalformedReplyError(f"Expected text, got {type(value).__name__}.")
    return value


def _payload_text(payload: Any) -> str:
    if isinstance(payload, str):
        return payload
    if not isinstance(payload, Mapping):
        raise MalformedReplyError(f"Unexpected reply type {type(payload).__name__}.")
    _raise_if_error(payload)

    choice = _first_choice(payload)
    if choice is not None:
        message = choice.get("message")
        if isinstance(message, Mapping) and "content" in message:
            return _as_text(message.get("content"))
        if "text" in choice:
            return _as_text(choice.get("text"))

    for key in ("content", "text"):
        value = payload.get(key)
        if isinstance(value, str):
            return value

    raise MalformedReplyError("Missing text in upstream response.")


def _fragment_text(fragment: Any) -> str:
    if isinstance(fragment, str):
        return fragment
    if not isinstance(fragment, Mapping):
        raise MalformedReplyError(f"Unexpected stream fragment type {type(fragment).__name__}.")
    _raise_if_error(fragment)

    choice = _first_choice(fragment)
    if choice is not None:
        delta = choice.get("delta")
        if isinstance(delta, Mapping):
            return _as_text(delta.get("content"))
        return _as_text(choice.get("text"))
    # role-only or usage-only chunks carry no text
    value = fragment.get("content") or fragment.get("text")
    return value if isinstance(value, str) else ""


async def assemble(reply: ProviderReply) -> str:
    if isinstance(reply, SingleReply):
        return _payload_text(reply.payload)
    if isinstance(reply, StreamReply):
        parts: list[str] = []
        async for fragment in reply.fragments:
            piece = _fragment_text(fragment)
            if piece:
                parts.append(piece)
        # A stream that closed without text returns "" and is rejected by the
        # dispatcher exactly like an empty single payload.
        return "".join(parts)
    raise MalformedReplyError(f"Unsupported reply type {type(reply).__name__}.")
