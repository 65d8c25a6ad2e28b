from __future__ import annotations

from collections.abc import Sequence


class GatewayError(Exception):
    """Base error for gateway failures."""


class ConfigurationError(GatewayError):
    pass


class AttemptError(GatewayError):
    """One failed call against one provider. Always retried by the dispatcher."""

    kind = "AttemptError"


class AttemptTimeoutError(AttemptError):
    kind = "AttemptTimeout"


class TransportError(AttemptError):
    kind = "TransportError"


class ProviderError(AttemptError):
    """Upstream answered with a structured failure."""

    kind = "ProviderError"

    def __init__(self, message: str = "Upstream error", *, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class AuthenticationError(ProviderError):
    pass


class RateLimitError(ProviderError):
    def __init__(self, retry_after_seconds: int | None = None, message: str = "Rate limited"):
        super().__init__(message, status_code=429)
        self.retry_after_seconds = retry_after_seconds


class EmptyResponseError(AttemptError):
    kind = "EmptyResponse"


class MalformedReplyError(AttemptError):
    """Reply shape did not match what the assembler expects."""

    kind = "MalformedReply"


class DispatchError(GatewayError):
    kind = "DispatchError"

    def __init__(self, message: str, *, errors: Sequence[str] = (), attempts: int = 0):
        super().__init__(message)
        self.errors: tuple[str, ...] = tuple(errors)
        self.attempts = attempts


class NoProvidersAvailableError(DispatchError):
    kind = "NoProvidersAvailable"

    def __init__(self, message: str = "No active providers configured."):
        super().__init__(message)


class AllProvidersFailedError(DispatchError):
    kind = "AllProvidersFailed"


class DispatchCancelledError(DispatchError):
    kind = "DispatchCancelled"
