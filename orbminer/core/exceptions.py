from __future__ import annotations

from typing import Any, Optional


class ProviderMisconfigured(RuntimeError):
    pass


class UpstreamError(RuntimeError):
    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class UpstreamBadResponse(UpstreamError):
    pass


class TransientNetworkError(UpstreamError):
    """Transport-level failure; safe to retry with backoff."""


class UpstreamRateLimited(TransientNetworkError):
    pass


class CircuitBreakerOpen(TransientNetworkError):
    pass


class RetriesExhausted(TransientNetworkError):
    def __init__(self, message: str, attempts: int, last_error: Optional[BaseException] = None) -> None:
        super().__init__(message)
        self.attempts = attempts
        self.last_error = last_error


class ChainRejection(UpstreamError):
    """The program or runtime rejected the transaction. Never retried."""

    def __init__(self, message: str, error: Any = None, signature: Optional[str] = None) -> None:
        super().__init__(message)
        self.error = error
        self.signature = signature


class DecodeError(ValueError):
    pass


class TruncatedRecord(DecodeError):
    def __init__(self, kind: str, expected: int, actual: int) -> None:
        super().__init__(f"{kind} record truncated: need {expected} bytes, got {actual}")
        self.kind = kind
        self.expected = expected
        self.actual = actual


class ConfigurationError(ValueError):
    pass


class BalanceInsufficient(RuntimeError):
    def __init__(self, required: int, available: int) -> None:
        super().__init__(f"balance {available} below required {required}")
        self.required = required
        self.available = available


class OperationCancelled(RuntimeError):
    pass
