"""Custom exceptions for cim-extract."""

from enum import Enum
from typing import Any, Optional


class CIMExtractError(Exception):
    """Base exception for cim-extract."""

    def __init__(self, message: str, context: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.context = context or {}


class ValidationError(CIMExtractError):
    """Malformed or insufficient input (not Pydantic).

    Surfaced to the caller immediately and never retried.
    """

    pass


class ProviderErrorKind(str, Enum):
    """Failure categories for a single provider call."""

    TIMEOUT = "timeout"
    HTTP_ERROR = "http_error"
    AUTH_ERROR = "auth_error"
    RATE_LIMITED = "rate_limited"
    MALFORMED_RESPONSE = "malformed_response"


class ProviderError(CIMExtractError):
    """A single upstream provider call failed."""

    def __init__(
        self,
        message: str,
        kind: ProviderErrorKind,
        provider: str,
        status_code: Optional[int] = None,
        body: Optional[str] = None,
        context: Optional[dict[str, Any]] = None,
    ):
        super().__init__(message, context)
        self.kind = kind
        self.provider = provider
        self.status_code = status_code
        self.body = body


class ParseError(CIMExtractError):
    """Provider responded but no JSON object could be extracted."""

    SAMPLE_LENGTH = 500

    def __init__(self, message: str, raw_text: str = "", context: Optional[dict[str, Any]] = None):
        super().__init__(message, context)
        self.sample = (raw_text or "")[: self.SAMPLE_LENGTH]


class CircuitOpenError(CIMExtractError):
    """Breaker rejected the call without attempting it."""

    def __init__(self, breaker: str, last_error: Optional[str] = None):
        super().__init__(
            f"Circuit breaker [{breaker}] is OPEN - service unavailable. "
            f"Last error: {last_error or 'unknown'}",
            {"breaker": breaker},
        )
        self.breaker = breaker
        self.last_error = last_error


class OperationTimeoutError(CIMExtractError):
    """A guarded operation exceeded its breaker timeout."""

    def __init__(self, breaker: str, timeout: float):
        super().__init__(
            f"Operation timed out after {timeout:g}s [{breaker}]",
            {"breaker": breaker, "timeout": timeout},
        )
        self.breaker = breaker
        self.timeout = timeout


class PayloadError(CIMExtractError):
    """Page images could not be decoded or re-encoded."""

    pass


class DocumentTextError(CIMExtractError):
    """Raw document bytes yielded too little text to analyze."""

    def __init__(self, message: str, extracted_chars: int = 0, context: Optional[dict[str, Any]] = None):
        super().__init__(message, context)
        self.extracted_chars = extracted_chars


class AggregateFailure(CIMExtractError):
    """Every extraction attempt failed.

    Carries the full attempt history so an operator can tell a systemic
    provider outage from a one-off failure.
    """

    def __init__(self, message: str, attempts: list, context: Optional[dict[str, Any]] = None):
        super().__init__(message, context)
        self.attempts = list(attempts)

    def reasons(self) -> list[str]:
        """One line per failed attempt."""
        return [
            f"{a.stage.value}:{a.method.value} ({a.provider}) - {a.error_kind}: {a.error}"
            for a in self.attempts
        ]
