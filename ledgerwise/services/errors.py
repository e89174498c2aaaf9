"""
Ledgerwise Error Handling

Specific error types with user-friendly messages and debugging context.

Generative-service failures (ExternalServiceError, MalformedResponseError)
are always recovered inside the categorizer. Persistence failures
(PatternStoreWriteFailure) reach the caller because a lost correction is a
user-visible regression.
"""
from typing import Optional, Dict, Any
from enum import Enum


class ErrorCode(str, Enum):
    """Standardized error codes for client handling."""
    # Input errors (400s)
    INVALID_CORRECTION = "INVALID_CORRECTION"
    INVALID_CARD = "INVALID_CARD"

    # Generative service errors
    LLM_UNAVAILABLE = "LLM_UNAVAILABLE"
    LLM_MALFORMED_RESPONSE = "LLM_MALFORMED_RESPONSE"
    INVALID_CATEGORIZATION = "INVALID_CATEGORIZATION"

    # Persistence errors
    PATTERN_STORE_WRITE_FAILED = "PATTERN_STORE_WRITE_FAILED"


class LedgerwiseError(Exception):
    """Base exception with structured error info."""

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        detail: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None
    ):
        self.code = code
        self.message = message
        self.detail = detail
        self.context = context or {}
        super().__init__(message)

    @property
    def status_code(self) -> int:
        return STATUS_MAP.get(self.code, 500)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to API response format."""
        result = {
            "error": self.code.value,
            "message": self.message
        }
        if self.detail:
            result["detail"] = self.detail
        if self.context:
            result["context"] = self.context
        return result


class ExternalServiceError(LedgerwiseError):
    """Network failure, timeout or non-success status from the generative service."""

    def __init__(self, service: str, detail: str, status_code: Optional[int] = None):
        context: Dict[str, Any] = {"service": service}
        if status_code is not None:
            context["status_code"] = status_code
        super().__init__(
            code=ErrorCode.LLM_UNAVAILABLE,
            message=f"{service} categorization service unavailable",
            detail=detail,
            context=context
        )


class MalformedResponseError(LedgerwiseError):
    """The generative service answered with something we could not parse."""

    def __init__(self, service: str, detail: str):
        super().__init__(
            code=ErrorCode.LLM_MALFORMED_RESPONSE,
            message=f"{service} returned a malformed response",
            detail=detail,
            context={"service": service}
        )


class InvalidCategorizationInvariant(LedgerwiseError):
    """A structurally valid judgment that breaks a domain rule."""

    def __init__(self, field: str, value: Any, detail: str):
        super().__init__(
            code=ErrorCode.INVALID_CATEGORIZATION,
            message=f"Categorization violates a domain rule on '{field}'",
            detail=detail,
            context={"field": field, "value": value}
        )


class PatternStoreWriteFailure(LedgerwiseError):
    """The persistence collaborator could not save learned patterns."""

    def __init__(self, kind: str, detail: str):
        super().__init__(
            code=ErrorCode.PATTERN_STORE_WRITE_FAILED,
            message=f"Could not save learned {kind}",
            detail=detail,
            context={"kind": kind}
        )


class InvalidCorrectionError(LedgerwiseError):
    """Edit input that cannot be turned into a correction."""

    def __init__(self, detail: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(
            code=ErrorCode.INVALID_CORRECTION,
            message="Invalid transaction edit",
            detail=detail,
            context=context
        )


class InvalidCardError(LedgerwiseError):
    """Card input the payment-type learner cannot accept."""

    def __init__(self, detail: str):
        super().__init__(
            code=ErrorCode.INVALID_CARD,
            message="Invalid card payment-type input",
            detail=detail
        )


STATUS_MAP = {
    ErrorCode.INVALID_CORRECTION: 400,
    ErrorCode.INVALID_CARD: 400,
    ErrorCode.LLM_UNAVAILABLE: 503,
    ErrorCode.LLM_MALFORMED_RESPONSE: 502,
    ErrorCode.INVALID_CATEGORIZATION: 500,
    ErrorCode.PATTERN_STORE_WRITE_FAILED: 500,
}

