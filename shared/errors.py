"""
Shared error handling for the TokenGate access gateway.
"""

from typing import Dict, Any, Optional

from opentelemetry import trace
from pydantic import BaseModel, Field


class ErrorResponse(BaseModel):
    """Standard error response body."""

    error: str
    code: str
    trace_id: Optional[str] = None
    details: Dict[str, Any] = Field(default_factory=dict)


class GatewayError(Exception):
    """Base exception for gateway services."""

    status_code: int = 500

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None,
                 status_code: Optional[int] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        if status_code is not None:
            self.status_code = status_code
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        """Convert to error response."""
        trace_id = None
        current_span = trace.get_current_span()
        if current_span and current_span.is_recording():
            span_context = current_span.get_span_context()
            if span_context.trace_id != 0:
                trace_id = f"{span_context.trace_id:032x}"

        return ErrorResponse(
            error=self.message,
            code=self.code,
            trace_id=trace_id,
            details=self.details,
        )


class ValidationError(GatewayError):
    """Malformed input."""

    status_code = 400

    def __init__(self, message: str = "Validation failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("VALIDATION_ERROR", message, details)


class AuthenticationError(GatewayError):
    """Missing or invalid wallet identity or signature."""

    status_code = 401

    def __init__(self, message: str = "Authentication failed", details: Optional[Dict[str, Any]] = None,
                 code: str = "AUTHENTICATION_ERROR"):
        super().__init__(code, message, details)


class AuthorizationError(GatewayError):
    """Caller is identified but not entitled."""

    status_code = 403

    def __init__(self, message: str = "Authorization failed", details: Optional[Dict[str, Any]] = None,
                 code: str = "AUTHORIZATION_ERROR"):
        super().__init__(code, message, details)


class NotFoundError(GatewayError):
    """Unknown resource."""

    status_code = 404

    def __init__(self, message: str = "Not found", details: Optional[Dict[str, Any]] = None,
                 code: str = "NOT_FOUND"):
        super().__init__(code, message, details)


class ConflictError(GatewayError):
    """Ledger state rejects the requested transition."""

    status_code = 409

    def __init__(self, message: str = "Conflict", details: Optional[Dict[str, Any]] = None):
        super().__init__("CONFLICT", message, details)


class RateLimitError(GatewayError):
    """Rate limiting errors."""

    status_code = 429

    def __init__(self, message: str = "Rate limit exceeded", details: Optional[Dict[str, Any]] = None,
                 code: str = "RATE_LIMIT_ERROR"):
        super().__init__(code, message, details)


class OracleUnavailableError(GatewayError):
    """The ledger could not be read. Callers should retry later."""

    status_code = 500

    def __init__(self, message: str = "Ledger unavailable", details: Optional[Dict[str, Any]] = None):
        super().__init__("ORACLE_UNAVAILABLE", message, details)
