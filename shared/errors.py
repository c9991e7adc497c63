"""
Shared error handling for the Subscription Entitlement Engine.
"""

from typing import Dict, Any, Optional
from pydantic import BaseModel, Field

from opentelemetry import trace


class ErrorResponse(BaseModel):
    """Standard error response format surfaced to UI layers."""

    trace_id: Optional[str] = None
    code: str
    message: str
    details: Dict[str, Any] = Field(default_factory=dict)


class EngineError(Exception):
    """Base exception for the entitlement engine."""

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message
        self.details = details or {}
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
            trace_id=trace_id,
            code=self.code,
            message=self.message,
            details=self.details
        )


class MalformedRecordError(EngineError):
    """A required date or numeric field is missing or unparsable."""

    def __init__(self, message: str = "Malformed subscription record", details: Optional[Dict[str, Any]] = None):
        super().__init__("MALFORMED_RECORD", message, details)


class AuthenticationError(EngineError):
    """The backend rejected the session credentials."""

    def __init__(self, message: str = "Authentication failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("AUTHENTICATION_ERROR", message, details)


class TransientFetchError(EngineError):
    """Fetching a fresh subscription record failed; the last snapshot stays in use."""

    def __init__(self, message: str = "Subscription refresh failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("TRANSIENT_FETCH_FAILURE", message, details)


class ListenerError(EngineError):
    """A subscriber callback raised while handling an event."""

    def __init__(self, event_type: str, error: Exception):
        super().__init__(
            "LISTENER_ERROR",
            f"Listener for '{event_type}' failed: {error}",
            {"event_type": event_type, "error_type": type(error).__name__},
        )
        self.original = error


class SessionClosedError(EngineError):
    """An operation that needs a live session was called after teardown."""

    def __init__(self, message: str = "Session has ended", details: Optional[Dict[str, Any]] = None):
        super().__init__("SESSION_CLOSED", message, details)
