"""
Shared logging configuration for the Subscription Entitlement Engine.
"""

import sys
import structlog
import logging
import uuid
import time
from typing import Any, Dict, Optional
from contextvars import ContextVar

from opentelemetry import trace

# Context variables for correlation IDs
session_id_var: ContextVar[Optional[str]] = ContextVar('session_id', default=None)
user_id_var: ContextVar[Optional[str]] = ContextVar('user_id', default=None)
account_id_var: ContextVar[Optional[str]] = ContextVar('account_id', default=None)


def configure_logging(component: str, log_level: str = "info") -> None:
    """Configure structured logging for the engine."""

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            add_component_context,
            add_trace_context,
            add_correlation_context,
            add_timestamp,
            structlog.processors.JSONRenderer()
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper()),
    )
    logging.getLogger(component).setLevel(getattr(logging, log_level.upper()))


def add_component_context(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Add component context to log events."""
    # "entitlements.notifier" -> component "entitlements", area "notifier"
    logger_name = event_dict.get("logger", "")
    if "." in logger_name:
        component, area = logger_name.split(".", 1)
        event_dict["component"] = component
        event_dict["area"] = area

    return event_dict


def add_trace_context(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Add trace context to log events."""
    current_span = trace.get_current_span()
    if current_span and current_span.is_recording():
        span_context = current_span.get_span_context()
        if span_context.trace_id != 0:
            event_dict["trace_id"] = f"{span_context.trace_id:032x}"
        if span_context.span_id != 0:
            event_dict["span_id"] = f"{span_context.span_id:016x}"

    return event_dict


def add_correlation_context(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Add correlation context to log events."""
    session_id = session_id_var.get()
    if session_id:
        event_dict["session_id"] = session_id

    user_id = user_id_var.get()
    if user_id:
        event_dict["user_id"] = user_id

    account_id = account_id_var.get()
    if account_id:
        event_dict["account_id"] = account_id

    return event_dict


def add_timestamp(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Add high-precision timestamp to log events."""
    event_dict["timestamp"] = time.time()
    return event_dict


def set_session_id(session_id: Optional[str] = None) -> str:
    """Set session ID in context."""
    if session_id is None:
        session_id = str(uuid.uuid4())
    session_id_var.set(session_id)
    return session_id


def set_user_context(user_id: Optional[str] = None, account_id: Optional[str] = None):
    """Set user context in logging."""
    if user_id:
        user_id_var.set(user_id)
    if account_id:
        account_id_var.set(account_id)


def clear_context():
    """Clear all context variables."""
    session_id_var.set(None)
    user_id_var.set(None)
    account_id_var.set(None)


def get_logger(name: str) -> structlog.BoundLogger:
    """Get a structured logger instance."""
    return structlog.get_logger(name)
