"""Core infrastructure and utilities.

Responsibility: Provides foundational primitives (exceptions, logging, retry, time)
used across all SageFlow modules.
"""

from .exceptions import (
    ConfigurationError,
    MalformedEvent,
    OrchestrationError,
    RecordConflict,
    RecordNotFound,
    SubmissionRejected,
    TransientBackendError,
)
from .logging import configure_logging, correlation_scope, log_with_context
from .retry import RetryError, RetryPolicy, retry_call
from .time import parse_timestamp, utc_now

__all__ = [
    "ConfigurationError",
    "MalformedEvent",
    "OrchestrationError",
    "RecordConflict",
    "RecordNotFound",
    "SubmissionRejected",
    "TransientBackendError",
    "configure_logging",
    "correlation_scope",
    "log_with_context",
    "RetryError",
    "RetryPolicy",
    "retry_call",
    "parse_timestamp",
    "utc_now",
]
