"""Common exception hierarchy used across SageFlow."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict


@dataclass(eq=False)
class OrchestrationError(RuntimeError):
    message: str
    code: str = "orchestration_error"
    metadata: Dict[str, Any] = None  # type: ignore[assignment]

    def __post_init__(self) -> None:
        super().__init__(self.message)
        if self.metadata is None:
            self.metadata = {}

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code, "message": self.message, "metadata": self.metadata}


@dataclass(eq=False)
class ConfigurationError(OrchestrationError):
    """Missing or invalid identifiers. Fatal until an operator fixes them."""

    code: str = "configuration_error"


@dataclass(eq=False)
class TransientBackendError(OrchestrationError):
    """Throttling or temporary unavailability. The caller retries with backoff."""

    code: str = "transient_backend_error"


@dataclass(eq=False)
class RecordNotFound(OrchestrationError):
    code: str = "record_not_found"


@dataclass(eq=False)
class SubmissionRejected(OrchestrationError):
    """The backend refused a training or deployment request."""

    code: str = "submission_rejected"


@dataclass(eq=False)
class MalformedEvent(OrchestrationError):
    """An event payload could not be parsed."""

    code: str = "malformed_event"


@dataclass(eq=False)
class RecordConflict(OrchestrationError):
    """A conditional write lost to an existing record."""

    code: str = "record_conflict"


__all__ = [
    "OrchestrationError",
    "ConfigurationError",
    "TransientBackendError",
    "RecordNotFound",
    "SubmissionRejected",
    "RecordConflict",
    "MalformedEvent",
]
