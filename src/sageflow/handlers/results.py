"""Typed handler results distinguishing success, intentional skip and failure."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

from ..core.exceptions import OrchestrationError


class Outcome(str, Enum):
    SUCCESS = "success"
    NOOP = "noop"
    FAILURE = "failure"


@dataclass(frozen=True)
class HandlerResult:
    outcome: Outcome
    reason: str
    job_name: Optional[str] = None
    execution_id: Optional[str] = None
    error: Optional[OrchestrationError] = None
    data: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def success(cls, reason: str, **kwargs: Any) -> "HandlerResult":
        return cls(Outcome.SUCCESS, reason, **kwargs)

    @classmethod
    def noop(cls, reason: str, **kwargs: Any) -> "HandlerResult":
        return cls(Outcome.NOOP, reason, **kwargs)

    @classmethod
    def failure(cls, reason: str, error: OrchestrationError, **kwargs: Any) -> "HandlerResult":
        return cls(Outcome.FAILURE, reason, error=error, **kwargs)

    @property
    def ok(self) -> bool:
        return self.outcome is not Outcome.FAILURE

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"outcome": self.outcome.value, "reason": self.reason}
        if self.job_name:
            payload["job_name"] = self.job_name
        if self.execution_id:
            payload["execution_id"] = self.execution_id
        if self.error is not None:
            payload["error"] = self.error.to_dict()
        if self.data:
            payload["data"] = dict(self.data)
        return payload


__all__ = ["HandlerResult", "Outcome"]
