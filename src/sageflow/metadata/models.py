"""Job record data model persisted by the metadata store."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Dict, FrozenSet, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..core.exceptions import RecordConflict
from ..core.time import parse_timestamp, utc_now


class JobStatus(str, Enum):
    PENDING = "Pending"
    SUBMITTED = "Submitted"
    IN_PROGRESS = "InProgress"
    SUCCEEDED = "Succeeded"
    FAILED = "Failed"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES: FrozenSet[JobStatus] = frozenset({JobStatus.SUCCEEDED, JobStatus.FAILED})

_TRANSITIONS: Dict[JobStatus, FrozenSet[JobStatus]] = {
    JobStatus.PENDING: frozenset({JobStatus.SUBMITTED, JobStatus.IN_PROGRESS, JobStatus.SUCCEEDED, JobStatus.FAILED}),
    JobStatus.SUBMITTED: frozenset({JobStatus.IN_PROGRESS, JobStatus.SUCCEEDED, JobStatus.FAILED}),
    JobStatus.IN_PROGRESS: frozenset({JobStatus.SUCCEEDED, JobStatus.FAILED}),
    JobStatus.SUCCEEDED: frozenset(),
    JobStatus.FAILED: frozenset(),
}


class JobRecord(BaseModel):
    """Tracks the lifecycle of one training job submission."""

    job_name: str
    status: JobStatus = JobStatus.PENDING
    source_commit: str
    image_reference: str
    model_artifact_uri: Optional[str] = None
    pipeline_execution_id: Optional[str] = None
    failure_reason: Optional[str] = None
    deployment_handle: Optional[str] = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    version: int = 1

    model_config = ConfigDict(frozen=True)

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def apply(
        self,
        *,
        status: Optional[JobStatus] = None,
        model_artifact_uri: Optional[str] = None,
        failure_reason: Optional[str] = None,
        deployment_handle: Optional[str] = None,
    ) -> "JobRecord":
        """Return the next version of this record with ``changes`` applied.

        Status only moves forward. Write-once fields raise :class:`RecordConflict`
        when a different value is already present.
        """
        changes: Dict[str, Any] = {}
        if status is not None and status != self.status:
            if status not in _TRANSITIONS[self.status]:
                raise RecordConflict(
                    f"Illegal status transition {self.status.value} -> {status.value} for {self.job_name}",
                    metadata={"job_name": self.job_name},
                )
            changes["status"] = status

        for field_name, value in (("model_artifact_uri", model_artifact_uri), ("deployment_handle", deployment_handle)):
            if value is None:
                continue
            current = getattr(self, field_name)
            if current == value:
                continue
            if current is not None:
                raise RecordConflict(
                    f"{field_name} already set for {self.job_name}",
                    metadata={"job_name": self.job_name, "current": current},
                )
            changes[field_name] = value

        if failure_reason is not None:
            changes["failure_reason"] = failure_reason

        if not changes:
            return self
        changes["updated_at"] = utc_now()
        changes["version"] = self.version + 1
        return self.model_copy(update=changes)

    def to_item(self) -> Dict[str, Any]:
        """Flatten to a string/int mapping suitable for key-value stores."""
        return self.model_dump(mode="json", exclude_none=True)

    @classmethod
    def from_item(cls, item: Mapping[str, Any]) -> "JobRecord":
        payload = dict(item)
        for key in ("created_at", "updated_at"):
            if isinstance(payload.get(key), str):
                payload[key] = parse_timestamp(payload[key])
        if "version" in payload:
            payload["version"] = int(payload["version"])
        return cls.model_validate(payload)


__all__ = ["JobRecord", "JobStatus", "TERMINAL_STATUSES"]
