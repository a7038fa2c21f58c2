"""Training completion handler: mirror backend job state into the job record."""

from __future__ import annotations

import logging
from typing import Dict, Optional

from ..backends.base import TrainingBackend
from ..core.exceptions import MalformedEvent, RecordConflict, RecordNotFound
from ..core.logging import log_with_context
from ..events import TrainingStateChangeEvent
from ..metadata.models import JobRecord, JobStatus
from ..metadata.store import MetadataStore
from .results import HandlerResult

LOGGER = logging.getLogger(__name__)

__all__ = ["TrainingCompletionHandler", "BACKEND_STATUS_MAP"]

# SageMaker TrainingJobStatus -> record status
BACKEND_STATUS_MAP: Dict[str, JobStatus] = {
    "InProgress": JobStatus.IN_PROGRESS,
    "Stopping": JobStatus.IN_PROGRESS,
    "Completed": JobStatus.SUCCEEDED,
    "Failed": JobStatus.FAILED,
    "Stopped": JobStatus.FAILED,
}


class TrainingCompletionHandler:
    """Owns the write of ``model_artifact_uri`` and the terminal status."""

    def __init__(self, store: MetadataStore, backend: TrainingBackend) -> None:
        self.store = store
        self.backend = backend

    def handle(self, event: TrainingStateChangeEvent) -> HandlerResult:
        record = self.store.get(event.job_name)
        if record is None:
            error = RecordNotFound(f"No job record named '{event.job_name}'", metadata={"job_name": event.job_name})
            log_with_context(LOGGER, "error", "training_event_for_unknown_job", job_name=event.job_name, status=event.status)
            return HandlerResult.failure("record_not_found", error, job_name=event.job_name)

        if record.is_terminal:
            return HandlerResult.noop("already_terminal", job_name=record.job_name, data={"status": record.status.value})

        target = BACKEND_STATUS_MAP.get(event.status)
        if target is None:
            error = MalformedEvent(
                f"Unknown training status '{event.status}'", metadata={"job_name": event.job_name}
            )
            log_with_context(LOGGER, "error", "unknown_training_status", job_name=event.job_name, status=event.status)
            return HandlerResult.failure("unknown_training_status", error, job_name=event.job_name)

        if target is JobStatus.IN_PROGRESS:
            return self._mark_in_progress(record)
        if target is JobStatus.SUCCEEDED:
            return self._mark_succeeded(record, event.model_artifact_uri)
        return self._mark_failed(record, event.failure_reason or f"Training job {event.status.lower()}")

    def sync(self, job_name: str) -> HandlerResult:
        """Reconcile ``job_name`` with the backend's current view of the job."""
        record = self.store.get(job_name)
        if record is None:
            error = RecordNotFound(f"No job record named '{job_name}'", metadata={"job_name": job_name})
            log_with_context(LOGGER, "error", "sync_for_unknown_job", job_name=job_name)
            return HandlerResult.failure("record_not_found", error, job_name=job_name)
        if record.is_terminal:
            return HandlerResult.noop("already_terminal", job_name=job_name, data={"status": record.status.value})
        description = self.backend.describe_training_job(job_name)
        return self.handle(
            TrainingStateChangeEvent(
                job_name=job_name,
                status=description.status,
                model_artifact_uri=description.model_artifact_uri,
                failure_reason=description.failure_reason,
            )
        )

    def _mark_in_progress(self, record: JobRecord) -> HandlerResult:
        if record.status is JobStatus.IN_PROGRESS:
            return HandlerResult.noop("no_change", job_name=record.job_name, data={"status": record.status.value})
        updated = self._update(record, status=JobStatus.IN_PROGRESS)
        if updated is None:
            return HandlerResult.noop("already_terminal", job_name=record.job_name)
        log_with_context(LOGGER, "info", "training_in_progress", job_name=record.job_name)
        return HandlerResult.success("training_in_progress", job_name=record.job_name, data={"status": updated.status.value})

    def _mark_succeeded(self, record: JobRecord, artifact_uri: Optional[str]) -> HandlerResult:
        if not artifact_uri:
            artifact_uri = self.backend.describe_training_job(record.job_name).model_artifact_uri
        if not artifact_uri:
            error = MalformedEvent(
                f"Training job {record.job_name} completed without a model artifact",
                metadata={"job_name": record.job_name},
            )
            log_with_context(LOGGER, "error", "model_artifact_missing", job_name=record.job_name)
            return HandlerResult.failure("model_artifact_missing", error, job_name=record.job_name)

        updated = self._update(record, status=JobStatus.SUCCEEDED, model_artifact_uri=artifact_uri)
        if updated is None:
            return HandlerResult.noop("already_terminal", job_name=record.job_name)
        log_with_context(
            LOGGER, "info", "training_succeeded", job_name=record.job_name, model_artifact_uri=artifact_uri
        )
        return HandlerResult.success(
            "training_succeeded",
            job_name=record.job_name,
            execution_id=record.pipeline_execution_id,
            data={"status": updated.status.value, "model_artifact_uri": artifact_uri},
        )

    def _mark_failed(self, record: JobRecord, reason: str) -> HandlerResult:
        updated = self._update(record, status=JobStatus.FAILED, failure_reason=reason)
        if updated is None:
            return HandlerResult.noop("already_terminal", job_name=record.job_name)
        log_with_context(LOGGER, "warning", "training_failed", job_name=record.job_name, failure_reason=reason)
        return HandlerResult.success(
            "training_failed",
            job_name=record.job_name,
            execution_id=record.pipeline_execution_id,
            data={"status": updated.status.value, "failure_reason": reason},
        )

    def _update(self, record: JobRecord, **changes) -> Optional[JobRecord]:
        """Apply ``changes``; ``None`` when a concurrent delivery already finished the record."""
        try:
            return self.store.update(record.job_name, **changes)
        except RecordConflict:
            latest = self.store.require(record.job_name)
            if latest.is_terminal:
                return None
            return self.store.update(record.job_name, **changes)
