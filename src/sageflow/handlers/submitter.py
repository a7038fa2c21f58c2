"""Training job submitter: build completion -> job record + training request.

Job names are derived from the source commit. The first attempt for a commit
owns ``job-<commit>``; later attempts (a new pipeline execution for the same
commit) take ``job-<commit>-2``, ``job-<commit>-3`` and so on. A re-delivered
build event resolves to the record it already created, so at most one
training request is accepted per build.
"""

from __future__ import annotations

import logging
import re
from typing import Optional, Tuple

from ..backends.base import DataChannels, TrainingBackend, TrainingJobRequest
from ..config.schema import TrainingSettings
from ..core.exceptions import ConfigurationError, MalformedEvent, RecordConflict, SubmissionRejected
from ..core.logging import log_with_context
from ..events import BuildCompletedEvent
from ..metadata.models import JobRecord, JobStatus
from ..metadata.store import MetadataStore
from .results import HandlerResult

LOGGER = logging.getLogger(__name__)

__all__ = ["TrainingJobSubmitter", "derive_job_name", "MAX_JOB_NAME_LENGTH"]

MAX_JOB_NAME_LENGTH = 63
MAX_ATTEMPTS_PER_COMMIT = 99

_INVALID_NAME_CHARS = re.compile(r"[^A-Za-z0-9-]+")


def derive_job_name(source_commit: str, ordinal: int = 1, *, prefix: str = "job") -> str:
    """Return the job name for attempt ``ordinal`` of ``source_commit``.

    The result satisfies the SageMaker ``[a-zA-Z0-9-]{1,63}`` rule. Truncation
    keeps the ordinal suffix intact.
    """
    commit = _INVALID_NAME_CHARS.sub("-", source_commit).strip("-")
    if not commit:
        raise MalformedEvent(f"Commit id '{source_commit}' has no usable characters")
    stem = _INVALID_NAME_CHARS.sub("-", prefix).strip("-")
    base = f"{stem}-{commit}" if stem else commit
    suffix = "" if ordinal <= 1 else f"-{ordinal}"
    base = base[: MAX_JOB_NAME_LENGTH - len(suffix)].rstrip("-")
    return f"{base}{suffix}"


class TrainingJobSubmitter:
    def __init__(self, store: MetadataStore, backend: TrainingBackend, settings: TrainingSettings) -> None:
        missing = [
            name
            for name, value in (
                ("training.role_arn", settings.role_arn),
                ("training.data_prefixes", settings.data_prefixes),
                ("training.output_uri", settings.output_uri),
            )
            if not value
        ]
        if missing:
            raise ConfigurationError(
                f"Training submitter is missing configuration: {', '.join(missing)}",
                metadata={"missing": missing},
            )
        self.store = store
        self.backend = backend
        self.settings = settings

    def submit(self, event: BuildCompletedEvent) -> HandlerResult:
        """Create the job record for ``event`` and submit its training request.

        Raises :class:`TransientBackendError` when the backend is temporarily
        unavailable; the record stays ``Pending`` and a re-delivery resumes it.
        """
        image = event.image_reference or self.settings.image_uri
        if not image:
            raise ConfigurationError(
                "No training image: the build did not report one and training.image_uri is unset",
                metadata={"source_commit": event.source_commit},
            )

        record, created = self._claim(event, image)
        if not created:
            if record.status is not JobStatus.PENDING:
                log_with_context(
                    LOGGER,
                    "info",
                    "duplicate_build_event",
                    job_name=record.job_name,
                    status=record.status.value,
                    execution_id=event.pipeline_execution_id,
                )
                return HandlerResult.noop(
                    "duplicate_delivery",
                    job_name=record.job_name,
                    execution_id=record.pipeline_execution_id,
                    data={"status": record.status.value},
                )
            resumed = self._resume_pending(record)
            if resumed is not None:
                return resumed

        return self._submit(record)

    def _claim(self, event: BuildCompletedEvent, image: str) -> Tuple[JobRecord, bool]:
        for ordinal in range(1, MAX_ATTEMPTS_PER_COMMIT + 1):
            job_name = derive_job_name(event.source_commit, ordinal, prefix=self.settings.job_name_prefix)
            existing = self.store.get(job_name)
            if existing is None:
                candidate = JobRecord(
                    job_name=job_name,
                    source_commit=event.source_commit,
                    image_reference=image,
                    pipeline_execution_id=event.pipeline_execution_id,
                )
                try:
                    return self.store.create(candidate), True
                except RecordConflict:
                    # another invocation won the name; look at what it wrote
                    existing = self.store.require(job_name)
            if self._same_attempt(existing, event):
                return existing, False
        raise SubmissionRejected(
            f"Commit {event.source_commit} already has {MAX_ATTEMPTS_PER_COMMIT} training attempts",
            metadata={"source_commit": event.source_commit},
        )

    @staticmethod
    def _same_attempt(record: JobRecord, event: BuildCompletedEvent) -> bool:
        if event.pipeline_execution_id:
            return record.pipeline_execution_id == event.pipeline_execution_id
        return not record.is_terminal

    def _resume_pending(self, record: JobRecord) -> Optional[HandlerResult]:
        """Finish a record left ``Pending`` by an interrupted earlier delivery."""
        known = self.backend.find_training_job(record.job_name)
        if known is None:
            return None
        # the earlier request was accepted before the record could be advanced
        updated = self._mark_submitted(record.job_name)
        log_with_context(LOGGER, "info", "pending_record_recovered", job_name=record.job_name, backend_status=known.status)
        return HandlerResult.noop(
            "duplicate_delivery",
            job_name=updated.job_name,
            execution_id=updated.pipeline_execution_id,
            data={"status": updated.status.value},
        )

    def _mark_submitted(self, job_name: str) -> JobRecord:
        """Advance an accepted job to ``Submitted`` unless a state change got there first."""
        try:
            return self.store.update(job_name, status=JobStatus.SUBMITTED)
        except RecordConflict:
            current = self.store.require(job_name)
            if current.status is not JobStatus.PENDING:
                log_with_context(
                    LOGGER, "info", "submission_overtaken", job_name=job_name, status=current.status.value
                )
                return current
            return self.store.update(job_name, status=JobStatus.SUBMITTED)

    def build_request(self, record: JobRecord) -> TrainingJobRequest:
        prefixes = self.settings.data_prefixes
        assert prefixes is not None
        return TrainingJobRequest(
            job_name=record.job_name,
            role_arn=self.settings.role_arn,
            image_uri=record.image_reference,
            input_data=DataChannels(
                training_uri=prefixes.training,
                validation_uri=prefixes.validation,
                testing_uri=prefixes.testing,
            ),
            output_uri=self.settings.output_uri,
            instance_type=self.settings.instance_type,
            instance_count=self.settings.instance_count,
            volume_size_gb=self.settings.volume_size_gb,
            max_runtime_seconds=self.settings.max_runtime_seconds,
        )

    def _submit(self, record: JobRecord) -> HandlerResult:
        request = self.build_request(record)
        try:
            handle = self.backend.submit_training_job(request)
        except SubmissionRejected as exc:
            self.store.update(record.job_name, status=JobStatus.FAILED, failure_reason=exc.message)
            log_with_context(
                LOGGER,
                "error",
                "training_submission_rejected",
                job_name=record.job_name,
                execution_id=record.pipeline_execution_id,
                error=exc.message,
            )
            return HandlerResult.failure(
                "submission_rejected",
                exc,
                job_name=record.job_name,
                execution_id=record.pipeline_execution_id,
            )

        self._mark_submitted(record.job_name)
        log_with_context(
            LOGGER,
            "info",
            "training_submitted",
            job_name=record.job_name,
            execution_id=record.pipeline_execution_id,
            image=record.image_reference,
            instance_type=request.instance_type,
        )
        return HandlerResult.success(
            "training_submitted",
            job_name=record.job_name,
            execution_id=record.pipeline_execution_id,
            data={"job_handle": handle},
        )
