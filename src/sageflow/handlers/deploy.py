"""Deployment trigger: hosting request for a successfully trained job."""

from __future__ import annotations

import logging

from ..backends.base import DeploymentRequest, TrainingBackend
from ..config.schema import DeploymentSettings
from ..core.exceptions import ConfigurationError, RecordConflict, RecordNotFound, SubmissionRejected
from ..core.logging import log_with_context
from ..metadata.models import JobRecord, JobStatus
from ..metadata.store import MetadataStore
from .results import HandlerResult

LOGGER = logging.getLogger(__name__)

__all__ = ["DeploymentTrigger"]


class DeploymentTrigger:
    """Reads the job record and submits one hosting request per trained model.

    The only write is the ``deployment_handle`` marker, which lets a duplicate
    completion delivery recognise that the model was already deployed.
    """

    def __init__(
        self,
        store: MetadataStore,
        backend: TrainingBackend,
        settings: DeploymentSettings,
        *,
        role_arn: str,
    ) -> None:
        if not settings.inference_image_uri:
            raise ConfigurationError("deployment.inference_image_uri is not configured")
        if not role_arn:
            raise ConfigurationError("training.role_arn is required to create models")
        self.store = store
        self.backend = backend
        self.settings = settings
        self.role_arn = role_arn

    def build_request(self, record: JobRecord) -> DeploymentRequest:
        return DeploymentRequest(
            job_name=record.job_name,
            image_uri=self.settings.inference_image_uri,
            model_artifact_uri=record.model_artifact_uri or "",
            role_arn=self.role_arn,
            instance_type=self.settings.instance_type,
            initial_instance_count=self.settings.initial_instance_count,
            endpoint_name=self.settings.endpoint_name,
        )

    def deploy(self, job_name: str) -> HandlerResult:
        record = self.store.get(job_name)
        if record is None:
            error = RecordNotFound(f"No job record named '{job_name}'", metadata={"job_name": job_name})
            log_with_context(LOGGER, "error", "deployment_record_missing", job_name=job_name)
            return HandlerResult.failure("record_not_found", error, job_name=job_name)

        if record.status is not JobStatus.SUCCEEDED or not record.model_artifact_uri:
            log_with_context(LOGGER, "info", "deployment_skipped", job_name=job_name, status=record.status.value)
            return HandlerResult.noop("deployment_skipped", job_name=job_name, data={"status": record.status.value})

        if record.deployment_handle:
            log_with_context(
                LOGGER, "info", "deployment_already_requested", job_name=job_name, endpoint=record.deployment_handle
            )
            return HandlerResult.noop(
                "already_deployed", job_name=job_name, data={"endpoint": record.deployment_handle}
            )

        request = self.build_request(record)
        try:
            endpoint = self.backend.deploy_model(request)
        except SubmissionRejected as exc:
            log_with_context(LOGGER, "error", "deployment_rejected", job_name=job_name, error=exc.message)
            return HandlerResult.failure("deployment_rejected", exc, job_name=job_name)
        try:
            self.store.update(job_name, deployment_handle=endpoint)
        except RecordConflict as exc:
            # hosting request already sent
            log_with_context(LOGGER, "warning", "deployment_marker_not_written", job_name=job_name, error=exc.message)
        log_with_context(
            LOGGER,
            "info",
            "deployment_requested",
            job_name=job_name,
            endpoint=endpoint,
            model_artifact_uri=record.model_artifact_uri,
        )
        return HandlerResult.success(
            "deployment_requested",
            job_name=job_name,
            execution_id=record.pipeline_execution_id,
            data={"endpoint": endpoint, "model_artifact_uri": record.model_artifact_uri},
        )
