"""CodePipeline Lambda action adapter for the train and deploy stages.

The pipeline invokes a Lambda action per stage and waits for the action to
report back. The train action hands the job name to the deploy action through
a small ``trigger.json`` artifact. While training is still running the deploy
action reports success with a continuation token, which makes the runner invoke
it again later instead of the controller polling.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from ..core.exceptions import MalformedEvent, OrchestrationError, RecordNotFound
from ..core.logging import log_with_context
from ..events import (
    BUILD_OUTPUT_MEMBER,
    TRIGGER_MEMBER,
    BuildCompletedEvent,
    PipelineActionJob,
    parse_pipeline_action_job,
)
from ..handlers.results import HandlerResult, Outcome
from ..metadata.models import JobStatus
from .orchestrator import Orchestrator

LOGGER = logging.getLogger(__name__)

__all__ = ["PipelineActionAdapter"]


class PipelineActionAdapter:
    def __init__(self, orchestrator: Orchestrator) -> None:
        self.orchestrator = orchestrator

    @property
    def runner(self):
        return self.orchestrator.runner

    def train(self, payload: Any) -> HandlerResult:
        """Submit the training job for the build output in the input artifact."""
        try:
            job = parse_pipeline_action_job(payload)
        except MalformedEvent as exc:
            log_with_context(LOGGER, "error", "malformed_action_job", error=exc.message)
            return HandlerResult.failure("malformed_event", exc)

        try:
            execution_id = self.runner.execution_id_for_action(job.job_id)
            build = self.orchestrator.artifacts.read_json(job.input_artifact(), BUILD_OUTPUT_MEMBER)
            event = BuildCompletedEvent.from_build_payload(build, pipeline_execution_id=execution_id)
            result = self.orchestrator.dispatch("build_completed", event, correlation_id=job.job_id)
            if result.ok and result.job_name:
                self.orchestrator.artifacts.write_json(
                    job.output_artifact(),
                    TRIGGER_MEMBER,
                    {"job_name": result.job_name, "source_commit": event.source_commit},
                )
        except OrchestrationError as exc:
            return self._fail(job, "train_action_failed", exc)

        if not result.ok:
            return self._fail(job, result.reason, result.error, job_name=result.job_name)
        self.runner.report_action_success(job.job_id, summary=f"Training job {result.job_name}: {result.reason}")
        return result

    def deploy(self, payload: Any) -> HandlerResult:
        """Deploy the job named in the trigger artifact once its training succeeded."""
        try:
            job = parse_pipeline_action_job(payload)
        except MalformedEvent as exc:
            log_with_context(LOGGER, "error", "malformed_action_job", error=exc.message)
            return HandlerResult.failure("malformed_event", exc)

        try:
            job_name = self._trigger_job_name(job)
            synced = self.orchestrator.dispatch("sync", job_name, correlation_id=job.job_id)
            record = self.orchestrator.store.get(job_name)
            if record is None:
                raise RecordNotFound(f"No job record named '{job_name}'", metadata={"job_name": job_name})

            if record.status is JobStatus.FAILED:
                message = record.failure_reason or "training failed"
                log_with_context(LOGGER, "warning", "deploy_action_training_failed", job_name=job_name, failure_reason=message)
                self.runner.report_action_failure(job.job_id, message=f"Training job {job_name} failed: {message}")
                return HandlerResult.noop("training_failed", job_name=job_name, data={"failure_reason": message})

            if record.status is not JobStatus.SUCCEEDED:
                token = json.dumps({"job_name": job_name})
                self.runner.report_action_success(
                    job.job_id,
                    summary=f"Training job {job_name} is {record.status.value}",
                    continuation_token=token,
                )
                log_with_context(LOGGER, "info", "deploy_action_waiting", job_name=job_name, status=record.status.value)
                return HandlerResult.noop("training_not_finished", job_name=job_name, data={"status": record.status.value})

            chained = synced.data.get("deployment")
            if chained is None:
                result = self.orchestrator.dispatch("deploy", job_name, correlation_id=job.job_id)
            else:
                # the sync already ran the deployment chain
                result = synced
        except OrchestrationError as exc:
            return self._fail(job, "deploy_action_failed", exc)

        if result.outcome is Outcome.FAILURE:
            return self._fail(job, result.reason, result.error, job_name=job_name)
        if chained is not None and chained["outcome"] == Outcome.FAILURE.value:
            error = chained.get("error") or {}
            return self._fail(
                job,
                chained["reason"],
                OrchestrationError(error.get("message", chained["reason"]), code=error.get("code", "orchestration_error")),
                job_name=job_name,
            )
        endpoint = result.data.get("endpoint") or self.orchestrator.store.require(job_name).deployment_handle
        self.runner.report_action_success(job.job_id, summary=f"Deployed {job_name} to endpoint {endpoint}")
        return result

    def _trigger_job_name(self, job: PipelineActionJob) -> str:
        trigger = self.orchestrator.artifacts.read_json(job.input_artifact(), TRIGGER_MEMBER)
        job_name = trigger.get("job_name")
        if not job_name:
            raise MalformedEvent(f"{TRIGGER_MEMBER} does not name a training job", metadata={"trigger": trigger})
        return str(job_name)

    def _fail(self, job: PipelineActionJob, reason: str, error: Any, **kwargs: Any) -> HandlerResult:
        if not isinstance(error, OrchestrationError):
            error = OrchestrationError(reason)
        log_with_context(
            LOGGER, "error", "pipeline_action_failed", action_job_id=job.job_id, reason=reason, error=error.message
        )
        self.runner.report_action_failure(job.job_id, message=error.message)
        return HandlerResult.failure(reason, error, **kwargs)
