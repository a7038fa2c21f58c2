"""In-process backends for local runs, demos and tests."""

from __future__ import annotations

import itertools
import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Set, Tuple

from ..core.exceptions import ConfigurationError, SubmissionRejected
from ..core.time import utc_now
from .base import (
    ArtifactLocation,
    ArtifactStore,
    DeploymentRequest,
    ExecutionStatus,
    Notifier,
    PipelineExecution,
    PipelineRunner,
    TrainingBackend,
    TrainingJobDescription,
    TrainingJobRequest,
)

LOGGER = logging.getLogger(__name__)

__all__ = [
    "LocalPipelineRunner",
    "LocalTrainingBackend",
    "LogNotifier",
    "LocalArtifactStore",
    "ActionReport",
]


@dataclass
class ActionReport:
    action_job_id: str
    succeeded: bool
    message: str
    continuation_token: Optional[str] = None


class LocalPipelineRunner(PipelineRunner):
    """Keeps execution history in memory; ids are ``exec-1``, ``exec-2``, ..."""

    def __init__(self, pipelines: Optional[Set[str]] = None) -> None:
        self.pipelines: Set[str] = set(pipelines or ())
        self.executions: Dict[str, List[PipelineExecution]] = {name: [] for name in self.pipelines}
        self.start_requests: List[str] = []
        self.action_executions: Dict[str, str] = {}
        self.action_reports: List[ActionReport] = []
        self._counter = itertools.count(1)
        self._lock = threading.Lock()

    def register(self, pipeline_id: str) -> None:
        self.pipelines.add(pipeline_id)
        self.executions.setdefault(pipeline_id, [])

    def _require(self, pipeline_id: str) -> List[PipelineExecution]:
        if pipeline_id not in self.pipelines:
            raise ConfigurationError(f"Pipeline '{pipeline_id}' does not exist", metadata={"pipeline": pipeline_id})
        return self.executions[pipeline_id]

    def list_recent_executions(self, pipeline_id: str, limit: int = 10) -> List[PipelineExecution]:
        with self._lock:
            history = self._require(pipeline_id)
            return list(reversed(history))[:limit]

    def start_execution(self, pipeline_id: str) -> str:
        with self._lock:
            history = self._require(pipeline_id)
            execution_id = f"exec-{next(self._counter)}"
            history.append(PipelineExecution(execution_id, ExecutionStatus.IN_PROGRESS, utc_now()))
            self.start_requests.append(pipeline_id)
        LOGGER.info("[local-runner] started %s for %s", execution_id, pipeline_id)
        return execution_id

    def set_status(self, pipeline_id: str, execution_id: str, status: ExecutionStatus) -> None:
        """Move an execution to ``status``, as the real runner would on its own."""
        with self._lock:
            history = self._require(pipeline_id)
            for index, execution in enumerate(history):
                if execution.execution_id == execution_id:
                    history[index] = PipelineExecution(execution_id, status, execution.started_at)
                    return
        raise KeyError(execution_id)

    def execution_id_for_action(self, action_job_id: str) -> Optional[str]:
        return self.action_executions.get(action_job_id)

    def report_action_success(
        self,
        action_job_id: str,
        *,
        summary: str,
        continuation_token: Optional[str] = None,
    ) -> None:
        self.action_reports.append(ActionReport(action_job_id, True, summary, continuation_token))

    def report_action_failure(self, action_job_id: str, *, message: str) -> None:
        self.action_reports.append(ActionReport(action_job_id, False, message))


@dataclass
class _LocalJob:
    request: TrainingJobRequest
    status: str = "InProgress"
    model_artifact_uri: Optional[str] = None
    failure_reason: Optional[str] = None


class LocalTrainingBackend(TrainingBackend):
    """Accepts every request and leaves jobs ``InProgress`` until told otherwise."""

    def __init__(self, *, reject_with: Optional[str] = None) -> None:
        self.reject_with = reject_with
        self.jobs: Dict[str, _LocalJob] = {}
        self.training_requests: List[TrainingJobRequest] = []
        self.deployment_requests: List[DeploymentRequest] = []

    def submit_training_job(self, request: TrainingJobRequest) -> str:
        if self.reject_with:
            raise SubmissionRejected(self.reject_with, metadata={"job_name": request.job_name})
        if request.job_name in self.jobs:
            raise SubmissionRejected(
                f"Training job {request.job_name} already exists", metadata={"job_name": request.job_name}
            )
        self.training_requests.append(request)
        self.jobs[request.job_name] = _LocalJob(request=request)
        return f"local:training-job/{request.job_name}"

    def describe_training_job(self, job_name: str) -> TrainingJobDescription:
        job = self.jobs.get(job_name)
        if job is None:
            raise ConfigurationError(f"Unknown training job '{job_name}'", metadata={"job_name": job_name})
        return TrainingJobDescription(job_name, job.status, job.model_artifact_uri, job.failure_reason)

    def find_training_job(self, job_name: str) -> Optional[TrainingJobDescription]:
        if job_name not in self.jobs:
            return None
        return self.describe_training_job(job_name)

    def finish(self, job_name: str, *, artifact_uri: Optional[str] = None, failure_reason: Optional[str] = None) -> None:
        """Complete a job. Without an artifact URI it fails."""
        job = self.jobs[job_name]
        if artifact_uri:
            job.status = "Completed"
            job.model_artifact_uri = artifact_uri
        else:
            job.status = "Failed"
            job.failure_reason = failure_reason or "failed"

    def deploy_model(self, request: DeploymentRequest) -> str:
        self.deployment_requests.append(request)
        return request.target_endpoint


class LogNotifier(Notifier):
    """Writes notifications to the log and keeps them for inspection."""

    def __init__(self) -> None:
        self.messages: List[Tuple[str, str]] = []

    def publish(self, subject: str, message: str) -> Optional[str]:
        self.messages.append((subject, message))
        LOGGER.info("notification_published", extra={"extra_context": {"subject": subject, "body": message}})
        return f"local-{len(self.messages)}"


@dataclass
class LocalArtifactStore(ArtifactStore):
    objects: Dict[Tuple[str, str], Dict[str, Dict[str, Any]]] = field(default_factory=dict)

    def put(self, bucket: str, key: str, member: str, payload: Mapping[str, Any]) -> None:
        self.objects[(bucket, key)] = {member: dict(payload)}

    def read_json(self, location: ArtifactLocation, member: str) -> Dict[str, Any]:
        archive = self.objects.get((location.bucket, location.key))
        if archive is None or member not in archive:
            raise ConfigurationError(f"Artifact does not contain '{member}'", metadata={"member": member})
        return dict(archive[member])

    def write_json(self, location: ArtifactLocation, member: str, payload: Mapping[str, Any]) -> None:
        self.put(location.bucket, location.key, member, payload)
