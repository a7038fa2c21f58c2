"""Collaborator contracts between the orchestrator and external services.

Handlers depend only on these abstractions. ``backends.aws`` implements them
with boto3 and ``backends.local`` with in-process state.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional

from ..core.exceptions import OrchestrationError

__all__ = [
    "ExecutionStatus",
    "PipelineExecution",
    "PipelineRunner",
    "DataChannels",
    "TrainingJobRequest",
    "DeploymentRequest",
    "TrainingJobDescription",
    "TrainingBackend",
    "Notifier",
    "ArtifactLocation",
    "ArtifactStore",
]


class ExecutionStatus(str, Enum):
    IN_PROGRESS = "InProgress"
    SUCCEEDED = "Succeeded"
    FAILED = "Failed"
    STOPPED = "Stopped"
    SUPERSEDED = "Superseded"

    @classmethod
    def normalize(cls, raw: str) -> "ExecutionStatus":
        """Map a runner status onto the five states the guard reasons about."""
        aliases = {"Stopping": cls.IN_PROGRESS, "Cancelled": cls.STOPPED}
        if raw in aliases:
            return aliases[raw]
        try:
            return cls(raw)
        except ValueError as exc:
            raise OrchestrationError(
                f"Unknown pipeline execution status '{raw}'",
                code="unknown_execution_status",
                metadata={"status": raw},
            ) from exc


@dataclass(frozen=True)
class PipelineExecution:
    execution_id: str
    status: ExecutionStatus
    started_at: Optional[datetime] = None


class PipelineRunner(ABC):
    """Managed pipeline runner (CodePipeline)."""

    @abstractmethod
    def list_recent_executions(self, pipeline_id: str, limit: int = 10) -> List[PipelineExecution]:
        """Return executions newest first. Raises ConfigurationError for unknown pipelines."""

    @abstractmethod
    def start_execution(self, pipeline_id: str) -> str:
        """Request a new execution and return its id."""

    @abstractmethod
    def execution_id_for_action(self, action_job_id: str) -> Optional[str]:
        """Resolve the pipeline execution that owns a Lambda action job."""

    @abstractmethod
    def report_action_success(
        self,
        action_job_id: str,
        *,
        summary: str,
        continuation_token: Optional[str] = None,
    ) -> None:
        """Complete an action job, or ask to be re-invoked when a token is given."""

    @abstractmethod
    def report_action_failure(self, action_job_id: str, *, message: str) -> None:
        """Fail an action job."""


@dataclass(frozen=True)
class DataChannels:
    training_uri: str
    validation_uri: str
    testing_uri: str


@dataclass(frozen=True)
class TrainingJobRequest:
    job_name: str
    role_arn: str
    image_uri: str
    input_data: DataChannels
    output_uri: str
    instance_type: str
    instance_count: int
    volume_size_gb: int
    max_runtime_seconds: int

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class DeploymentRequest:
    job_name: str
    image_uri: str
    model_artifact_uri: str
    role_arn: str
    instance_type: str = "ml.m4.xlarge"
    initial_instance_count: int = 1
    endpoint_name: Optional[str] = None

    @property
    def target_endpoint(self) -> str:
        return self.endpoint_name or self.job_name

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class TrainingJobDescription:
    """Backend view of a training job. ``status`` uses the backend's vocabulary."""

    job_name: str
    status: str
    model_artifact_uri: Optional[str] = None
    failure_reason: Optional[str] = None


class TrainingBackend(ABC):
    """Asynchronous training and hosting service (SageMaker)."""

    @abstractmethod
    def submit_training_job(self, request: TrainingJobRequest) -> str:
        """Submit ``request``; acceptance only, returns the job handle."""

    @abstractmethod
    def describe_training_job(self, job_name: str) -> TrainingJobDescription:
        """Read the current backend state of ``job_name``."""

    @abstractmethod
    def find_training_job(self, job_name: str) -> Optional[TrainingJobDescription]:
        """Like :meth:`describe_training_job` but ``None`` when the job is unknown."""

    @abstractmethod
    def deploy_model(self, request: DeploymentRequest) -> str:
        """Submit a hosting request and return the endpoint handle."""


class Notifier(ABC):
    """Side channel used to announce a pending production promotion."""

    @abstractmethod
    def publish(self, subject: str, message: str) -> Optional[str]:
        """Send ``message`` and return the channel's message id if it has one."""


@dataclass(frozen=True)
class ArtifactLocation:
    """Zip artifact passed between pipeline actions."""

    name: str
    bucket: str
    key: str
    credentials: Mapping[str, str] = field(default_factory=dict)


class ArtifactStore(ABC):
    @abstractmethod
    def read_json(self, location: ArtifactLocation, member: str) -> Dict[str, Any]:
        """Read one JSON member from a zipped artifact."""

    @abstractmethod
    def write_json(self, location: ArtifactLocation, member: str, payload: Mapping[str, Any]) -> None:
        """Write ``payload`` as the only member of a zipped artifact."""
