"""External collaborators: pipeline runner, training backend, notifier, artifacts.

Responsibility: Defines the contracts handlers depend on and provides boto3
(``aws``) and in-process (``local``) implementations of them.
"""

from .base import (
    ArtifactLocation,
    ArtifactStore,
    DataChannels,
    DeploymentRequest,
    ExecutionStatus,
    Notifier,
    PipelineExecution,
    PipelineRunner,
    TrainingBackend,
    TrainingJobDescription,
    TrainingJobRequest,
)

__all__ = [
    "ArtifactLocation",
    "ArtifactStore",
    "DataChannels",
    "DeploymentRequest",
    "ExecutionStatus",
    "Notifier",
    "PipelineExecution",
    "PipelineRunner",
    "TrainingBackend",
    "TrainingJobDescription",
    "TrainingJobRequest",
]
