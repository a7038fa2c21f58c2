"""Event handlers.

Responsibility: turn one typed event into at most one side effect per
collaborator and report the outcome as a :class:`HandlerResult`.
"""

from .approval import ApprovalGate
from .completion import TrainingCompletionHandler
from .deploy import DeploymentTrigger
from .guard import PipelineExecutionGuard
from .results import HandlerResult, Outcome
from .submitter import TrainingJobSubmitter, derive_job_name
from .watcher import StorageEventWatcher

__all__ = [
    "ApprovalGate",
    "DeploymentTrigger",
    "HandlerResult",
    "Outcome",
    "PipelineExecutionGuard",
    "StorageEventWatcher",
    "TrainingCompletionHandler",
    "TrainingJobSubmitter",
    "derive_job_name",
]
