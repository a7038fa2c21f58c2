"""Pipeline execution guard: keep at most one execution in progress.

The check is check-then-act against the runner's execution history. The
narrow race between the check and the start is tolerated because the runner
itself refuses a genuinely overlapping start; an optional lease row in the
metadata store narrows it further.
"""

from __future__ import annotations

import logging
import uuid
from typing import List, Optional

from ..backends.base import ExecutionStatus, PipelineExecution, PipelineRunner
from ..core.exceptions import ConfigurationError, SubmissionRejected
from ..core.logging import log_with_context
from ..metadata.store import LEASE_PREFIX, MetadataStore
from .results import HandlerResult

LOGGER = logging.getLogger(__name__)

__all__ = ["PipelineExecutionGuard"]


class PipelineExecutionGuard:
    def __init__(
        self,
        runner: PipelineRunner,
        pipeline_id: str,
        *,
        history_depth: int = 10,
        max_consecutive_failures: Optional[int] = None,
        lease_store: Optional[MetadataStore] = None,
        lease_seconds: Optional[int] = None,
    ) -> None:
        if not pipeline_id:
            raise ConfigurationError("Pipeline name is not configured")
        if lease_seconds and lease_store is None:
            raise ConfigurationError("A lease duration needs a metadata store to hold the lease")
        self.runner = runner
        self.pipeline_id = pipeline_id
        self.history_depth = history_depth
        self.max_consecutive_failures = max_consecutive_failures
        self.lease_store = lease_store
        self.lease_seconds = lease_seconds

    def ensure_running(self) -> HandlerResult:
        """Start an execution unless one is already in progress.

        Raises :class:`ConfigurationError` when the pipeline does not exist.
        """
        if not self.lease_seconds:
            return self._decide()

        key = f"{LEASE_PREFIX}{self.pipeline_id}"
        owner = uuid.uuid4().hex
        if not self.lease_store.acquire_lease(key, owner, self.lease_seconds):  # type: ignore[union-attr]
            log_with_context(LOGGER, "info", "guard_lease_held", pipeline=self.pipeline_id)
            return HandlerResult.noop("lease_held")
        try:
            return self._decide()
        finally:
            self.lease_store.release_lease(key, owner)  # type: ignore[union-attr]

    def _decide(self) -> HandlerResult:
        executions = self.runner.list_recent_executions(self.pipeline_id, limit=self.history_depth)
        latest = executions[0] if executions else None

        if latest is None:
            return self._start("no_previous_execution", None)

        if latest.status is ExecutionStatus.IN_PROGRESS:
            log_with_context(
                LOGGER, "info", "execution_in_progress", pipeline=self.pipeline_id, execution_id=latest.execution_id
            )
            return HandlerResult.noop("execution_in_progress", execution_id=latest.execution_id)

        if latest.status is ExecutionStatus.FAILED and self._retry_budget_exhausted(executions):
            log_with_context(
                LOGGER,
                "warning",
                "retry_budget_exhausted",
                pipeline=self.pipeline_id,
                execution_id=latest.execution_id,
                max_consecutive_failures=self.max_consecutive_failures,
            )
            return HandlerResult.noop("retry_budget_exhausted", execution_id=latest.execution_id)

        return self._start(f"restart_after_{latest.status.value.lower()}", latest)

    def _retry_budget_exhausted(self, executions: List[PipelineExecution]) -> bool:
        if self.max_consecutive_failures is None:
            return False
        streak = 0
        for execution in executions:
            if execution.status is not ExecutionStatus.FAILED:
                break
            streak += 1
        return streak >= self.max_consecutive_failures

    def _start(self, reason: str, previous: Optional[PipelineExecution]) -> HandlerResult:
        previous_status = previous.status.value if previous else None
        try:
            execution_id = self.runner.start_execution(self.pipeline_id)
        except SubmissionRejected as exc:
            # the runner refuses overlapping starts
            log_with_context(
                LOGGER, "warning", "start_rejected_by_runner", pipeline=self.pipeline_id, error=exc.message
            )
            return HandlerResult.noop("start_rejected_by_runner", data={"error": exc.to_dict()})
        log_with_context(
            LOGGER,
            "info",
            "pipeline_started",
            pipeline=self.pipeline_id,
            execution_id=execution_id,
            reason=reason,
            previous_status=previous_status,
        )
        return HandlerResult.success(reason, execution_id=execution_id, data={"previous_status": previous_status})
