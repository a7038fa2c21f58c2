"""Approval gate: announce a deployed model awaiting production promotion."""

from __future__ import annotations

import logging

from ..backends.base import Notifier
from ..config.schema import NotificationSettings
from ..core.logging import log_with_context
from ..metadata.models import JobRecord
from .results import HandlerResult

LOGGER = logging.getLogger(__name__)

__all__ = ["ApprovalGate", "render_promotion_message"]


def render_promotion_message(record: JobRecord, endpoint: str, prompt: str) -> str:
    lines = [
        f"Training job: {record.job_name}",
        f"Source commit: {record.source_commit}",
        f"Model artifact: {record.model_artifact_uri}",
        f"Endpoint: {endpoint}",
        "",
        prompt,
    ]
    return "\n".join(lines)


class ApprovalGate:
    """Publishes one notification per promotion request. The runner's manual
    approval step owns the decision; nothing here waits for it."""

    def __init__(self, notifier: Notifier, settings: NotificationSettings) -> None:
        self.notifier = notifier
        self.settings = settings

    def request_promotion(self, record: JobRecord, endpoint: str) -> HandlerResult:
        message = render_promotion_message(record, endpoint, self.settings.prompt)
        subject = f"{self.settings.subject}: {record.job_name}"
        message_id = self.notifier.publish(subject, message)
        log_with_context(
            LOGGER, "info", "promotion_requested", job_name=record.job_name, endpoint=endpoint, message_id=message_id
        )
        return HandlerResult.success(
            "promotion_requested",
            job_name=record.job_name,
            execution_id=record.pipeline_execution_id,
            data={"endpoint": endpoint, "message_id": message_id},
        )
