"""Storage event watcher: filter object-created events and wake the guard."""

from __future__ import annotations

import dataclasses
import logging
from typing import Any, Optional

from ..core.exceptions import MalformedEvent
from ..core.logging import log_with_context
from ..events import ObjectCreatedEvent, parse_storage_notification
from .guard import PipelineExecutionGuard
from .results import HandlerResult

LOGGER = logging.getLogger(__name__)

__all__ = ["StorageEventWatcher"]


class StorageEventWatcher:
    """Pure filter/dispatcher. Performs no state mutation of its own."""

    def __init__(
        self,
        guard: PipelineExecutionGuard,
        *,
        input_prefix: str,
        input_bucket: Optional[str] = None,
    ) -> None:
        self.guard = guard
        self.input_prefix = input_prefix
        self.input_bucket = input_bucket

    def matches(self, event: ObjectCreatedEvent) -> bool:
        if self.input_bucket and event.bucket != self.input_bucket:
            return False
        # folder placeholder objects are not data
        if event.object_key.endswith("/"):
            return False
        return event.object_key.startswith(self.input_prefix)

    def handle(self, payload: Any) -> HandlerResult:
        try:
            events = parse_storage_notification(payload)
        except MalformedEvent as exc:
            log_with_context(LOGGER, "error", "malformed_storage_event", error=exc.message)
            return HandlerResult.failure("malformed_event", exc)

        matching = [event for event in events if self.matches(event)]
        if not matching:
            log_with_context(
                LOGGER,
                "info",
                "storage_event_ignored",
                keys=",".join(event.object_key for event in events),
                input_prefix=self.input_prefix,
            )
            return HandlerResult.noop("outside_input_prefix")

        keys = [event.object_key for event in matching]
        log_with_context(LOGGER, "info", "input_data_arrived", bucket=matching[0].bucket, keys=",".join(keys))
        # one guard call per notification; every matching key wants the same pipeline
        result = self.guard.ensure_running()
        return dataclasses.replace(result, data={**result.data, "object_keys": keys})
