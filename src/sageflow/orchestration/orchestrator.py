"""Event consumer wiring config -> collaborators -> handlers."""

from __future__ import annotations

import dataclasses
import logging
from functools import cached_property
from pathlib import Path
from typing import Any, Callable, Dict, Mapping, Optional, Union

import boto3

from ..backends.base import ArtifactStore, Notifier, PipelineRunner, TrainingBackend
from ..config import load_config
from ..config.schema import OrchestratorConfig
from ..core.exceptions import MalformedEvent, TransientBackendError
from ..core.logging import correlation_scope, log_with_context
from ..core.retry import RetryError, RetryPolicy, retry_call
from ..events import BuildCompletedEvent, TrainingStateChangeEvent, parse_training_state_change
from ..handlers import (
    ApprovalGate,
    DeploymentTrigger,
    HandlerResult,
    Outcome,
    PipelineExecutionGuard,
    StorageEventWatcher,
    TrainingCompletionHandler,
    TrainingJobSubmitter,
)
from ..metadata import DynamoMetadataStore, InMemoryMetadataStore, JobStatus, MetadataStore, SqliteMetadataStore

LOGGER = logging.getLogger(__name__)

__all__ = [
    "Orchestrator",
    "EVENT_KINDS",
    "build_runner",
    "build_training_backend",
    "build_metadata_store",
    "build_notifier",
    "build_artifact_store",
]

EVENT_KINDS = ("object_created", "build_completed", "training_state_change", "deploy", "sync")


def build_runner(config: OrchestratorConfig) -> PipelineRunner:
    if config.backend == "local":
        from ..backends.local import LocalPipelineRunner

        return LocalPipelineRunner({config.pipeline.name} if config.pipeline.name else None)
    from ..backends.aws import CodePipelineRunner, create_client

    return CodePipelineRunner(create_client("codepipeline", region=config.aws.region, endpoint_url=config.aws.endpoint_url))


def build_training_backend(config: OrchestratorConfig) -> TrainingBackend:
    if config.backend == "local":
        from ..backends.local import LocalTrainingBackend

        return LocalTrainingBackend()
    from ..backends.aws import SageMakerBackend, create_client

    return SageMakerBackend(create_client("sagemaker", region=config.aws.region, endpoint_url=config.aws.endpoint_url))


def build_metadata_store(config: OrchestratorConfig) -> MetadataStore:
    settings = config.metadata
    if settings.backend == "sqlite":
        return SqliteMetadataStore(Path(settings.db_path))
    if settings.backend == "dynamodb":
        options: Dict[str, Any] = {}
        if config.aws.region:
            options["region_name"] = config.aws.region
        if config.aws.endpoint_url:
            options["endpoint_url"] = config.aws.endpoint_url
        table = boto3.resource("dynamodb", **options).Table(settings.table_name)
        return DynamoMetadataStore(table, key_attribute=settings.key_attribute)
    return InMemoryMetadataStore()


def build_notifier(config: OrchestratorConfig) -> Notifier:
    if config.notifications.backend == "sns" and config.backend == "aws":
        from ..backends.aws import SnsNotifier, create_client

        client = create_client("sns", region=config.aws.region, endpoint_url=config.aws.endpoint_url)
        return SnsNotifier(client, config.notifications.topic_arn or "")
    from ..backends.local import LogNotifier

    return LogNotifier()


def build_artifact_store(config: OrchestratorConfig) -> ArtifactStore:
    if config.backend == "local":
        from ..backends.local import LocalArtifactStore

        return LocalArtifactStore()
    from ..backends.aws import S3ArtifactStore

    return S3ArtifactStore(region=config.aws.region, endpoint_url=config.aws.endpoint_url)


class Orchestrator:
    """Routes raw events to the handlers and chains completion into deployment.

    Collaborators default to the implementations named by ``config`` and can be
    injected individually. Handlers are built on first use so a deployment that
    only watches storage does not need training or hosting configuration.
    """

    def __init__(
        self,
        config: OrchestratorConfig,
        *,
        runner: Optional[PipelineRunner] = None,
        backend: Optional[TrainingBackend] = None,
        store: Optional[MetadataStore] = None,
        notifier: Optional[Notifier] = None,
        artifacts: Optional[ArtifactStore] = None,
    ) -> None:
        self.config = config
        self.runner = runner if runner is not None else build_runner(config)
        self.backend = backend if backend is not None else build_training_backend(config)
        self.store = store if store is not None else build_metadata_store(config)
        self.notifier = notifier if notifier is not None else build_notifier(config)
        self.artifacts = artifacts if artifacts is not None else build_artifact_store(config)
        self.retry_policy = RetryPolicy(
            max_attempts=config.retry.max_attempts,
            base_delay=config.retry.base_delay,
            max_delay=config.retry.max_delay,
            retry_exceptions=(TransientBackendError,),
        )

    @classmethod
    def from_config_file(cls, path: Union[str, Path], *, overrides: Optional[list[str]] = None, **collaborators: Any) -> "Orchestrator":
        return cls(load_config(path, overrides=overrides), **collaborators)

    # handlers -----------------------------------------------------------------

    @cached_property
    def guard(self) -> PipelineExecutionGuard:
        settings = self.config.guard
        return PipelineExecutionGuard(
            self.runner,
            self.config.pipeline.name,
            history_depth=self.config.pipeline.history_depth,
            max_consecutive_failures=settings.max_consecutive_failures,
            lease_store=self.store if settings.lease_seconds else None,
            lease_seconds=settings.lease_seconds,
        )

    @cached_property
    def watcher(self) -> StorageEventWatcher:
        return StorageEventWatcher(
            self.guard,
            input_prefix=self.config.pipeline.input_prefix,
            input_bucket=self.config.pipeline.input_bucket,
        )

    @cached_property
    def submitter(self) -> TrainingJobSubmitter:
        return TrainingJobSubmitter(self.store, self.backend, self.config.training)

    @cached_property
    def completion(self) -> TrainingCompletionHandler:
        return TrainingCompletionHandler(self.store, self.backend)

    @cached_property
    def deployer(self) -> DeploymentTrigger:
        return DeploymentTrigger(
            self.store, self.backend, self.config.deployment, role_arn=self.config.training.role_arn
        )

    @cached_property
    def approval(self) -> ApprovalGate:
        return ApprovalGate(self.notifier, self.config.notifications)

    # event entry points -------------------------------------------------------

    def on_object_created(self, payload: Any) -> HandlerResult:
        return self.watcher.handle(payload)

    def on_build_completed(self, payload: Union[BuildCompletedEvent, Mapping[str, Any]]) -> HandlerResult:
        if isinstance(payload, BuildCompletedEvent):
            event = payload
        else:
            try:
                event = BuildCompletedEvent.from_build_payload(payload)
            except MalformedEvent as exc:
                log_with_context(LOGGER, "error", "malformed_build_event", error=exc.message)
                return HandlerResult.failure("malformed_event", exc)
        return self.submitter.submit(event)

    def on_training_state_change(self, payload: Union[TrainingStateChangeEvent, Mapping[str, Any]]) -> HandlerResult:
        if isinstance(payload, TrainingStateChangeEvent):
            event = payload
        else:
            try:
                event = parse_training_state_change(payload)
            except MalformedEvent as exc:
                log_with_context(LOGGER, "error", "malformed_training_event", error=exc.message)
                return HandlerResult.failure("malformed_event", exc)
        return self._after_completion(self.completion.handle(event))

    def sync(self, job_name: str) -> HandlerResult:
        """Reconcile ``job_name`` with the training backend, deploying on success."""
        return self._after_completion(self.completion.sync(job_name))

    def deploy(self, job_name: str) -> HandlerResult:
        """Deploy ``job_name`` and, once the hosting request is out, ask for promotion."""
        result = self.deployer.deploy(job_name)
        if result.outcome is not Outcome.SUCCESS:
            return result
        record = self.store.require(job_name)
        promotion = self.approval.request_promotion(record, result.data["endpoint"])
        return dataclasses.replace(result, data={**result.data, "promotion": promotion.data})

    def _after_completion(self, result: HandlerResult) -> HandlerResult:
        if not self.config.deployment.on_training_complete or not result.job_name:
            return result
        # chained on record state so a replayed completion still deploys
        record = self.store.get(result.job_name)
        if record is None or record.status is not JobStatus.SUCCEEDED or record.deployment_handle:
            return result
        deployment = self.deploy(record.job_name)
        return dataclasses.replace(result, data={**result.data, "deployment": deployment.to_dict()})

    # dispatch -----------------------------------------------------------------

    def _handler_for(self, kind: str) -> Callable[[Any], HandlerResult]:
        handlers: Dict[str, Callable[[Any], HandlerResult]] = {
            "object_created": self.on_object_created,
            "build_completed": self.on_build_completed,
            "training_state_change": self.on_training_state_change,
            "deploy": lambda payload: self.deploy(_job_name(payload)),
            "sync": lambda payload: self.sync(_job_name(payload)),
        }
        try:
            return handlers[kind]
        except KeyError:
            raise ValueError(f"Unknown event kind '{kind}'. Expected one of: {', '.join(EVENT_KINDS)}") from None

    def dispatch(self, kind: str, payload: Any, *, correlation_id: Optional[str] = None) -> HandlerResult:
        """Handle one raw event, replaying it on transient backend failures.

        Raises the last :class:`TransientBackendError` once the retry policy is
        exhausted so the triggering service can redeliver the event later.
        """
        handler = self._handler_for(kind)
        with correlation_scope(correlation_id) as cid:
            log_with_context(LOGGER, "info", "event_received", kind=kind, correlation_id=cid)
            try:
                result = retry_call(handler, payload, policy=self.retry_policy, on_retry=self._log_retry)
            except RetryError as exc:
                log_with_context(
                    LOGGER, "error", "event_retries_exhausted", kind=kind, attempts=exc.attempts, error=str(exc.last_exception)
                )
                raise exc.last_exception from exc
            level = "error" if result.outcome is Outcome.FAILURE else "info"
            log_with_context(
                LOGGER,
                level,
                "event_handled",
                kind=kind,
                outcome=result.outcome.value,
                reason=result.reason,
                job_name=result.job_name,
                execution_id=result.execution_id,
            )
            return result

    @staticmethod
    def _log_retry(attempt: int, exc: BaseException, delay: float) -> None:
        log_with_context(LOGGER, "warning", "transient_backend_error", attempt=attempt, delay=round(delay, 2), error=str(exc))


def _job_name(payload: Any) -> str:
    if isinstance(payload, str):
        return payload
    if isinstance(payload, Mapping) and payload.get("job_name"):
        return str(payload["job_name"])
    raise MalformedEvent("Expected a job name or a mapping with 'job_name'")
