"""Typed events consumed by the handlers and parsers for the raw AWS payloads.

Parsers accept the shapes AWS actually delivers (S3 notifications, EventBridge
envelopes, CodePipeline Lambda action jobs) as well as the flat documents used
by the CLI and tests. Anything unparseable raises :class:`MalformedEvent`.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, List, Mapping, Optional
from urllib.parse import unquote_plus

from pydantic import BaseModel, Field, ValidationError

from .backends.base import ArtifactLocation
from .core.exceptions import MalformedEvent

__all__ = [
    "ObjectCreatedEvent",
    "BuildCompletedEvent",
    "TrainingStateChangeEvent",
    "PipelineActionJob",
    "parse_storage_notification",
    "parse_training_state_change",
    "parse_pipeline_action_job",
]

BUILD_OUTPUT_MEMBER = "outfile.txt"
TRIGGER_MEMBER = "trigger.json"


class ObjectCreatedEvent(BaseModel):
    bucket: str = Field(min_length=1)
    object_key: str = Field(min_length=1)
    event_time: Optional[datetime] = None


class BuildCompletedEvent(BaseModel):
    """Build stage output: the image that was pushed and the commit it was built from."""

    source_commit: str = Field(min_length=1)
    image_reference: Optional[str] = None
    pipeline_execution_id: Optional[str] = None

    @classmethod
    def from_build_payload(
        cls, payload: Mapping[str, Any], *, pipeline_execution_id: Optional[str] = None
    ) -> "BuildCompletedEvent":
        """Parse the ``{"COMMIT_ID": ..., "IMG": ...}`` document the build writes.

        ``IMG`` is only taken as the image reference when it is a registry path;
        a bare repository name leaves the configured image in charge.
        """
        commit = payload.get("COMMIT_ID") or payload.get("source_commit")
        image = payload.get("IMG") or payload.get("image_reference")
        if image and "/" not in str(image):
            image = None
        try:
            return cls(
                source_commit=str(commit or ""),
                image_reference=str(image) if image else None,
                pipeline_execution_id=pipeline_execution_id or payload.get("pipeline_execution_id"),
            )
        except ValidationError as exc:
            raise MalformedEvent(f"Build payload is missing a commit id: {exc}", metadata={"payload": dict(payload)}) from exc


class TrainingStateChangeEvent(BaseModel):
    """A training backend status change. ``status`` keeps the backend vocabulary."""

    job_name: str = Field(min_length=1)
    status: str = Field(min_length=1)
    model_artifact_uri: Optional[str] = None
    failure_reason: Optional[str] = None


class PipelineActionJob(BaseModel):
    """A CodePipeline Lambda action invocation."""

    job_id: str = Field(min_length=1)
    input_artifacts: List[ArtifactLocation] = Field(default_factory=list)
    output_artifacts: List[ArtifactLocation] = Field(default_factory=list)
    continuation_token: Optional[str] = None
    user_parameters: Optional[str] = None

    def input_artifact(self, name: Optional[str] = None) -> ArtifactLocation:
        return _pick_artifact(self.input_artifacts, name, "input")

    def output_artifact(self, name: Optional[str] = None) -> ArtifactLocation:
        return _pick_artifact(self.output_artifacts, name, "output")


def _pick_artifact(artifacts: List[ArtifactLocation], name: Optional[str], kind: str) -> ArtifactLocation:
    if not artifacts:
        raise MalformedEvent(f"Action job has no {kind} artifacts")
    if name is None:
        return artifacts[0]
    for artifact in artifacts:
        if artifact.name == name:
            return artifact
    raise MalformedEvent(f"Action job has no {kind} artifact named '{name}'", metadata={"artifact": name})


def _validate(model: type[BaseModel], payload: Mapping[str, Any], label: str) -> Any:
    try:
        return model.model_validate(payload)
    except ValidationError as exc:
        raise MalformedEvent(f"Malformed {label} event: {exc.error_count()} validation error(s)", metadata={"errors": str(exc)}) from exc


def parse_storage_notification(payload: Any) -> List[ObjectCreatedEvent]:
    """Extract object-created events from an S3 notification, an EventBridge
    ``Object Created`` envelope, or a flat ``{bucket, object_key}`` mapping."""
    if not isinstance(payload, Mapping):
        raise MalformedEvent("Storage event payload must be a mapping")

    if "Records" in payload:
        records = payload["Records"]
        if not isinstance(records, list):
            raise MalformedEvent("'Records' must be a list")
        events: List[ObjectCreatedEvent] = []
        for record in records:
            try:
                event_name = str(record.get("eventName", "ObjectCreated"))
                if not event_name.startswith("ObjectCreated"):
                    continue
                s3 = record["s3"]
                flat = {
                    "bucket": s3["bucket"]["name"],
                    "object_key": unquote_plus(s3["object"]["key"]),
                    "event_time": record.get("eventTime"),
                }
            except (AttributeError, KeyError, TypeError) as exc:
                raise MalformedEvent(f"Malformed S3 notification record: missing {exc}") from exc
            events.append(_validate(ObjectCreatedEvent, flat, "storage"))
        return events

    if "detail" in payload and payload.get("source") == "aws.s3":
        try:
            detail = payload["detail"]
            flat = {
                "bucket": detail["bucket"]["name"],
                "object_key": detail["object"]["key"],
                "event_time": payload.get("time"),
            }
        except (KeyError, TypeError) as exc:
            raise MalformedEvent(f"Malformed S3 EventBridge event: missing {exc}") from exc
        return [_validate(ObjectCreatedEvent, flat, "storage")]

    return [_validate(ObjectCreatedEvent, payload, "storage")]


def parse_training_state_change(payload: Any) -> TrainingStateChangeEvent:
    if not isinstance(payload, Mapping):
        raise MalformedEvent("Training event payload must be a mapping")
    body = payload.get("detail", payload)
    if not isinstance(body, Mapping):
        raise MalformedEvent("Training event detail must be a mapping")
    if "TrainingJobName" in body:
        artifacts = body.get("ModelArtifacts") or {}
        flat = {
            "job_name": body.get("TrainingJobName"),
            "status": body.get("TrainingJobStatus"),
            "model_artifact_uri": artifacts.get("S3ModelArtifacts") if isinstance(artifacts, Mapping) else None,
            "failure_reason": body.get("FailureReason"),
        }
        return _validate(TrainingStateChangeEvent, flat, "training state")
    return _validate(TrainingStateChangeEvent, body, "training state")


def _artifact(entry: Mapping[str, Any], credentials: Mapping[str, str]) -> ArtifactLocation:
    location = entry["location"]["s3Location"]
    return ArtifactLocation(
        name=entry.get("name", ""),
        bucket=location["bucketName"],
        key=location["objectKey"],
        credentials=dict(credentials),
    )


def parse_pipeline_action_job(payload: Any) -> PipelineActionJob:
    if not isinstance(payload, Mapping) or "CodePipeline.job" not in payload:
        raise MalformedEvent("Payload is not a CodePipeline action job")
    job = payload["CodePipeline.job"]
    try:
        data = job.get("data", {})
        credentials = data.get("artifactCredentials", {}) or {}
        configuration = data.get("actionConfiguration", {}).get("configuration", {})
        flat = {
            "job_id": job["id"],
            "input_artifacts": [_artifact(entry, credentials) for entry in data.get("inputArtifacts", [])],
            "output_artifacts": [_artifact(entry, credentials) for entry in data.get("outputArtifacts", [])],
            "continuation_token": data.get("continuationToken"),
            "user_parameters": configuration.get("UserParameters"),
        }
    except (AttributeError, KeyError, TypeError) as exc:
        raise MalformedEvent(f"Malformed CodePipeline job: missing {exc}") from exc
    return _validate(PipelineActionJob, flat, "pipeline action")
