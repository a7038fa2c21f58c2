"""Pydantic schemas defining configuration contracts."""

from __future__ import annotations

from typing import Literal, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

CHANNELS = ("training", "validation", "testing")


def _require_s3_uri(value: str) -> str:
    if not value.startswith("s3://") or len(value) <= len("s3://"):
        raise ValueError(f"Expected an s3:// URI, got '{value}'")
    return value


class PipelineSettings(BaseModel):
    name: str = ""
    input_bucket: Optional[str] = None
    input_prefix: str = "input/"
    history_depth: int = Field(default=10, ge=1, le=100)


class DataPrefixes(BaseModel):
    training: str
    validation: str
    testing: str

    @field_validator("training", "validation", "testing")
    @classmethod
    def _check_uri(cls, value: str) -> str:
        return _require_s3_uri(value)

    @classmethod
    def from_base(cls, base_uri: str) -> "DataPrefixes":
        base = base_uri.rstrip("/")
        return cls(**{channel: f"{base}/{channel}/" for channel in CHANNELS})


class TrainingSettings(BaseModel):
    role_arn: str = ""
    image_uri: str = ""
    instance_type: str = "ml.m4.4xlarge"
    instance_count: int = Field(default=1, gt=0)
    volume_size_gb: int = Field(default=30, gt=0)
    max_runtime_seconds: int = Field(default=86400, gt=0)
    input_uri: Optional[str] = None
    data_prefixes: Optional[DataPrefixes] = None
    output_uri: str = ""
    job_name_prefix: str = "job"

    @model_validator(mode="after")
    def _resolve_prefixes(self) -> "TrainingSettings":
        if self.data_prefixes is None and self.input_uri:
            self.data_prefixes = DataPrefixes.from_base(_require_s3_uri(self.input_uri))
        if self.output_uri:
            _require_s3_uri(self.output_uri)
        return self


class DeploymentSettings(BaseModel):
    inference_image_uri: str = ""
    instance_type: str = "ml.m4.xlarge"
    initial_instance_count: int = Field(default=1, gt=0)
    endpoint_name: Optional[str] = None
    on_training_complete: bool = True


class MetadataSettings(BaseModel):
    backend: Literal["memory", "sqlite", "dynamodb"] = "memory"
    table_name: str = "sageflow-jobs"
    key_attribute: str = "training_job_name"
    db_path: str = "var/sageflow.db"


class NotificationSettings(BaseModel):
    backend: Literal["log", "sns"] = "log"
    topic_arn: Optional[str] = None
    subject: str = "Model ready for production promotion"
    prompt: str = "Do you want to push your changes to production?"

    @model_validator(mode="after")
    def _check_topic(self) -> "NotificationSettings":
        if self.backend == "sns" and not self.topic_arn:
            raise ValueError("notifications.topic_arn is required for the sns backend")
        return self


class GuardSettings(BaseModel):
    # None keeps the unbounded restart-on-failure behaviour
    max_consecutive_failures: Optional[int] = Field(default=None, ge=1)
    lease_seconds: Optional[int] = Field(default=None, gt=0)


class AwsSettings(BaseModel):
    region: Optional[str] = None
    endpoint_url: Optional[str] = None


class RetrySettings(BaseModel):
    max_attempts: int = Field(default=3, ge=1)
    base_delay: float = Field(default=1.0, gt=0)
    max_delay: float = 30.0


class LoggingSettings(BaseModel):
    level: str = "INFO"
    json_logs: bool = True
    log_dir: Optional[str] = None


class OrchestratorConfig(BaseModel):
    backend: Literal["aws", "local"] = "aws"
    pipeline: PipelineSettings = Field(default_factory=PipelineSettings)
    training: TrainingSettings = Field(default_factory=TrainingSettings)
    deployment: DeploymentSettings = Field(default_factory=DeploymentSettings)
    metadata: MetadataSettings = Field(default_factory=MetadataSettings)
    notifications: NotificationSettings = Field(default_factory=NotificationSettings)
    guard: GuardSettings = Field(default_factory=GuardSettings)
    aws: AwsSettings = Field(default_factory=AwsSettings)
    retry: RetrySettings = Field(default_factory=RetrySettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    model_config = {
        "extra": "forbid",
        "validate_assignment": True,
    }
