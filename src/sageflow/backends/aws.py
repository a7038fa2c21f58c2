"""boto3 adapters for CodePipeline, SageMaker, SNS and S3 pipeline artifacts.

Every adapter translates ``botocore`` failures into the orchestration error
taxonomy at the call boundary so handlers never see a raw ``ClientError``.
"""

from __future__ import annotations

import io
import json
import logging
import zipfile
from typing import Any, Dict, List, Mapping, Optional, Type

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from ..core.exceptions import (
    ConfigurationError,
    OrchestrationError,
    SubmissionRejected,
    TransientBackendError,
)
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
    "CodePipelineRunner",
    "SageMakerBackend",
    "SnsNotifier",
    "S3ArtifactStore",
    "translate_client_error",
    "create_client",
]

TRANSIENT_CODES = frozenset(
    {
        "Throttling",
        "ThrottlingException",
        "ThrottledException",
        "TooManyRequestsException",
        "RequestLimitExceeded",
        "ProvisionedThroughputExceededException",
        "ServiceUnavailable",
        "ServiceUnavailableException",
        "InternalServerError",
        "InternalFailure",
        "InternalError",
        "RequestTimeout",
        "RequestTimeoutException",
    }
)

CONFIGURATION_CODES = frozenset(
    {
        "PipelineNotFoundException",
        "PipelineNameInUseException",
        "ResourceNotFoundException",
        "NotFound",
        "NoSuchBucket",
        "AccessDenied",
        "AccessDeniedException",
        "AuthorizationError",
        "UnrecognizedClientException",
        "InvalidClientTokenId",
    }
)

REJECTION_CODES = frozenset(
    {
        "ValidationException",
        "ResourceLimitExceeded",
        "ResourceInUse",
        "ConflictException",
        "InvalidParameter",
        "InvalidParameterValue",
        "InvalidJobException",
        "InvalidJobStateException",
    }
)


def error_code(exc: ClientError) -> str:
    return str(exc.response.get("Error", {}).get("Code", ""))


def translate_client_error(
    exc: Exception,
    *,
    operation: str,
    default: Type[OrchestrationError] = OrchestrationError,
    **metadata: Any,
) -> OrchestrationError:
    """Map a botocore failure onto the orchestration error taxonomy."""
    if isinstance(exc, BotoCoreError):
        return TransientBackendError(f"{operation}: {exc}", metadata={"operation": operation, **metadata})
    if not isinstance(exc, ClientError):
        return default(f"{operation}: {exc}", metadata={"operation": operation, **metadata})

    code = error_code(exc)
    message = exc.response.get("Error", {}).get("Message", str(exc))
    details = {"operation": operation, "error_code": code, **metadata}
    retry_after = exc.response.get("ResponseMetadata", {}).get("HTTPHeaders", {}).get("retry-after")
    if retry_after is not None:
        details["retry_after"] = retry_after

    if code in TRANSIENT_CODES:
        return TransientBackendError(f"{operation} throttled or unavailable: {message}", metadata=details)
    if code in CONFIGURATION_CODES:
        return ConfigurationError(f"{operation} failed: {message}", metadata=details)
    if code in REJECTION_CODES:
        return SubmissionRejected(f"{operation} rejected: {message}", metadata=details)
    return default(f"{operation} failed ({code}): {message}", metadata=details)


def create_client(service: str, *, region: Optional[str] = None, endpoint_url: Optional[str] = None, **kwargs: Any):
    """Create a boto3 client, passing only the options that are set."""
    options: Dict[str, Any] = dict(kwargs)
    if region:
        options["region_name"] = region
    if endpoint_url:
        options["endpoint_url"] = endpoint_url
    return boto3.client(service, **options)


class CodePipelineRunner(PipelineRunner):
    """Pipeline runner backed by AWS CodePipeline."""

    def __init__(self, client: Any) -> None:
        self.client = client

    def list_recent_executions(self, pipeline_id: str, limit: int = 10) -> List[PipelineExecution]:
        try:
            response = self.client.list_pipeline_executions(pipelineName=pipeline_id, maxResults=limit)
        except (ClientError, BotoCoreError) as exc:
            raise translate_client_error(exc, operation="list_pipeline_executions", pipeline=pipeline_id) from exc

        executions: List[PipelineExecution] = []
        for summary in response.get("pipelineExecutionSummaries", []):
            if not summary:
                continue
            executions.append(
                PipelineExecution(
                    execution_id=summary["pipelineExecutionId"],
                    status=ExecutionStatus.normalize(summary["status"]),
                    started_at=summary.get("startTime"),
                )
            )
        # newest first
        if all(execution.started_at is not None for execution in executions):
            executions.sort(key=lambda execution: execution.started_at, reverse=True)
        return executions

    def start_execution(self, pipeline_id: str) -> str:
        try:
            response = self.client.start_pipeline_execution(name=pipeline_id)
        except (ClientError, BotoCoreError) as exc:
            raise translate_client_error(exc, operation="start_pipeline_execution", pipeline=pipeline_id) from exc
        return response["pipelineExecutionId"]

    def execution_id_for_action(self, action_job_id: str) -> Optional[str]:
        try:
            response = self.client.get_job_details(jobId=action_job_id)
        except (ClientError, BotoCoreError) as exc:
            raise translate_client_error(exc, operation="get_job_details", action_job_id=action_job_id) from exc
        context = response.get("jobDetails", {}).get("data", {}).get("pipelineContext", {})
        return context.get("pipelineExecutionId")

    def report_action_success(
        self,
        action_job_id: str,
        *,
        summary: str,
        continuation_token: Optional[str] = None,
    ) -> None:
        kwargs: Dict[str, Any] = {
            "jobId": action_job_id,
            "executionDetails": {"summary": summary[:2048], "percentComplete": 0 if continuation_token else 100},
        }
        if continuation_token:
            kwargs["continuationToken"] = continuation_token
        try:
            self.client.put_job_success_result(**kwargs)
        except (ClientError, BotoCoreError) as exc:
            raise translate_client_error(exc, operation="put_job_success_result", action_job_id=action_job_id) from exc

    def report_action_failure(self, action_job_id: str, *, message: str) -> None:
        try:
            self.client.put_job_failure_result(
                jobId=action_job_id,
                failureDetails={"type": "JobFailed", "message": message[:5000]},
            )
        except (ClientError, BotoCoreError) as exc:
            raise translate_client_error(exc, operation="put_job_failure_result", action_job_id=action_job_id) from exc


class SageMakerBackend(TrainingBackend):
    """Training and hosting backed by Amazon SageMaker."""

    def __init__(self, client: Any) -> None:
        self.client = client

    def submit_training_job(self, request: TrainingJobRequest) -> str:
        channels = {
            "training": request.input_data.training_uri,
            "validation": request.input_data.validation_uri,
            "testing": request.input_data.testing_uri,
        }
        try:
            response = self.client.create_training_job(
                TrainingJobName=request.job_name,
                AlgorithmSpecification={"TrainingImage": request.image_uri, "TrainingInputMode": "File"},
                RoleArn=request.role_arn,
                InputDataConfig=[
                    {
                        "ChannelName": name,
                        "DataSource": {
                            "S3DataSource": {
                                "S3DataType": "S3Prefix",
                                "S3Uri": uri,
                                "S3DataDistributionType": "FullyReplicated",
                            }
                        },
                    }
                    for name, uri in channels.items()
                ],
                OutputDataConfig={"S3OutputPath": request.output_uri},
                ResourceConfig={
                    "InstanceType": request.instance_type,
                    "InstanceCount": request.instance_count,
                    "VolumeSizeInGB": request.volume_size_gb,
                },
                StoppingCondition={"MaxRuntimeInSeconds": request.max_runtime_seconds},
            )
        except (ClientError, BotoCoreError) as exc:
            raise translate_client_error(
                exc, operation="create_training_job", default=SubmissionRejected, job_name=request.job_name
            ) from exc
        return response["TrainingJobArn"]

    def describe_training_job(self, job_name: str) -> TrainingJobDescription:
        try:
            response = self.client.describe_training_job(TrainingJobName=job_name)
        except (ClientError, BotoCoreError) as exc:
            raise translate_client_error(exc, operation="describe_training_job", job_name=job_name) from exc
        return TrainingJobDescription(
            job_name=job_name,
            status=response["TrainingJobStatus"],
            model_artifact_uri=response.get("ModelArtifacts", {}).get("S3ModelArtifacts"),
            failure_reason=response.get("FailureReason"),
        )

    def find_training_job(self, job_name: str) -> Optional[TrainingJobDescription]:
        try:
            return self.describe_training_job(job_name)
        except SubmissionRejected as exc:
            # SageMaker answers ValidationException for unknown job names
            if exc.metadata.get("error_code") == "ValidationException":
                return None
            raise

    def deploy_model(self, request: DeploymentRequest) -> str:
        """Create the model, its endpoint config and the endpoint.

        Each step tolerates a resource of the same name left by an earlier
        attempt so a throttled deployment can be replayed.
        """
        endpoint = request.target_endpoint
        try:
            self._create_once(
                self.client.create_model,
                ModelName=request.job_name,
                PrimaryContainer={"Image": request.image_uri, "ModelDataUrl": request.model_artifact_uri},
                ExecutionRoleArn=request.role_arn,
            )
            self._create_once(
                self.client.create_endpoint_config,
                EndpointConfigName=request.job_name,
                ProductionVariants=[
                    {
                        "VariantName": "AllTraffic",
                        "ModelName": request.job_name,
                        "InitialInstanceCount": request.initial_instance_count,
                        "InstanceType": request.instance_type,
                        "InitialVariantWeight": 1.0,
                    }
                ],
            )
            current = self._describe_endpoint(endpoint)
            if current is None:
                self.client.create_endpoint(EndpointName=endpoint, EndpointConfigName=request.job_name)
            elif current.get("EndpointConfigName") == request.job_name:
                LOGGER.info("endpoint_already_current", extra={"extra_context": {"endpoint": endpoint, "job_name": request.job_name}})
            else:
                LOGGER.info("endpoint_update", extra={"extra_context": {"endpoint": endpoint, "job_name": request.job_name}})
                self.client.update_endpoint(EndpointName=endpoint, EndpointConfigName=request.job_name)
        except (ClientError, BotoCoreError) as exc:
            raise translate_client_error(
                exc, operation="deploy_model", default=SubmissionRejected, job_name=request.job_name, endpoint=endpoint
            ) from exc
        return endpoint

    @staticmethod
    def _create_once(create: Any, **kwargs: Any) -> None:
        try:
            create(**kwargs)
        except ClientError as exc:
            # SageMaker reports a duplicate name as a ValidationException
            message = str(exc.response.get("Error", {}).get("Message", ""))
            if error_code(exc) == "ValidationException" and "already exist" in message:
                LOGGER.info("sagemaker_resource_exists", extra={"extra_context": {"error": message}})
                return
            raise

    def _describe_endpoint(self, endpoint: str) -> Optional[Dict[str, Any]]:
        try:
            return self.client.describe_endpoint(EndpointName=endpoint)
        except ClientError as exc:
            # SageMaker reports a missing endpoint as a ValidationException
            if error_code(exc) == "ValidationException":
                return None
            raise


class SnsNotifier(Notifier):
    """Publish approval prompts to an SNS topic."""

    def __init__(self, client: Any, topic_arn: str) -> None:
        self.client = client
        self.topic_arn = topic_arn

    def publish(self, subject: str, message: str) -> Optional[str]:
        try:
            response = self.client.publish(TopicArn=self.topic_arn, Subject=subject[:100], Message=message)
        except (ClientError, BotoCoreError) as exc:
            raise translate_client_error(exc, operation="sns_publish", topic_arn=self.topic_arn) from exc
        return response.get("MessageId")


class S3ArtifactStore(ArtifactStore):
    """Read and write the zipped artifacts CodePipeline hands to Lambda actions."""

    def __init__(self, *, region: Optional[str] = None, endpoint_url: Optional[str] = None) -> None:
        self.region = region
        self.endpoint_url = endpoint_url

    def _client(self, location: ArtifactLocation) -> Any:
        credentials = location.credentials or {}
        kwargs: Dict[str, Any] = {}
        if credentials:
            kwargs = {
                "aws_access_key_id": credentials.get("accessKeyId"),
                "aws_secret_access_key": credentials.get("secretAccessKey"),
                "aws_session_token": credentials.get("sessionToken"),
            }
        return create_client("s3", region=self.region, endpoint_url=self.endpoint_url, **kwargs)

    def read_json(self, location: ArtifactLocation, member: str) -> Dict[str, Any]:
        try:
            response = self._client(location).get_object(Bucket=location.bucket, Key=location.key)
            body = response["Body"].read()
        except (ClientError, BotoCoreError) as exc:
            raise translate_client_error(exc, operation="s3_get_artifact", artifact=location.name) from exc
        return read_zip_member(body, member)

    def write_json(self, location: ArtifactLocation, member: str, payload: Mapping[str, Any]) -> None:
        body = build_zip(member, payload)
        try:
            self._client(location).put_object(Bucket=location.bucket, Key=location.key, Body=body)
        except (ClientError, BotoCoreError) as exc:
            raise translate_client_error(exc, operation="s3_put_artifact", artifact=location.name) from exc


def read_zip_member(body: bytes, member: str) -> Dict[str, Any]:
    try:
        with zipfile.ZipFile(io.BytesIO(body)) as archive:
            raw = archive.read(member)
    except (zipfile.BadZipFile, KeyError) as exc:
        raise ConfigurationError(f"Artifact does not contain '{member}': {exc}", metadata={"member": member}) from exc
    try:
        return json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise ConfigurationError(f"Artifact member '{member}' is not valid JSON", metadata={"member": member}) from exc


def build_zip(member: str, payload: Mapping[str, Any]) -> bytes:
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w", zipfile.ZIP_DEFLATED) as archive:
        archive.writestr(member, json.dumps(dict(payload)))
    return buffer.getvalue()
