"""
End-to-end flows through the orchestrator over the in-process backends.
"""

from unittest.mock import MagicMock

import pytest

from sageflow.backends.base import ExecutionStatus
from sageflow.core.exceptions import ConfigurationError, TransientBackendError
from sageflow.events import BuildCompletedEvent
from sageflow.handlers import Outcome
from sageflow.metadata import InMemoryMetadataStore, JobStatus
from sageflow.orchestration import Orchestrator

PIPELINE = "sageflow-pipeline"
IMAGE = "123456789012.dkr.ecr.us-east-1.amazonaws.com/train:7f3e2a1"
ARTIFACT = "s3://model-bucket/output/job-7f3e2a1/output/model.tar.gz"


def _upload(key="input/data/training/part-0001.csv"):
    return {
        "Records": [
            {
                "eventName": "ObjectCreated:Put",
                "eventTime": "2024-05-01T10:00:00.000Z",
                "s3": {"bucket": {"name": "data-bucket"}, "object": {"key": key}},
            }
        ]
    }


def _sagemaker_event(status, artifact=None, reason=None):
    detail = {"TrainingJobName": "job-7f3e2a1", "TrainingJobStatus": status}
    if artifact:
        detail["ModelArtifacts"] = {"S3ModelArtifacts": artifact}
    if reason:
        detail["FailureReason"] = reason
    return {"source": "aws.sagemaker", "detail-type": "SageMaker Training Job State Change", "detail": detail}


@pytest.mark.scenario
def test_upload_to_promotion(orchestrator, runner, training_backend, store, notifier):
    started = orchestrator.dispatch("object_created", _upload())
    assert started.outcome is Outcome.SUCCESS
    assert started.execution_id == "exec-1"

    again = orchestrator.dispatch("object_created", _upload("input/data/validation/part-0001.csv"))
    assert again.reason == "execution_in_progress"
    assert runner.start_requests == [PIPELINE]

    submitted = orchestrator.dispatch(
        "build_completed", BuildCompletedEvent(source_commit="7f3e2a1", image_reference=IMAGE, pipeline_execution_id="exec-1")
    )
    assert submitted.job_name == "job-7f3e2a1"
    assert store.get("job-7f3e2a1").status is JobStatus.SUBMITTED

    orchestrator.dispatch("training_state_change", _sagemaker_event("InProgress"))
    assert store.get("job-7f3e2a1").status is JobStatus.IN_PROGRESS

    finished = orchestrator.dispatch("training_state_change", _sagemaker_event("Completed", ARTIFACT))
    assert finished.reason == "training_succeeded"
    assert finished.data["deployment"]["reason"] == "deployment_requested"

    record = store.get("job-7f3e2a1")
    assert record.status is JobStatus.SUCCEEDED
    assert record.model_artifact_uri == ARTIFACT
    assert record.deployment_handle == "job-7f3e2a1"

    [request] = training_backend.deployment_requests
    assert request.model_artifact_uri == ARTIFACT
    [(subject, message)] = notifier.messages
    assert "job-7f3e2a1" in subject
    assert "job-7f3e2a1" in message
    assert "Do you want to push your changes to production?" in message

    # a duplicate completion delivery neither redeploys nor renotifies
    orchestrator.dispatch("training_state_change", _sagemaker_event("Completed", ARTIFACT))
    assert len(training_backend.deployment_requests) == 1
    assert len(notifier.messages) == 1

    runner.set_status(PIPELINE, "exec-1", ExecutionStatus.SUCCEEDED)
    assert orchestrator.dispatch("object_created", _upload()).execution_id == "exec-2"


@pytest.mark.scenario
def test_failed_training_is_not_deployed(orchestrator, training_backend, store, notifier):
    orchestrator.on_build_completed({"COMMIT_ID": "7f3e2a1", "IMG": IMAGE})

    result = orchestrator.dispatch("training_state_change", _sagemaker_event("Failed", reason="ClientError: no data"))

    assert result.reason == "training_failed"
    assert store.get("job-7f3e2a1").failure_reason == "ClientError: no data"
    assert orchestrator.deploy("job-7f3e2a1").reason == "deployment_skipped"
    assert training_backend.deployment_requests == []
    assert notifier.messages == []


def test_manual_deploy_when_chaining_is_off(config_factory, runner, training_backend, store, notifier, artifacts):
    config = config_factory(deployment={"on_training_complete": False})
    orchestrator = Orchestrator(
        config, runner=runner, backend=training_backend, store=store, notifier=notifier, artifacts=artifacts
    )
    orchestrator.on_build_completed({"COMMIT_ID": "7f3e2a1", "IMG": IMAGE})
    orchestrator.on_training_state_change(_sagemaker_event("Completed", ARTIFACT))
    assert training_backend.deployment_requests == []

    result = orchestrator.dispatch("deploy", {"job_name": "job-7f3e2a1"})
    assert result.outcome is Outcome.SUCCESS
    assert result.data["promotion"]["message_id"] == "local-1"


def test_sync_chains_deployment(orchestrator, training_backend, store):
    orchestrator.on_build_completed({"COMMIT_ID": "7f3e2a1", "IMG": IMAGE})
    training_backend.finish("job-7f3e2a1", artifact_uri=ARTIFACT)

    result = orchestrator.dispatch("sync", "job-7f3e2a1")

    assert result.reason == "training_succeeded"
    assert store.get("job-7f3e2a1").deployment_handle == "job-7f3e2a1"


def test_malformed_build_payload_is_a_failure_result(orchestrator):
    result = orchestrator.dispatch("build_completed", {"IMG": IMAGE})
    assert result.outcome is Outcome.FAILURE
    assert result.reason == "malformed_event"


def test_dispatch_retries_transient_errors(config, store, notifier, artifacts):
    runner = MagicMock()
    runner.list_recent_executions.side_effect = [TransientBackendError("throttled"), []]
    runner.start_execution.return_value = "exec-42"
    orchestrator = Orchestrator(
        config, runner=runner, backend=MagicMock(), store=store, notifier=notifier, artifacts=artifacts
    )

    result = orchestrator.dispatch("object_created", _upload())

    assert result.execution_id == "exec-42"
    assert runner.list_recent_executions.call_count == 2


def test_dispatch_reraises_after_retries(config, store, notifier, artifacts):
    runner = MagicMock()
    runner.list_recent_executions.side_effect = TransientBackendError("throttled")
    orchestrator = Orchestrator(
        config, runner=runner, backend=MagicMock(), store=store, notifier=notifier, artifacts=artifacts
    )

    with pytest.raises(TransientBackendError):
        orchestrator.dispatch("object_created", _upload())
    assert runner.list_recent_executions.call_count == config.retry.max_attempts


def test_configuration_errors_are_not_retried(config, store, notifier, artifacts):
    runner = MagicMock()
    runner.list_recent_executions.side_effect = ConfigurationError("Pipeline does not exist")
    orchestrator = Orchestrator(
        config, runner=runner, backend=MagicMock(), store=store, notifier=notifier, artifacts=artifacts
    )

    with pytest.raises(ConfigurationError):
        orchestrator.dispatch("object_created", _upload())
    assert runner.list_recent_executions.call_count == 1


def test_unknown_event_kind(orchestrator):
    with pytest.raises(ValueError):
        orchestrator.dispatch("bogus", {})


def test_local_collaborators_are_built_from_config(config_factory, tmp_path):
    config = config_factory(metadata={"backend": "sqlite", "db_path": str(tmp_path / "jobs.db")})
    orchestrator = Orchestrator(config)

    result = orchestrator.dispatch("object_created", _upload())
    assert result.execution_id == "exec-1"
    assert (tmp_path / "jobs.db").exists()


def test_injected_empty_store_is_used(config, runner, training_backend, notifier, artifacts):
    store = InMemoryMetadataStore()
    assert len(store) == 0
    orchestrator = Orchestrator(
        config, runner=runner, backend=training_backend, store=store, notifier=notifier, artifacts=artifacts
    )

    orchestrator.on_build_completed({"COMMIT_ID": "7f3e2a1", "IMG": IMAGE})

    assert orchestrator.store is store
    assert store.get("job-7f3e2a1").status is JobStatus.SUBMITTED


def test_replayed_completion_still_deploys(orchestrator, training_backend, store, notifier, monkeypatch):
    orchestrator.on_build_completed({"COMMIT_ID": "7f3e2a1", "IMG": IMAGE})
    deploy_model = training_backend.deploy_model
    calls = []

    def throttled_once(request):
        calls.append(request.job_name)
        if len(calls) == 1:
            raise TransientBackendError("throttled")
        return deploy_model(request)

    monkeypatch.setattr(training_backend, "deploy_model", throttled_once)

    result = orchestrator.dispatch("training_state_change", _sagemaker_event("Completed", ARTIFACT))

    assert calls == ["job-7f3e2a1", "job-7f3e2a1"]
    assert result.data["deployment"]["reason"] == "deployment_requested"
    assert store.get("job-7f3e2a1").deployment_handle == "job-7f3e2a1"
    assert len(training_backend.deployment_requests) == 1
    assert len(notifier.messages) == 1
