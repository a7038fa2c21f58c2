"""
Training job submitter: naming, idempotence and rejection handling.
"""

from unittest.mock import MagicMock

import pytest

from sageflow.core.exceptions import ConfigurationError, MalformedEvent, SubmissionRejected, TransientBackendError
from sageflow.events import BuildCompletedEvent
from sageflow.handlers import Outcome, TrainingJobSubmitter, derive_job_name
from sageflow.metadata import JobRecord, JobStatus

COMMIT = "a1b2c3d"
IMAGE = "123456789012.dkr.ecr.us-east-1.amazonaws.com/train:a1b2c3d"


@pytest.fixture
def submitter(store, training_backend, config):
    return TrainingJobSubmitter(store, training_backend, config.training)


def _event(execution_id="exec-1", commit=COMMIT, image=IMAGE):
    return BuildCompletedEvent(source_commit=commit, image_reference=image, pipeline_execution_id=execution_id)


def test_derive_job_name_rules():
    assert derive_job_name("a1b2c3d") == "job-a1b2c3d"
    assert derive_job_name("a1b2c3d", 3) == "job-a1b2c3d-3"
    assert derive_job_name("feature/x_y") == "job-feature-x-y"

    long_name = derive_job_name("f" * 80, 12)
    assert len(long_name) == 63
    assert long_name.endswith("-12")

    with pytest.raises(MalformedEvent):
        derive_job_name("___")


def test_submit_creates_record_and_request(submitter, store, training_backend):
    result = submitter.submit(_event())

    assert result.outcome is Outcome.SUCCESS
    assert result.job_name == "job-a1b2c3d"
    record = store.get("job-a1b2c3d")
    assert record.status is JobStatus.SUBMITTED
    assert record.source_commit == COMMIT
    assert record.image_reference == IMAGE
    assert record.pipeline_execution_id == "exec-1"

    [request] = training_backend.training_requests
    assert request.job_name == "job-a1b2c3d"
    assert request.image_uri == IMAGE
    assert request.input_data.training_uri == "s3://data-bucket/input/data/training/"
    assert request.input_data.validation_uri == "s3://data-bucket/input/data/validation/"
    assert request.input_data.testing_uri == "s3://data-bucket/input/data/testing/"
    assert request.output_uri == "s3://model-bucket/output/"
    assert request.instance_type == "ml.m4.4xlarge"
    assert request.instance_count == 1
    assert request.volume_size_gb == 30
    assert request.max_runtime_seconds == 86400


def test_duplicate_delivery_submits_once(submitter, store, training_backend):
    first = submitter.submit(_event())
    second = submitter.submit(_event())

    assert first.outcome is Outcome.SUCCESS
    assert second.outcome is Outcome.NOOP
    assert second.reason == "duplicate_delivery"
    assert second.job_name == first.job_name
    assert len(training_backend.training_requests) == 1
    assert len(store) == 1


def test_duplicate_without_execution_id_matches_live_record(submitter, training_backend):
    submitter.submit(_event(execution_id=None))
    result = submitter.submit(_event(execution_id=None))

    assert result.reason == "duplicate_delivery"
    assert len(training_backend.training_requests) == 1


def test_new_execution_for_same_commit_gets_suffixed_name(submitter, store, training_backend):
    submitter.submit(_event("exec-1"))
    training_backend.finish("job-a1b2c3d", artifact_uri="s3://model-bucket/output/job-a1b2c3d/model.tar.gz")
    store.update("job-a1b2c3d", status=JobStatus.SUCCEEDED, model_artifact_uri="s3://model-bucket/output/job-a1b2c3d/model.tar.gz")

    second = submitter.submit(_event("exec-2"))
    third = submitter.submit(_event("exec-3"))

    assert second.job_name == "job-a1b2c3d-2"
    assert third.job_name == "job-a1b2c3d-3"
    assert store.get("job-a1b2c3d").status is JobStatus.SUCCEEDED
    assert [r.job_name for r in training_backend.training_requests] == [
        "job-a1b2c3d",
        "job-a1b2c3d-2",
        "job-a1b2c3d-3",
    ]


def test_rejection_marks_record_failed(store, training_backend, config):
    training_backend.reject_with = "ResourceLimitExceeded: account quota"
    submitter = TrainingJobSubmitter(store, training_backend, config.training)

    result = submitter.submit(_event())

    assert result.outcome is Outcome.FAILURE
    assert isinstance(result.error, SubmissionRejected)
    record = store.get("job-a1b2c3d")
    assert record.status is JobStatus.FAILED
    assert record.failure_reason == "ResourceLimitExceeded: account quota"


def test_transient_error_leaves_pending_and_redelivery_resumes(store, config):
    backend = MagicMock()
    backend.submit_training_job.side_effect = [TransientBackendError("throttled"), "arn:job"]
    backend.find_training_job.return_value = None
    submitter = TrainingJobSubmitter(store, backend, config.training)

    with pytest.raises(TransientBackendError):
        submitter.submit(_event())
    assert store.get("job-a1b2c3d").status is JobStatus.PENDING

    result = submitter.submit(_event())
    assert result.outcome is Outcome.SUCCESS
    assert store.get("job-a1b2c3d").status is JobStatus.SUBMITTED
    assert backend.submit_training_job.call_count == 2


def test_state_change_arriving_before_submitted_write(store, config):
    backend = MagicMock()

    def accept(request):
        store.update(request.job_name, status=JobStatus.IN_PROGRESS)
        return "arn:job"

    backend.submit_training_job.side_effect = accept
    submitter = TrainingJobSubmitter(store, backend, config.training)

    result = submitter.submit(_event())

    assert result.outcome is Outcome.SUCCESS
    assert result.data == {"job_handle": "arn:job"}
    assert store.get("job-a1b2c3d").status is JobStatus.IN_PROGRESS


def test_pending_record_already_known_to_backend_is_not_resubmitted(store, config):
    store.create(
        JobRecord(job_name="job-a1b2c3d", source_commit=COMMIT, image_reference=IMAGE, pipeline_execution_id="exec-1")
    )
    backend = MagicMock()
    backend.find_training_job.return_value = MagicMock(status="InProgress")
    submitter = TrainingJobSubmitter(store, backend, config.training)

    result = submitter.submit(_event())

    assert result.reason == "duplicate_delivery"
    backend.submit_training_job.assert_not_called()
    assert store.get("job-a1b2c3d").status is JobStatus.SUBMITTED


def test_configured_image_is_used_when_build_reports_none(submitter, training_backend, config):
    submitter.submit(_event(image=None))
    assert training_backend.training_requests[0].image_uri == config.training.image_uri


def test_missing_image_is_a_configuration_error(store, training_backend, config_factory):
    config = config_factory(training={"image_uri": ""})
    submitter = TrainingJobSubmitter(store, training_backend, config.training)
    with pytest.raises(ConfigurationError):
        submitter.submit(_event(image=None))
    assert len(store) == 0


def test_missing_role_is_a_configuration_error(store, training_backend, config_factory):
    config = config_factory(training={"role_arn": ""})
    with pytest.raises(ConfigurationError):
        TrainingJobSubmitter(store, training_backend, config.training)
