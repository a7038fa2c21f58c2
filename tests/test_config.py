"""
Configuration tests.
"""

import pytest
import yaml

from sageflow.config import apply_overrides, dump_config, load_config, load_config_from_env
from sageflow.core.exceptions import ConfigurationError


def _write(tmp_path, payload):
    path = tmp_path / "sageflow.yaml"
    path.write_text(yaml.safe_dump(payload))
    return path


def test_defaults_match_source_deployment():
    config = load_config_from_env({})

    assert config.backend == "aws"
    assert config.pipeline.input_prefix == "input/"
    assert config.training.instance_type == "ml.m4.4xlarge"
    assert config.training.instance_count == 1
    assert config.training.volume_size_gb == 30
    assert config.training.max_runtime_seconds == 86400
    assert config.metadata.key_attribute == "training_job_name"
    assert config.notifications.prompt == "Do you want to push your changes to production?"
    assert config.guard.max_consecutive_failures is None


def test_load_yaml_with_overrides(tmp_path):
    path = _write(
        tmp_path,
        {
            "backend": "local",
            "pipeline": {"name": "pipe"},
            "training": {"input_uri": "s3://data/input/data", "output_uri": "s3://models/out/"},
        },
    )

    config = load_config(path, overrides=["training.instance_count=2", "guard.max_consecutive_failures=3"])

    assert config.training.instance_count == 2
    assert config.guard.max_consecutive_failures == 3
    assert config.training.data_prefixes.training == "s3://data/input/data/training/"
    assert config.training.data_prefixes.testing == "s3://data/input/data/testing/"


def test_environment_variables(tmp_path):
    env = {
        "PIPELINE": "sageflow-pipeline",
        "SAGE_ROLE_ARN": "arn:aws:iam::1:role/sm",
        "FULL_NAME": "1.dkr.ecr.us-east-1.amazonaws.com/train:latest",
        "INSTANCE_TYPE": "ml.p3.2xlarge",
        "INSTANCE_CNT": "2",
        "EBS_VOL_GB": "50",
        "RUN_TIME_SEC": "3600",
        "SRC_BKT_URI": "s3://data-bucket/input/data/",
        "DEST_BKT_URI": "s3://model-bucket/output/",
        "META_DATA_STORE": "sageflow-jobs-prod",
        "SNS_TOPIC_ARN": "arn:aws:sns:us-east-1:1:approvals",
    }
    config = load_config_from_env(env)

    assert config.pipeline.name == "sageflow-pipeline"
    assert config.training.instance_count == 2
    assert config.training.volume_size_gb == 50
    assert config.training.data_prefixes.validation == "s3://data-bucket/input/data/validation/"
    assert config.metadata.backend == "dynamodb"
    assert config.metadata.table_name == "sageflow-jobs-prod"
    assert config.notifications.backend == "sns"


def test_environment_layers_over_config_file(tmp_path):
    path = _write(tmp_path, {"backend": "local", "pipeline": {"name": "from-file", "history_depth": 5}})
    config = load_config_from_env({"SAGEFLOW_CONFIG": str(path), "PIPELINE": "from-env"})

    assert config.backend == "local"
    assert config.pipeline.name == "from-env"
    assert config.pipeline.history_depth == 5


@pytest.mark.parametrize(
    "payload",
    [
        {"training": {"output_uri": "/local/path"}},
        {"training": {"instance_count": 0}},
        {"notifications": {"backend": "sns"}},
        {"unknown_section": {}},
    ],
)
def test_invalid_config_is_a_configuration_error(tmp_path, payload):
    with pytest.raises(ConfigurationError):
        load_config(_write(tmp_path, payload))


def test_missing_file(tmp_path):
    with pytest.raises(ConfigurationError):
        load_config(tmp_path / "absent.yaml")


def test_override_must_be_key_value(tmp_path):
    with pytest.raises(ConfigurationError):
        load_config(_write(tmp_path, {}), overrides=["training.instance_count"])


def test_apply_overrides_and_dump_roundtrip(tmp_path):
    config = apply_overrides(load_config_from_env({}), ["pipeline.name=pipe", "deployment.on_training_complete=false"])
    assert config.deployment.on_training_complete is False

    reloaded = load_config(_write(tmp_path, yaml.safe_load(dump_config(config))))
    assert reloaded.pipeline.name == "pipe"
    assert reloaded.deployment.on_training_complete is False
