"""
Typer CLI over a local, SQLite-backed configuration.
"""

import json

import pytest
import yaml
from typer.testing import CliRunner

from sageflow.cli.main import app

runner = CliRunner()


@pytest.fixture(autouse=True)
def quiet_logging(monkeypatch):
    monkeypatch.setattr("sageflow.cli.main.configure_logging", lambda **_: None)


@pytest.fixture
def config_file(tmp_path):
    payload = {
        "backend": "local",
        "pipeline": {"name": "sageflow-pipeline", "input_prefix": "input/"},
        "training": {
            "role_arn": "arn:aws:iam::1:role/sm",
            "image_uri": "1.dkr.ecr.us-east-1.amazonaws.com/train:latest",
            "input_uri": "s3://data-bucket/input/data",
            "output_uri": "s3://model-bucket/output/",
        },
        "deployment": {"inference_image_uri": "1.dkr.ecr.us-east-1.amazonaws.com/serve:latest"},
        "metadata": {"backend": "sqlite", "db_path": str(tmp_path / "jobs.db")},
    }
    path = tmp_path / "sageflow.yaml"
    path.write_text(yaml.safe_dump(payload))
    return path


def _event(tmp_path, name, payload):
    path = tmp_path / name
    path.write_text(json.dumps(payload))
    return path


def test_handle_object_created(config_file, tmp_path):
    event = _event(tmp_path, "upload.json", {"bucket": "data-bucket", "object_key": "input/data/training/a.csv"})

    result = runner.invoke(app, ["--config", str(config_file), "handle", "object_created", str(event)])

    assert result.exit_code == 0, result.output
    assert '"execution_id": "exec-1"' in result.output


def test_build_event_then_show_job(config_file, tmp_path):
    event = _event(tmp_path, "build.json", {"COMMIT_ID": "abc1234", "IMG": "1.dkr.ecr.us-east-1.amazonaws.com/train:abc"})

    submitted = runner.invoke(app, ["--config", str(config_file), "handle", "build_completed", str(event)])
    assert submitted.exit_code == 0, submitted.output
    assert "job-abc1234" in submitted.output

    shown = runner.invoke(app, ["--config", str(config_file), "jobs", "show", "job-abc1234"])
    assert shown.exit_code == 0, shown.output
    assert json.loads(shown.output)["status"] == "Submitted"


def test_show_unknown_job_fails(config_file):
    result = runner.invoke(app, ["--config", str(config_file), "jobs", "show", "job-nope"])
    assert result.exit_code == 2


def test_deploy_unknown_job_is_a_failure(config_file):
    result = runner.invoke(app, ["--config", str(config_file), "deploy", "job-nope"])
    assert result.exit_code == 1
    assert "record_not_found" in result.output


def test_unknown_event_kind(config_file, tmp_path):
    event = _event(tmp_path, "x.json", {})
    result = runner.invoke(app, ["--config", str(config_file), "handle", "bogus", str(event)])
    assert result.exit_code != 0


def test_config_show_applies_overrides(config_file):
    result = runner.invoke(
        app, ["--config", str(config_file), "--set", "training.instance_count=4", "config", "show"]
    )
    assert result.exit_code == 0, result.output
    assert yaml.safe_load(result.output)["training"]["instance_count"] == 4
