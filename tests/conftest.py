import sys
import time
from pathlib import Path
from typing import Any, Dict

import pytest

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"

if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from sageflow.backends.local import (  # noqa: E402
    LocalArtifactStore,
    LocalPipelineRunner,
    LocalTrainingBackend,
    LogNotifier,
)
from sageflow.config.schema import OrchestratorConfig  # noqa: E402
from sageflow.metadata import InMemoryMetadataStore  # noqa: E402
from sageflow.orchestration import Orchestrator  # noqa: E402

PIPELINE = "sageflow-pipeline"
COMMIT = "a1b2c3d"
TRAIN_IMAGE = "123456789012.dkr.ecr.us-east-1.amazonaws.com/train:latest"
SERVE_IMAGE = "123456789012.dkr.ecr.us-east-1.amazonaws.com/serve:latest"
ROLE_ARN = "arn:aws:iam::123456789012:role/sagemaker"


def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line("markers", "scenario: end-to-end flows over the local backends")


def make_config(**sections: Dict[str, Any]) -> OrchestratorConfig:
    payload: Dict[str, Any] = {
        "backend": "local",
        "pipeline": {"name": PIPELINE, "input_bucket": "data-bucket"},
        "training": {
            "role_arn": ROLE_ARN,
            "image_uri": TRAIN_IMAGE,
            "input_uri": "s3://data-bucket/input/data",
            "output_uri": "s3://model-bucket/output/",
        },
        "deployment": {"inference_image_uri": SERVE_IMAGE},
        "retry": {"max_attempts": 3, "base_delay": 0.01, "max_delay": 0.01},
        "logging": {"json_logs": False},
    }
    for name, values in sections.items():
        merged = dict(payload.get(name, {})) if isinstance(payload.get(name), dict) else {}
        merged.update(values)
        payload[name] = merged
    return OrchestratorConfig.model_validate(payload)


@pytest.fixture
def config() -> OrchestratorConfig:
    return make_config()


@pytest.fixture
def store() -> InMemoryMetadataStore:
    return InMemoryMetadataStore()


@pytest.fixture
def runner() -> LocalPipelineRunner:
    return LocalPipelineRunner({PIPELINE})


@pytest.fixture
def training_backend() -> LocalTrainingBackend:
    return LocalTrainingBackend()


@pytest.fixture
def notifier() -> LogNotifier:
    return LogNotifier()


@pytest.fixture
def artifacts() -> LocalArtifactStore:
    return LocalArtifactStore()


@pytest.fixture
def orchestrator(config, runner, training_backend, store, notifier, artifacts) -> Orchestrator:
    return Orchestrator(
        config,
        runner=runner,
        backend=training_backend,
        store=store,
        notifier=notifier,
        artifacts=artifacts,
    )


@pytest.fixture(autouse=True)
def no_sleep(monkeypatch):
    """Retry backoff never sleeps in tests."""
    monkeypatch.setattr(time, "sleep", lambda _: None)


@pytest.fixture
def config_factory():
    return make_config
