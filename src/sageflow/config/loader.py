"""Helpers for reading configuration from YAML files and the environment."""

from __future__ import annotations

import json
import os
from copy import deepcopy
from pathlib import Path
from typing import Any, Dict, Iterable, Mapping, MutableMapping, Optional

import yaml
from pydantic import ValidationError

from ..core.exceptions import ConfigurationError
from .schema import OrchestratorConfig

CONFIG_PATH_ENV = "SAGEFLOW_CONFIG"

# Environment variables understood by the Lambda deployment, mapped to dotted config keys.
ENV_KEYS: Dict[str, str] = {
    "PIPELINE": "pipeline.name",
    "INPUT_BUCKET": "pipeline.input_bucket",
    "INPUT_PREFIX": "pipeline.input_prefix",
    "SAGE_ROLE_ARN": "training.role_arn",
    "FULL_NAME": "training.image_uri",
    "INSTANCE_TYPE": "training.instance_type",
    "INSTANCE_CNT": "training.instance_count",
    "EBS_VOL_GB": "training.volume_size_gb",
    "RUN_TIME_SEC": "training.max_runtime_seconds",
    "SRC_BKT_URI": "training.input_uri",
    "DEST_BKT_URI": "training.output_uri",
    "INFERENCE_FULL_NAME": "deployment.inference_image_uri",
    "ENDPOINT_NAME": "deployment.endpoint_name",
    "META_DATA_STORE": "metadata.table_name",
    "SNS_TOPIC_ARN": "notifications.topic_arn",
    "AWS_REGION": "aws.region",
    "LOG_LEVEL": "logging.level",
}


def _merge_dict(base: MutableMapping[str, Any], updates: Mapping[str, Any]) -> MutableMapping[str, Any]:
    for key, value in updates.items():
        if isinstance(value, Mapping) and isinstance(base.get(key), Mapping):
            base[key] = _merge_dict(deepcopy(base[key]), value)
        else:
            base[key] = deepcopy(value)
    return base


def _nest(key: str, value: Any) -> Dict[str, Any]:
    nested_keys = key.split(".")
    current: Dict[str, Any] = {}
    cursor = current
    for nested_key in nested_keys[:-1]:
        cursor[nested_key] = {}
        cursor = cursor[nested_key]
    cursor[nested_keys[-1]] = value
    return current


def _parse_override(override: str) -> Dict[str, Any]:
    if "=" not in override:
        raise ConfigurationError(f"Override '{override}' must be in key=value format")
    key, raw_value = override.split("=", 1)
    # JSON lets overrides carry numbers, bools and lists
    try:
        value = json.loads(raw_value)
    except json.JSONDecodeError:
        value = raw_value
    return _nest(key, value)


def _validate(payload: Mapping[str, Any], source: str) -> OrchestratorConfig:
    try:
        return OrchestratorConfig.model_validate(payload)
    except ValidationError as exc:
        raise ConfigurationError(
            f"Invalid configuration from {source}: {exc}",
            metadata={"source": source, "errors": exc.errors(include_url=False)},
        ) from exc


def _read_yaml(path: Path) -> Dict[str, Any]:
    if not path.exists():
        raise ConfigurationError(f"Config file not found: {path}", metadata={"path": str(path)})
    with path.open("r", encoding="utf-8") as handle:
        payload = yaml.safe_load(handle) or {}
    if not isinstance(payload, dict):
        raise ConfigurationError(f"Config file {path} must contain a mapping")
    return payload


def load_config(path: str | Path, overrides: Optional[Iterable[str]] = None) -> OrchestratorConfig:
    path = Path(path)
    payload = deepcopy(_read_yaml(path))

    if overrides:
        for override in overrides:
            payload = _merge_dict(payload, _parse_override(override))

    return _validate(payload, str(path))


def load_config_from_env(environ: Optional[Mapping[str, str]] = None) -> OrchestratorConfig:
    """Build configuration from environment variables.

    ``SAGEFLOW_CONFIG`` optionally names a YAML file used as the base layer;
    the variables in :data:`ENV_KEYS` are applied on top of it. Naming a
    metadata table or a notification topic switches those collaborators to
    their AWS implementations.
    """
    env = os.environ if environ is None else environ
    payload: MutableMapping[str, Any] = {}
    base_path = env.get(CONFIG_PATH_ENV)
    if base_path:
        payload = deepcopy(_read_yaml(Path(base_path)))

    for variable, key in ENV_KEYS.items():
        raw = env.get(variable)
        if raw is None or raw == "":
            continue
        payload = _merge_dict(payload, _nest(key, raw))

    if env.get("META_DATA_STORE"):
        payload = _merge_dict(payload, {"metadata": {"backend": "dynamodb"}})
    if env.get("SNS_TOPIC_ARN"):
        payload = _merge_dict(payload, {"notifications": {"backend": "sns"}})

    return _validate(payload, "environment")


def apply_overrides(config: OrchestratorConfig, overrides: Iterable[str]) -> OrchestratorConfig:
    """Return a copy of ``config`` with dotted ``key=value`` overrides applied."""
    payload: MutableMapping[str, Any] = json.loads(config.model_dump_json())
    for override in overrides:
        payload = _merge_dict(payload, _parse_override(override))
    return _validate(payload, "overrides")


def dump_config(config: OrchestratorConfig) -> str:
    serializable = json.loads(config.model_dump_json())
    return yaml.safe_dump(serializable, sort_keys=False)
