"""Configuration loading utilities.

Responsibility: Loads and validates orchestrator configuration from YAML files,
dotted overrides, or Lambda environment variables using Pydantic.
"""

from .loader import apply_overrides, dump_config, load_config, load_config_from_env
from .schema import DataPrefixes, OrchestratorConfig

__all__ = ["apply_overrides", "dump_config", "load_config", "load_config_from_env", "DataPrefixes", "OrchestratorConfig"]
