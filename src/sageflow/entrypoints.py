"""AWS Lambda handlers.

Each function has the ``(event, context)`` signature Lambda expects and shares
one orchestrator per warm container, configured from environment variables.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, Optional

from .config import load_config_from_env
from .core.logging import configure_logging
from .orchestration import Orchestrator, PipelineActionAdapter

LOGGER = logging.getLogger(__name__)

__all__ = [
    "object_created_handler",
    "train_action_handler",
    "deploy_action_handler",
    "training_state_handler",
    "get_orchestrator",
    "reset_orchestrator",
]

_ORCHESTRATOR: Optional[Orchestrator] = None


def get_orchestrator() -> Orchestrator:
    global _ORCHESTRATOR
    if _ORCHESTRATOR is None:
        config = load_config_from_env()
        settings = config.logging
        configure_logging(
            level=settings.level,
            log_dir=Path(settings.log_dir) if settings.log_dir else None,
            json_logs=settings.json_logs,
        )
        _ORCHESTRATOR = Orchestrator(config)
        LOGGER.info(
            "orchestrator_initialised",
            extra={"extra_context": {"backend": config.backend, "pipeline": config.pipeline.name}},
        )
    return _ORCHESTRATOR


def reset_orchestrator(orchestrator: Optional[Orchestrator] = None) -> None:
    """Replace (or drop) the cached orchestrator."""
    global _ORCHESTRATOR
    _ORCHESTRATOR = orchestrator


def _request_id(context: Any) -> Optional[str]:
    return getattr(context, "aws_request_id", None)


def object_created_handler(event: Dict[str, Any], context: Any = None) -> Dict[str, Any]:
    result = get_orchestrator().dispatch("object_created", event, correlation_id=_request_id(context))
    return result.to_dict()


def training_state_handler(event: Dict[str, Any], context: Any = None) -> Dict[str, Any]:
    result = get_orchestrator().dispatch("training_state_change", event, correlation_id=_request_id(context))
    return result.to_dict()


def train_action_handler(event: Dict[str, Any], context: Any = None) -> Dict[str, Any]:
    return PipelineActionAdapter(get_orchestrator()).train(event).to_dict()


def deploy_action_handler(event: Dict[str, Any], context: Any = None) -> Dict[str, Any]:
    return PipelineActionAdapter(get_orchestrator()).deploy(event).to_dict()
