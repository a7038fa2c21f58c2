"""SageFlow: event-driven controller linking a CD pipeline to SageMaker training and hosting."""

from .config import OrchestratorConfig, load_config, load_config_from_env
from .handlers import HandlerResult, Outcome
from .orchestration import Orchestrator, PipelineActionAdapter

__version__ = "0.1.0"

__all__ = [
    "HandlerResult",
    "Orchestrator",
    "OrchestratorConfig",
    "Outcome",
    "PipelineActionAdapter",
    "load_config",
    "load_config_from_env",
    "__version__",
]
