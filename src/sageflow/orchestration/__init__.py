"""Event consumer wiring.

Responsibility: Builds collaborators from configuration, routes raw events to
the handlers and adapts CodePipeline Lambda actions onto them.
"""

from .orchestrator import EVENT_KINDS, Orchestrator
from .pipeline_actions import PipelineActionAdapter

__all__ = ["EVENT_KINDS", "Orchestrator", "PipelineActionAdapter"]
