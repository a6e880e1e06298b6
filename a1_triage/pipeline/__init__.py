"""
Session pipeline: state machine and component wiring
"""

from .orchestrator import PipelineOrchestrator, validate_target
from .builder import build_orchestrator

__all__ = [
    "PipelineOrchestrator",
    "validate_target",
    "build_orchestrator",
]
