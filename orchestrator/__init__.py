"""
Extraction orchestrator.

State machine, background effects and the pipeline driver for bulk photo
imports.
"""

from .effects import BackgroundEffects
from .pipeline import ExtractionOrchestrator
from .state import PHASE_TRANSITIONS, PipelinePhase, PipelineState, build_reviewable_items, transition

__all__ = [
    "BackgroundEffects",
    "ExtractionOrchestrator",
    "PHASE_TRANSITIONS",
    "PipelinePhase",
    "PipelineState",
    "build_reviewable_items",
    "transition",
]
