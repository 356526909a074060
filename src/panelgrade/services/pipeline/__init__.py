"""Evaluation pipeline: structure analysis, three raters, aggregation."""

from panelgrade.services.pipeline.base import EvaluationContext, LLMStage
from panelgrade.services.pipeline.orchestrator import EvaluationOrchestrator

__all__ = [
    "EvaluationContext",
    "EvaluationOrchestrator",
    "LLMStage",
]
