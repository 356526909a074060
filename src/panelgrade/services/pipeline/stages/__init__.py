"""Pipeline stages."""

from panelgrade.services.pipeline.stages.aggregation import AggregationStage
from panelgrade.services.pipeline.stages.model_answer import ModelAnswerStage
from panelgrade.services.pipeline.stages.rater_evaluation import RaterEvaluationStage
from panelgrade.services.pipeline.stages.structure_analysis import StructureAnalysisStage

__all__ = [
    "AggregationStage",
    "ModelAnswerStage",
    "RaterEvaluationStage",
    "StructureAnalysisStage",
]
