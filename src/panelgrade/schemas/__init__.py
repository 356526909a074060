"""Panelgrade schemas."""

from panelgrade.schemas.evaluation import (
    ComprehensiveResult,
    EngineerField,
    EvaluationResult,
    EvaluatorId,
    PassStatus,
    PredictedGrade,
    StructureAnalysis,
)
from panelgrade.schemas.ocr import OCRResult, PagedOCRResult
from panelgrade.schemas.stream import EventType, ProgressEvent

__all__ = [
    "ComprehensiveResult",
    "EngineerField",
    "EvaluationResult",
    "EvaluatorId",
    "EventType",
    "OCRResult",
    "PagedOCRResult",
    "PassStatus",
    "PredictedGrade",
    "ProgressEvent",
    "StructureAnalysis",
]
