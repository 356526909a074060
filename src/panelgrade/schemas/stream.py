from enum import StrEnum
from typing import Any

from panelgrade.schemas.base import CamelModel
from panelgrade.schemas.evaluation import EvaluatorId


class EventType(StrEnum):
    START = "start"
    STRUCTURE_START = "structure_start"
    STRUCTURE_COMPLETE = "structure_complete"
    EVALUATOR_START = "evaluator_start"
    EVALUATOR_CHUNK = "evaluator_chunk"
    EVALUATOR_COMPLETE = "evaluator_complete"
    COMPREHENSIVE_START = "comprehensive_start"
    COMPREHENSIVE_CHUNK = "comprehensive_chunk"
    COMPREHENSIVE_COMPLETE = "comprehensive_complete"
    COMPLETE = "complete"
    ERROR = "error"


TERMINAL_EVENTS = frozenset({EventType.COMPLETE, EventType.ERROR})


class ProgressEvent(CamelModel):
    """One frame of the evaluation progress stream."""

    type: EventType
    evaluator_id: EvaluatorId | None = None
    content: str | None = None
    data: Any = None

    @property
    def is_terminal(self) -> bool:
        return self.type in TERMINAL_EVENTS
