"""Stage: one rater's evaluation.

The orchestrator holds one instance per rater persona; the three run
concurrently per evaluation, each with its own credential from the
KeyRotationPool.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from panelgrade.exceptions import EvaluatorError, StageError
from panelgrade.schemas.evaluation import (
    EngineerField,
    EvaluationResult,
    EvaluatorId,
    StructureAnalysis,
)
from panelgrade.services.llm import DeltaCallback
from panelgrade.services.pipeline.base import LLMStage
from panelgrade.services.prompts import build_evaluator_prompt
from panelgrade.utils.llm_parse import normalize_evaluation

if TYPE_CHECKING:
    from panelgrade.config import Settings
    from panelgrade.services.llm import ProviderClient


class RaterEvaluationStage(LLMStage):
    max_tokens = 4096
    temperature = 0.7

    def __init__(
        self,
        client: ProviderClient,
        settings: Settings,
        evaluator_id: EvaluatorId,
    ) -> None:
        super().__init__(client, settings)
        self.evaluator_id = evaluator_id
        self.name = f"rater_{evaluator_id.value}"
        self.error_message = f"평가위원 {evaluator_id.value} 평가 중 오류가 발생했습니다."
        self.empty_message = f"평가위원 {evaluator_id.value}의 평가 결과를 가져올 수 없습니다."
        self.format_message = f"평가위원 {evaluator_id.value}의 응답 형식이 올바르지 않습니다."

    def failure(self, message: str) -> StageError:
        return EvaluatorError(self.evaluator_id.value, message)

    async def run(
        self,
        text: str,
        field: EngineerField,
        structure: StructureAnalysis,
        credential: str,
        *,
        on_delta: DeltaCallback | None = None,
    ) -> EvaluationResult:
        prompt = build_evaluator_prompt(self.evaluator_id, text, field, structure)
        raw = await self.generate(prompt, credential, on_delta=on_delta)
        return normalize_evaluation(self.parse(raw), self.evaluator_id)
