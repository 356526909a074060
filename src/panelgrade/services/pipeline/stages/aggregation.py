"""Stage: comprehensive aggregation of the three rater results."""

import logging

from panelgrade.exceptions import AggregationError, StageError
from panelgrade.schemas.evaluation import (
    ComprehensiveResult,
    EngineerField,
    EvaluationResult,
)
from panelgrade.services.llm import DeltaCallback
from panelgrade.services.pipeline.base import LLMStage
from panelgrade.services.prompts import build_comprehensive_prompt
from panelgrade.utils.llm_parse import average_score, normalize_comprehensive

logger = logging.getLogger(__name__)


class AggregationStage(LLMStage):
    name = "comprehensive_analysis"
    max_tokens = 2048
    temperature = 0.5

    error_message = "종합 분석 중 오류가 발생했습니다."
    empty_message = "종합 분석 결과를 가져올 수 없습니다."
    format_message = "종합 분석 응답 형식이 올바르지 않습니다."

    def failure(self, message: str) -> StageError:
        return AggregationError(message)

    async def run(
        self,
        evaluations: list[EvaluationResult],
        field: EngineerField,
        credential: str,
        *,
        on_delta: DeltaCallback | None = None,
    ) -> ComprehensiveResult:
        """Build the final report. ``evaluations`` must already be sorted A, B, C."""
        average = average_score(evaluations)
        prompt = build_comprehensive_prompt(evaluations, field, average)
        raw = await self.generate(prompt, credential, on_delta=on_delta)
        result = normalize_comprehensive(self.parse(raw), evaluations)
        logger.info(
            "Comprehensive analysis: average=%.1f grade=%s status=%s",
            result.average_score,
            result.predicted_grade.value,
            result.pass_status.value,
        )
        return result
