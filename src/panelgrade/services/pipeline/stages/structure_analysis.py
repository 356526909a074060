"""Stage: structure pre-analysis.

Classifies the answer's field and checks for outline / introduction / body /
conclusion before any rater sees it. Runs once per evaluation.
"""

import logging

from panelgrade.exceptions import StageError, StructureAnalysisError
from panelgrade.schemas.evaluation import EngineerField, StructureAnalysis
from panelgrade.services.pipeline.base import LLMStage
from panelgrade.services.prompts import build_structure_prompt
from panelgrade.utils.llm_parse import normalize_structure

logger = logging.getLogger(__name__)


class StructureAnalysisStage(LLMStage):
    name = "structure_analysis"
    max_tokens = 2048
    temperature = 0.3

    error_message = "구조 분석 중 오류가 발생했습니다."
    empty_message = "구조 분석 결과를 가져올 수 없습니다."
    format_message = "구조 분석 응답 형식이 올바르지 않습니다."

    def failure(self, message: str) -> StageError:
        return StructureAnalysisError(message)

    async def run(
        self, text: str, field: EngineerField, credential: str
    ) -> StructureAnalysis:
        raw = await self.generate(build_structure_prompt(text, field), credential)
        structure = normalize_structure(self.parse(raw))
        logger.info(
            "Structure analysis: field=%s (confidence %d), score=%d",
            structure.detected_field.value,
            structure.field_confidence,
            structure.overall_structure_score,
        )
        return structure
