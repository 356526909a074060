"""Stage: model answer generation (separate, optional request)."""

from panelgrade.exceptions import ModelAnswerError, StageError
from panelgrade.schemas.evaluation import EngineerField, EvaluationResult
from panelgrade.services.pipeline.base import LLMStage
from panelgrade.services.prompts import build_model_answer_prompt
from panelgrade.utils.llm_parse import strip_think_tags


class ModelAnswerStage(LLMStage):
    name = "model_answer"
    max_tokens = 8192
    temperature = 0.7

    error_message = "모범답안 생성 중 오류가 발생했습니다."
    empty_message = "모범답안을 가져올 수 없습니다."

    def failure(self, message: str) -> StageError:
        return ModelAnswerError(message)

    async def run(
        self,
        text: str,
        field: EngineerField,
        evaluations: list[EvaluationResult],
        overall_strengths: list[str],
        overall_weaknesses: list[str],
        improvements: list[str],
        credential: str,
    ) -> str:
        prompt = build_model_answer_prompt(
            text, field, evaluations, overall_strengths, overall_weaknesses, improvements
        )
        # plain text, no JSON extraction
        answer = strip_think_tags(await self.generate(prompt, credential)).strip()
        if not answer:
            raise self.failure(self.empty_message)
        return answer
