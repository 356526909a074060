"""Pipeline core abstractions: EvaluationContext and the LLM stage base."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from panelgrade.exceptions import (
    MalformedResponseError,
    ProviderError,
    ResponseShapeError,
    StageError,
)
from panelgrade.schemas.evaluation import (
    ComprehensiveResult,
    EngineerField,
    EvaluationResult,
    StructureAnalysis,
)
from panelgrade.services.key_pool import KeyRotationPool
from panelgrade.services.llm import DeltaCallback, ImagePart, ProviderClient
from panelgrade.utils.llm_parse import extract_json_object

if TYPE_CHECKING:
    from panelgrade.config import Settings

logger = logging.getLogger(__name__)


@dataclass
class EvaluationContext:
    """State of one evaluation run. Owned by the run, never shared."""

    text: str
    selected_field: EngineerField
    pool: KeyRotationPool

    structure: StructureAnalysis | None = None
    evaluations: list[EvaluationResult] = field(default_factory=list)
    result: ComprehensiveResult | None = None

    # Timing
    started_at: float = field(default_factory=time.perf_counter)
    processing_times: dict[str, float] = field(default_factory=dict)

    def elapsed_ms(self) -> float:
        return (time.perf_counter() - self.started_at) * 1000


class LLMStage:
    """One prompt -> provider call -> parsed result step.

    Subclasses set the token budget and temperature and the three
    user-facing messages. Any provider or extraction failure surfaces as the
    stage's own error type; no degraded result is ever returned.
    """

    name = "stage"
    max_tokens = 2048
    temperature = 0.7

    error_message = "처리 중 오류가 발생했습니다."
    empty_message = "결과를 가져올 수 없습니다."
    format_message = "응답 형식이 올바르지 않습니다."

    def __init__(self, client: ProviderClient, settings: Settings) -> None:
        self._client = client
        self._timeout = settings.stage_timeout_seconds

    def failure(self, message: str) -> StageError:
        return StageError(message)

    async def generate(
        self,
        prompt: str,
        credential: str,
        *,
        on_delta: DeltaCallback | None = None,
        images: list[ImagePart] | None = None,
    ) -> str:
        """Call the provider under the stage timeout; streams when on_delta is set."""
        start = time.perf_counter()
        try:
            async with asyncio.timeout(self._timeout):
                response = await self._client.chat(
                    prompt,
                    credential,
                    max_tokens=self.max_tokens,
                    temperature=self.temperature,
                    images=images,
                    stream=on_delta is not None,
                    on_delta=on_delta,
                )
        except TimeoutError as e:
            logger.error("%s timed out after %.0fs", self.name, self._timeout)
            raise self.failure(self.error_message) from e
        except ResponseShapeError as e:
            logger.error("%s got no text payload: %s", self.name, e)
            raise self.failure(self.empty_message) from e
        except ProviderError as e:
            logger.error("%s provider call failed: %s", self.name, e)
            raise self.failure(self.error_message) from e

        logger.info(
            "%s: %d chars from %s in %.0fms (tokens in=%s out=%s)",
            self.name,
            len(response.content),
            response.model,
            (time.perf_counter() - start) * 1000,
            response.input_tokens,
            response.output_tokens,
        )
        return response.content

    def parse(self, raw: str) -> dict[str, Any]:
        try:
            return extract_json_object(raw, what=self.name)
        except MalformedResponseError as e:
            logger.warning("%s: %s | raw: %s", self.name, e, raw[:150])
            raise self.failure(self.format_message) from e
