"""Evaluation orchestrator.

Fixed topology: structure analysis -> three raters in parallel ->
comprehensive aggregation. Two flavors share the stages:

* ``evaluate``: collect everything, return the final report.
* ``evaluate_stream``: yield a ProgressEvent at every transition, relaying
  provider tokens as chunk events when ``stream_tokens`` is enabled.

Rater fan-out is all-or-fail: the first rater failure aborts the run, the
remaining rater tasks are cancelled and nothing partial is returned.
"""

import asyncio
import logging
import time
from collections.abc import AsyncIterator, Awaitable, Callable, Hashable
from contextlib import aclosing, contextmanager
from dataclasses import dataclass
from typing import Any

from panelgrade.config import Settings
from panelgrade.exceptions import PanelgradeError
from panelgrade.schemas.evaluation import (
    ComprehensiveResult,
    EngineerField,
    EvaluationResult,
    EvaluatorId,
    StructureAnalysis,
)
from panelgrade.schemas.stream import EventType, ProgressEvent
from panelgrade.services.key_pool import KeyRotationPool
from panelgrade.services.llm import DeltaCallback, ProviderClient
from panelgrade.services.pipeline.base import EvaluationContext
from panelgrade.services.pipeline.stages import (
    AggregationStage,
    ModelAnswerStage,
    RaterEvaluationStage,
    StructureAnalysisStage,
)

logger = logging.getLogger(__name__)

DEFAULT_ERROR_MESSAGE = "평가 중 오류가 발생했습니다."

RelayedCall = Callable[[DeltaCallback | None], Awaitable[Any]]
ChunkFactory = Callable[[Hashable, str], ProgressEvent]


@dataclass
class _Finished:
    """Terminal message of one relayed call."""

    key: Hashable
    result: Any = None
    error: BaseException | None = None


def sort_evaluations(evaluations: list[EvaluationResult]) -> list[EvaluationResult]:
    """Order rater results A, B, C regardless of completion order."""
    return sorted(evaluations, key=lambda e: e.evaluator_id.value)


def user_message(error: BaseException) -> str:
    if isinstance(error, PanelgradeError) and str(error):
        return str(error)
    return DEFAULT_ERROR_MESSAGE


class EvaluationOrchestrator:
    def __init__(self, client: ProviderClient, settings: Settings) -> None:
        self._stream_tokens = settings.stream_tokens
        self._structure = StructureAnalysisStage(client, settings)
        self._raters = {
            evaluator_id: RaterEvaluationStage(client, settings, evaluator_id)
            for evaluator_id in EvaluatorId
        }
        self._aggregation = AggregationStage(client, settings)
        self._model_answer = ModelAnswerStage(client, settings)

    # ------------------------------------------------------------------ #
    #  Blocking flavor
    # ------------------------------------------------------------------ #

    async def evaluate(
        self, text: str, field: EngineerField, pool: KeyRotationPool
    ) -> ComprehensiveResult:
        """Run the whole pipeline and return the final report.

        Raises the failing stage's error (StructureAnalysisError,
        EvaluatorError, AggregationError); no partial result is returned.
        """
        ctx = EvaluationContext(text=text, selected_field=field, pool=pool)
        logger.info("Evaluation started: field=%s, %d chars", field.value, len(text))

        structure = await self._run_structure(ctx)
        await self._run_raters(ctx, structure)
        result = await self._run_aggregation(ctx)

        logger.info("Evaluation finished in %.0fms (%s)", ctx.elapsed_ms(), _timings(ctx))
        return result

    async def _run_structure(self, ctx: EvaluationContext) -> StructureAnalysis:
        with _stage_timer(ctx, "structure_analysis"):
            ctx.structure = await self._structure.run(
                ctx.text, ctx.selected_field, ctx.pool.primary
            )
        return ctx.structure

    async def _run_raters(self, ctx: EvaluationContext, structure: StructureAnalysis) -> None:
        with _stage_timer(ctx, "rater_evaluation"):
            tasks = [
                asyncio.create_task(
                    stage.run(
                        ctx.text,
                        ctx.selected_field,
                        structure,
                        ctx.pool.for_evaluator(evaluator_id),
                    ),
                    name=f"rater-{evaluator_id.value}",
                )
                for evaluator_id, stage in self._raters.items()
            ]
            try:
                results = await asyncio.gather(*tasks)
            except BaseException:
                for task in tasks:
                    task.cancel()
                raise
        ctx.evaluations = sort_evaluations(list(results))

    async def _run_aggregation(
        self, ctx: EvaluationContext, on_delta: DeltaCallback | None = None
    ) -> ComprehensiveResult:
        with _stage_timer(ctx, "comprehensive_analysis"):
            result = await self._aggregation.run(
                ctx.evaluations, ctx.selected_field, ctx.pool.primary, on_delta=on_delta
            )
        ctx.result = result.model_copy(
            update={
                "structure_analysis": ctx.structure,
                "selected_field": ctx.selected_field,
            }
        )
        return ctx.result

    # ------------------------------------------------------------------ #
    #  Streaming flavor
    # ------------------------------------------------------------------ #

    async def evaluate_stream(
        self, text: str, field: EngineerField, pool: KeyRotationPool
    ) -> AsyncIterator[ProgressEvent]:
        """Yield progress events; the last one is always `complete` or `error`.

        Rater events for one rater arrive start -> chunk* -> complete. All
        three start events precede any completion; completions arrive in
        whatever order the providers finish. Closing the iterator cancels any
        provider call still in flight.
        """
        ctx = EvaluationContext(text=text, selected_field=field, pool=pool)
        logger.info("Streaming evaluation started: field=%s, %d chars", field.value, len(text))
        yield ProgressEvent(type=EventType.START)

        try:
            yield ProgressEvent(type=EventType.STRUCTURE_START)
            structure = await self._run_structure(ctx)
            yield ProgressEvent(
                type=EventType.STRUCTURE_COMPLETE,
                data=structure.model_dump(mode="json", by_alias=True),
            )

            for evaluator_id in self._raters:
                yield ProgressEvent(type=EventType.EVALUATOR_START, evaluator_id=evaluator_id)

            results: list[EvaluationResult] = []
            with _stage_timer(ctx, "rater_evaluation"):
                calls = {
                    evaluator_id: self._rater_call(ctx, evaluator_id, structure)
                    for evaluator_id in self._raters
                }
                async with aclosing(self._relay(calls, _evaluator_chunk)) as items:
                    async for item in items:
                        if isinstance(item, _Finished):
                            results.append(item.result)
                            yield ProgressEvent(
                                type=EventType.EVALUATOR_COMPLETE,
                                evaluator_id=item.key,
                                data=item.result.model_dump(mode="json", by_alias=True),
                            )
                        else:
                            yield item
            ctx.evaluations = sort_evaluations(results)

            yield ProgressEvent(type=EventType.COMPREHENSIVE_START)

            async def _aggregate(on_delta: DeltaCallback | None) -> ComprehensiveResult:
                return await self._run_aggregation(ctx, on_delta=on_delta)

            result: ComprehensiveResult | None = None
            async with aclosing(
                self._relay({"comprehensive": _aggregate}, _comprehensive_chunk)
            ) as items:
                async for item in items:
                    if isinstance(item, _Finished):
                        result = item.result
                    else:
                        yield item

            if result is None:
                raise PanelgradeError(DEFAULT_ERROR_MESSAGE)
            payload = result.model_dump(mode="json", by_alias=True, exclude_none=True)
            yield ProgressEvent(type=EventType.COMPREHENSIVE_COMPLETE, data=payload)
        except Exception as e:
            if isinstance(e, PanelgradeError):
                logger.error("Streaming evaluation failed after %.0fms: %s", ctx.elapsed_ms(), e)
            else:
                logger.exception("Streaming evaluation crashed after %.0fms", ctx.elapsed_ms())
            yield ProgressEvent(type=EventType.ERROR, content=user_message(e))
            return

        logger.info(
            "Streaming evaluation finished in %.0fms (%s)", ctx.elapsed_ms(), _timings(ctx)
        )
        yield ProgressEvent(type=EventType.COMPLETE, data=payload)

    def _rater_call(
        self, ctx: EvaluationContext, evaluator_id: EvaluatorId, structure: StructureAnalysis
    ) -> RelayedCall:
        stage = self._raters[evaluator_id]
        credential = ctx.pool.for_evaluator(evaluator_id)

        async def _call(on_delta: DeltaCallback | None) -> EvaluationResult:
            return await stage.run(
                ctx.text, ctx.selected_field, structure, credential, on_delta=on_delta
            )

        return _call

    async def _relay(
        self, calls: dict[Any, RelayedCall], make_chunk: ChunkFactory
    ) -> AsyncIterator[ProgressEvent | _Finished]:
        """Run calls concurrently, yielding their chunk events and completions.

        Every call reports through one per-run queue, so chunks of a call
        always precede its _Finished message. The first failure is raised
        after cancelling the calls still running.
        """
        queue: asyncio.Queue[ProgressEvent | _Finished] = asyncio.Queue()

        async def _worker(key: Any, call: RelayedCall) -> None:
            on_delta: DeltaCallback | None = None
            if self._stream_tokens:

                async def on_delta(delta: str) -> None:
                    await queue.put(make_chunk(key, delta))

            try:
                result = await call(on_delta)
            except Exception as e:
                await queue.put(_Finished(key, error=e))
            else:
                await queue.put(_Finished(key, result=result))

        tasks = [
            asyncio.create_task(_worker(key, call), name=f"relay-{key}")
            for key, call in calls.items()
        ]
        remaining = len(tasks)
        try:
            while remaining:
                item = await queue.get()
                if isinstance(item, _Finished):
                    remaining -= 1
                    if item.error is not None:
                        raise item.error
                yield item
        finally:
            for task in tasks:
                if not task.done():
                    task.cancel()

    # ------------------------------------------------------------------ #
    #  Model answer
    # ------------------------------------------------------------------ #

    async def generate_model_answer(
        self,
        text: str,
        field: EngineerField,
        evaluations: list[EvaluationResult],
        overall_strengths: list[str],
        overall_weaknesses: list[str],
        improvements: list[str],
        pool: KeyRotationPool,
    ) -> str:
        start = time.perf_counter()
        logger.info("Model answer started: field=%s, %d chars", field.value, len(text))
        answer = await self._model_answer.run(
            text,
            field,
            sort_evaluations(evaluations),
            overall_strengths,
            overall_weaknesses,
            improvements,
            pool.primary,
        )
        logger.info(
            "Model answer finished: %d chars in %.0fms",
            len(answer),
            (time.perf_counter() - start) * 1000,
        )
        return answer


def _evaluator_chunk(key: Hashable, delta: str) -> ProgressEvent:
    return ProgressEvent(type=EventType.EVALUATOR_CHUNK, evaluator_id=key, content=delta)


def _comprehensive_chunk(key: Hashable, delta: str) -> ProgressEvent:
    return ProgressEvent(type=EventType.COMPREHENSIVE_CHUNK, content=delta)


def _timings(ctx: EvaluationContext) -> str:
    return ", ".join(f"{name}={ms:.0f}ms" for name, ms in ctx.processing_times.items())


@contextmanager
def _stage_timer(ctx: EvaluationContext, name: str):
    logger.info("Stage %s starting...", name)
    start = time.perf_counter()
    try:
        yield
    finally:
        elapsed = (time.perf_counter() - start) * 1000
        ctx.processing_times[name] = elapsed
    logger.info("Stage %s completed in %.0fms", name, elapsed)
