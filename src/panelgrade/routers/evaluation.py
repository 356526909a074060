from collections.abc import AsyncIterator
from contextlib import aclosing

from fastapi import APIRouter, Depends
from fastapi.responses import StreamingResponse

from panelgrade.config import Settings
from panelgrade.dependencies import (
    build_key_pool,
    get_orchestrator,
    get_provider_client,
    get_settings,
)
from panelgrade.exceptions import PanelgradeError, ValidationError
from panelgrade.schemas.api import (
    APIResponse,
    EvaluateRequest,
    HealthResponse,
    ModelAnswerData,
    ModelAnswerRequest,
)
from panelgrade.schemas.stream import EventType, ProgressEvent
from panelgrade.services.llm import ProviderClient
from panelgrade.services.pipeline import EvaluationOrchestrator
from panelgrade.utils.request import parse_field, require_text
from panelgrade.utils.sse import SSE_HEADERS, encode_event

router = APIRouter(prefix="/api/v1", tags=["evaluation"])


@router.post("/evaluate", response_model=APIResponse, response_model_exclude_none=True)
async def evaluate(
    body: EvaluateRequest,
    orchestrator: EvaluationOrchestrator = Depends(get_orchestrator),
    settings: Settings = Depends(get_settings),
) -> APIResponse:
    """Structure analysis, three raters and aggregation in one blocking call."""
    text = require_text(body.extracted_text)
    field = parse_field(body.selected_field)
    pool = build_key_pool(settings)

    result = await orchestrator.evaluate(text, field, pool)
    return APIResponse(
        success=True,
        data=result.model_dump(mode="json", by_alias=True, exclude_none=True),
    )


@router.post("/evaluate/stream")
async def evaluate_stream(
    body: EvaluateRequest,
    orchestrator: EvaluationOrchestrator = Depends(get_orchestrator),
    settings: Settings = Depends(get_settings),
) -> StreamingResponse:
    """Same pipeline as /evaluate, reported as a text/event-stream of progress events."""
    try:
        text = require_text(body.extracted_text)
        field = parse_field(body.selected_field)
        pool = build_key_pool(settings)
    except PanelgradeError as e:
        # refused before the run starts: one error frame, non-200 status
        status_code = 400 if isinstance(e, ValidationError) else 500
        frame = encode_event(ProgressEvent(type=EventType.ERROR, content=str(e)))
        return StreamingResponse(
            iter([frame]),
            status_code=status_code,
            media_type="text/event-stream",
            headers=SSE_HEADERS,
        )

    async def event_generator() -> AsyncIterator[str]:
        async with aclosing(orchestrator.evaluate_stream(text, field, pool)) as events:
            async for event in events:
                yield encode_event(event)

    return StreamingResponse(
        event_generator(),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )


@router.post("/model-answer", response_model=APIResponse, response_model_exclude_none=True)
async def model_answer(
    body: ModelAnswerRequest,
    orchestrator: EvaluationOrchestrator = Depends(get_orchestrator),
    settings: Settings = Depends(get_settings),
) -> APIResponse:
    """Generate a revised model answer from a finished evaluation."""
    if not body.extracted_text.strip():
        raise ValidationError("원본 답안이 제공되지 않았습니다.")
    field = parse_field(body.selected_field)
    if not body.evaluations:
        raise ValidationError("평가 결과가 제공되지 않았습니다.")
    pool = build_key_pool(settings)

    answer = await orchestrator.generate_model_answer(
        body.extracted_text,
        field,
        body.evaluations,
        body.overall_strengths,
        body.overall_weaknesses,
        body.improvements,
        pool,
    )
    return APIResponse(
        success=True,
        data=ModelAnswerData(model_answer=answer).model_dump(by_alias=True),
    )


@router.get("/health", response_model=HealthResponse)
async def health(
    client: ProviderClient = Depends(get_provider_client),
    settings: Settings = Depends(get_settings),
) -> HealthResponse:
    """Check service health: credentials present and provider host reachable."""
    return HealthResponse(
        provider=client.name,
        credentials_configured=len(settings.api_keys),
        llm_reachable=await client.is_reachable(),
    )
