import asyncio
import json
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from panelgrade.config import Settings
from panelgrade.exceptions import ProviderHTTPError
from panelgrade.services.llm import ChatResponse, ProviderClient
from panelgrade.services.ocr import OCRService
from panelgrade.services.pipeline import EvaluationOrchestrator

SAMPLE_TEXT = "OOO에 대해 설명하라\n1. 개요\nOOO는 데이터를 관리하는 기술이다."


def structure_json(score: int = 72) -> str:
    return json.dumps(
        {
            "detectedField": "정보관리기술사",
            "fieldConfidence": 88,
            "fieldReason": "데이터 관리 용어 사용",
            "structure": {
                "hasOutline": True,
                "hasIntro": True,
                "hasBody": True,
                "hasConclusion": False,
                "structureComment": "결론이 없음",
            },
            "keywords": {
                "found": ["데이터", "관리"],
                "fieldSpecific": ["DBMS"],
                "missing": ["정규화"],
                "keywordComment": "핵심 키워드 일부 누락",
            },
            "overallStructureScore": score,
            "structureSummary": "기본 구조는 갖춤",
        },
        ensure_ascii=False,
    )


def rater_json(score: int) -> str:
    detail = {"score": score // 5, "comment": "무난함", "quotes": []}
    return json.dumps(
        {
            "score": score,
            "strengths": ["개념 정의 명확"],
            "weaknesses": ["사례 부족"],
            "comment": f"{score}점 답안",
            "keyPoints": ["정의"],
            "detailedFeedback": {
                "theory": detail,
                "practical": detail,
                "structure": detail,
                "expression": detail,
                "completeness": detail,
            },
        },
        ensure_ascii=False,
    )


def aggregation_json(**overrides) -> str:
    data = {
        "predictedGrade": "B+",
        "passStatus": "합격권",
        "overallStrengths": ["개념 이해"],
        "overallWeaknesses": ["사례 부족"],
        "improvements": ["실무 사례 추가"],
        "studyGuide": {"priority": ["정규화"], "resources": ["기출문제"], "tips": ["도식 활용"]},
    }
    data.update(overrides)
    return json.dumps(data, ensure_ascii=False)


class FakeProvider:
    """Answers stage prompts with canned JSON.

    Stages are told apart by prompt wording; raters by the credential each
    one is handed (key-a, key-b, key-c).
    """

    def __init__(self, rater_scores: dict[str, int] | None = None) -> None:
        self.rater_scores = rater_scores or {"key-a": 60, "key-b": 75, "key-c": 90}
        self.structure_content = structure_json()
        self.aggregation_content = aggregation_json()
        self.delays: dict[str, float] = {}
        self.fail_credentials: set[str] = set()
        self.calls: list[dict] = []
        self.cancelled: list[str] = []

    @staticmethod
    def stage_of(prompt: str) -> str:
        if "구조를 사전 분석" in prompt:
            return "structure"
        if "채점 위원장" in prompt:
            return "aggregation"
        return "rater"

    def prompts(self, stage: str) -> list[str]:
        return [c["prompt"] for c in self.calls if c["stage"] == stage]

    async def chat(
        self,
        prompt,
        credential,
        *,
        max_tokens,
        temperature,
        images=None,
        stream=False,
        on_delta=None,
    ) -> ChatResponse:
        stage = self.stage_of(prompt)
        self.calls.append(
            {"stage": stage, "prompt": prompt, "credential": credential, "stream": stream}
        )
        if stage == "structure":
            content = self.structure_content
        elif stage == "aggregation":
            content = self.aggregation_content
        else:
            try:
                await asyncio.sleep(self.delays.get(credential, 0))
            except asyncio.CancelledError:
                self.cancelled.append(credential)
                raise
            if credential in self.fail_credentials:
                raise ProviderHTTPError(500, "upstream failure")
            content = rater_json(self.rater_scores[credential])

        if on_delta is not None:
            middle = len(content) // 2
            await on_delta(content[:middle])
            await on_delta(content[middle:])
        return ChatResponse(content=content, model="test-model", input_tokens=120, output_tokens=40)


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep the developer's shell (ANTHROPIC_BASE_URL, LLM_API_KEY, ...) out of Settings."""
    for field in Settings.model_fields:
        monkeypatch.delenv(field.upper(), raising=False)
        monkeypatch.delenv(field, raising=False)


@pytest.fixture
def mock_settings() -> Settings:
    return Settings(
        _env_file=None,
        llm_provider="gemini",
        llm_api_key="key-a",
        llm_api_key_2="key-b",
        llm_api_key_3="key-c",
        stage_timeout_seconds=5.0,
    )


@pytest.fixture
def fake_provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def mock_client() -> MagicMock:
    """A ProviderClient stand-in for router and stage tests."""
    client = MagicMock(spec=ProviderClient)
    client.name = "gemini"
    client.is_reachable = AsyncMock(return_value=True)
    return client


@pytest.fixture
def mock_orchestrator() -> MagicMock:
    return MagicMock(spec=EvaluationOrchestrator)


@pytest.fixture
def mock_ocr() -> MagicMock:
    return MagicMock(spec=OCRService)


@pytest.fixture
def test_app(
    mock_settings: Settings,
    mock_client: MagicMock,
    mock_orchestrator: MagicMock,
    mock_ocr: MagicMock,
):
    """Create a test FastAPI app with mocked dependencies."""
    from fastapi import FastAPI

    from panelgrade.errors import register_error_handlers
    from panelgrade.routers.evaluation import router as evaluation_router
    from panelgrade.routers.ocr import router as ocr_router

    app = FastAPI()
    app.state.settings = mock_settings
    app.state.llm_client = mock_client
    app.state.orchestrator = mock_orchestrator
    app.state.ocr = mock_ocr
    app.include_router(evaluation_router)
    app.include_router(ocr_router)
    register_error_handlers(app)
    return app


@pytest.fixture
def client(test_app) -> TestClient:
    return TestClient(test_app)
