from typing import Any

from pydantic import Field

from panelgrade.schemas.base import CamelModel
from panelgrade.schemas.evaluation import EvaluationResult


class EvaluateRequest(CamelModel):
    # Missing values are reported as 400 by the router, not as 422
    extracted_text: str = ""
    selected_field: str = ""


class ModelAnswerRequest(CamelModel):
    extracted_text: str = ""
    selected_field: str = ""
    evaluations: list[EvaluationResult] = Field(default_factory=list)
    overall_strengths: list[str] = Field(default_factory=list)
    overall_weaknesses: list[str] = Field(default_factory=list)
    improvements: list[str] = Field(default_factory=list)


class ModelAnswerData(CamelModel):
    model_answer: str


class OCRRequest(CamelModel):
    image: str = ""


class OCRPagesRequest(CamelModel):
    images: list[str] = Field(default_factory=list)


class APIResponse(CamelModel):
    """Uniform `{success, data, error}` envelope."""

    success: bool
    data: Any = None
    error: str | None = None


class HealthResponse(CamelModel):
    provider: str
    credentials_configured: int
    llm_reachable: bool
