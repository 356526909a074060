"""LLM output parsing utilities.

Shared helpers for pulling the JSON object out of a free-text model response
and for turning loosely-shaped provider JSON into fully populated records.
Only sub-fields are ever defaulted here; a response that does not contain a
JSON object at all is an error for the calling stage.
"""

import json
import math
import re
from typing import Any

from panelgrade.exceptions import MalformedResponseError
from panelgrade.schemas.evaluation import (
    DETAIL_KEYS,
    ComprehensiveResult,
    DetailedFeedback,
    DetailedScore,
    EngineerField,
    EvaluationResult,
    EvaluatorId,
    PassStatus,
    PredictedGrade,
    QuotedFeedback,
    Readability,
    StructureAnalysis,
    StudyGuide,
)
from panelgrade.schemas.ocr import OCRResult

_THINK_PAIR_RE = re.compile(r"<think>.*?</think>", re.DOTALL)
_THINK_OPEN_RE = re.compile(r"<think>.*", re.DOTALL)
_THINK_CLOSE_RE = re.compile(r"^.*?</think>", re.DOTALL)


def strip_think_tags(text: str) -> str:
    """Remove <think>...</think> tags from LLM output."""
    text = _THINK_PAIR_RE.sub("", text)
    text = _THINK_OPEN_RE.sub("", text)
    text = _THINK_CLOSE_RE.sub("", text)
    return text


def extract_json_object(text: str, *, what: str = "response") -> dict[str, Any]:
    """Parse the span between the first '{' and the last '}' as a JSON object.

    Prose or markdown fences around the object are ignored. Raises
    MalformedResponseError if no such span parses to an object.
    """
    text = strip_think_tags(text or "")
    start = text.find("{")
    end = text.rfind("}")
    if start < 0 or end <= start:
        raise MalformedResponseError(f"No JSON object found in {what}")
    try:
        parsed = json.loads(text[start : end + 1])
    except json.JSONDecodeError as e:
        raise MalformedResponseError(f"Invalid JSON in {what}: {e}") from e
    if not isinstance(parsed, dict):
        raise MalformedResponseError(f"Expected a JSON object in {what}")
    return parsed


# ------------------------------------------------------------------ #
#  Field coercion
# ------------------------------------------------------------------ #


def _as_dict(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _as_str(value: Any) -> str:
    return value if isinstance(value, str) else ""


def _as_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in {"true", "yes", "y", "1", "예", "있음"}
    return False


def _as_str_list(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    return [item.strip() for item in value if isinstance(item, str) and item.strip()]


def _as_number(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            return None
    else:
        return None
    return number if math.isfinite(number) else None


def _as_score(value: Any, upper: int) -> int:
    """Coerce to an int clamped to [0, upper]; unusable values become 0."""
    number = _as_number(value)
    if number is None:
        return 0
    return int(round(min(max(number, 0.0), float(upper))))


def _as_enum(enum_cls, value: Any, default):
    if isinstance(value, str):
        try:
            return enum_cls(value.strip())
        except ValueError:
            pass
    return default


# ------------------------------------------------------------------ #
#  Rater evaluation
# ------------------------------------------------------------------ #


def _normalize_quote(value: Any) -> QuotedFeedback | None:
    if not isinstance(value, dict):
        return None
    quote = _as_str(value.get("quote")).strip()
    if not quote:
        return None
    return QuotedFeedback(
        quote=quote,
        evaluation=_as_str(value.get("evaluation")),
        is_positive=_as_bool(value.get("isPositive")),
    )


def _normalize_detail(value: Any) -> DetailedScore:
    raw = _as_dict(value)
    quotes = raw.get("quotes")
    normalized = [_normalize_quote(q) for q in quotes] if isinstance(quotes, list) else []
    return DetailedScore(
        score=_as_score(raw.get("score"), 20),
        comment=_as_str(raw.get("comment")),
        quotes=[q for q in normalized if q is not None],
    )


def normalize_evaluation(parsed: dict[str, Any], evaluator_id: EvaluatorId) -> EvaluationResult:
    """Build an EvaluationResult with every field present.

    Missing or wrongly-shaped detailed-feedback entries become
    ``{score: 0, comment: "", quotes: []}``; list fields default to empty.
    """
    feedback = _as_dict(parsed.get("detailedFeedback"))
    return EvaluationResult(
        evaluator_id=evaluator_id,
        score=_as_score(parsed.get("score"), 100),
        strengths=_as_str_list(parsed.get("strengths")),
        weaknesses=_as_str_list(parsed.get("weaknesses")),
        comment=_as_str(parsed.get("comment")),
        key_points=_as_str_list(parsed.get("keyPoints")),
        detailed_feedback=DetailedFeedback(
            **{key: _normalize_detail(feedback.get(key)) for key in DETAIL_KEYS}
        ),
    )


# ------------------------------------------------------------------ #
#  Structure analysis
# ------------------------------------------------------------------ #


def normalize_structure(parsed: dict[str, Any]) -> StructureAnalysis:
    structure = _as_dict(parsed.get("structure"))
    diagrams = _as_dict(parsed.get("diagrams"))
    keywords = _as_dict(parsed.get("keywords"))
    fmt = _as_dict(parsed.get("format"))
    return StructureAnalysis.model_validate(
        {
            "detected_field": _as_enum(EngineerField, parsed.get("detectedField"), EngineerField.OTHER),
            "field_confidence": _as_score(parsed.get("fieldConfidence"), 100),
            "field_reason": _as_str(parsed.get("fieldReason")),
            "structure": {
                "has_outline": _as_bool(structure.get("hasOutline")),
                "has_intro": _as_bool(structure.get("hasIntro")),
                "has_body": _as_bool(structure.get("hasBody")),
                "has_conclusion": _as_bool(structure.get("hasConclusion")),
                "structure_comment": _as_str(structure.get("structureComment")),
            },
            "diagrams": {
                "has_diagram": _as_bool(diagrams.get("hasDiagram")),
                "diagram_types": _as_str_list(diagrams.get("diagramTypes")),
                "diagram_comment": _as_str(diagrams.get("diagramComment")),
            },
            "keywords": {
                "found": _as_str_list(keywords.get("found")),
                "field_specific": _as_str_list(keywords.get("fieldSpecific")),
                "missing": _as_str_list(keywords.get("missing")),
                "keyword_comment": _as_str(keywords.get("keywordComment")),
            },
            "format": {
                "estimated_pages": _as_score(fmt.get("estimatedPages"), 100),
                "readability": _as_enum(Readability, fmt.get("readability"), Readability.MEDIUM),
                "format_comment": _as_str(fmt.get("formatComment")),
            },
            "overall_structure_score": _as_score(parsed.get("overallStructureScore"), 100),
            "structure_summary": _as_str(parsed.get("structureSummary")),
        }
    )


# ------------------------------------------------------------------ #
#  Comprehensive aggregation
# ------------------------------------------------------------------ #


def grade_for_score(average: float) -> PredictedGrade:
    """Fallback grade when the aggregation response omits a valid one."""
    if average >= 90:
        return PredictedGrade.A_PLUS
    if average >= 80:
        return PredictedGrade.A
    if average >= 70:
        return PredictedGrade.B_PLUS
    if average >= 60:
        return PredictedGrade.B
    if average >= 50:
        return PredictedGrade.C
    if average >= 40:
        return PredictedGrade.D
    return PredictedGrade.F


def pass_status_for_score(average: float) -> PassStatus:
    """Fallback pass status; 60 is the pass mark, 55-59 is borderline."""
    if average >= 60:
        return PassStatus.PASS
    if average >= 55:
        return PassStatus.BORDERLINE
    return PassStatus.BELOW


def average_score(evaluations: list[EvaluationResult]) -> float:
    if not evaluations:
        return 0.0
    return sum(e.score for e in evaluations) / len(evaluations)


def normalize_comprehensive(
    parsed: dict[str, Any], evaluations: list[EvaluationResult]
) -> ComprehensiveResult:
    """Build the final report around already-sorted rater results.

    The average is always recomputed from the rater scores; grade and pass
    status from the model are kept when they are valid enumeration values.
    """
    average = average_score(evaluations)
    guide = _as_dict(parsed.get("studyGuide"))
    return ComprehensiveResult(
        average_score=average,
        predicted_grade=_as_enum(PredictedGrade, parsed.get("predictedGrade"), grade_for_score(average)),
        pass_status=_as_enum(PassStatus, parsed.get("passStatus"), pass_status_for_score(average)),
        evaluations=evaluations,
        overall_strengths=_as_str_list(parsed.get("overallStrengths")),
        overall_weaknesses=_as_str_list(parsed.get("overallWeaknesses")),
        improvements=_as_str_list(parsed.get("improvements")),
        study_guide=StudyGuide(
            priority=_as_str_list(guide.get("priority")),
            resources=_as_str_list(guide.get("resources")),
            tips=_as_str_list(guide.get("tips")),
        ),
    )


# ------------------------------------------------------------------ #
#  OCR
# ------------------------------------------------------------------ #


def normalize_ocr(parsed: dict[str, Any]) -> OCRResult:
    confidence = _as_number(parsed.get("confidence"))
    return OCRResult(
        text=_as_str(parsed.get("text")),
        confidence=min(max(confidence or 0.0, 0.0), 1.0),
        has_formulas=_as_bool(parsed.get("hasFormulas")),
        has_diagrams=_as_bool(parsed.get("hasDiagrams")),
    )
