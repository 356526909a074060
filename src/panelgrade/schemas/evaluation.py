from enum import StrEnum

from pydantic import ConfigDict, Field

from panelgrade.schemas.base import CamelModel


class EngineerField(StrEnum):
    INFORMATION_MANAGEMENT = "정보관리기술사"
    COMPUTER_SYSTEMS = "컴퓨터시스템응용기술사"
    INFORMATION_COMMUNICATION = "정보통신기술사"
    ELECTRONICS = "전자응용기술사"
    OTHER = "기타"


class EvaluatorId(StrEnum):
    A = "A"
    B = "B"
    C = "C"


class PredictedGrade(StrEnum):
    A_PLUS = "A+"
    A = "A"
    B_PLUS = "B+"
    B = "B"
    C = "C"
    D = "D"
    F = "F"


class PassStatus(StrEnum):
    PASS = "합격권"
    BORDERLINE = "경계선"
    BELOW = "미달"


class Readability(StrEnum):
    HIGH = "상"
    MEDIUM = "중"
    LOW = "하"


# ------------------------------------------------------------------ #
#  Structure pre-analysis
# ------------------------------------------------------------------ #


class StructureChecklist(CamelModel):
    has_outline: bool = False
    has_intro: bool = False
    has_body: bool = False
    has_conclusion: bool = False
    structure_comment: str = ""


class DiagramUsage(CamelModel):
    has_diagram: bool = False
    diagram_types: list[str] = Field(default_factory=list)
    diagram_comment: str = ""


class KeywordAnalysis(CamelModel):
    found: list[str] = Field(default_factory=list)
    field_specific: list[str] = Field(default_factory=list)
    missing: list[str] = Field(default_factory=list)
    keyword_comment: str = ""


class FormatAnalysis(CamelModel):
    estimated_pages: int = 0
    readability: Readability = Readability.MEDIUM
    format_comment: str = ""


class StructureAnalysis(CamelModel):
    """Result of the pre-analysis pass, shared read-only with every rater."""

    model_config = ConfigDict(frozen=True)

    detected_field: EngineerField = EngineerField.OTHER
    field_confidence: int = Field(default=0, ge=0, le=100)
    field_reason: str = ""
    structure: StructureChecklist = Field(default_factory=StructureChecklist)
    diagrams: DiagramUsage = Field(default_factory=DiagramUsage)
    keywords: KeywordAnalysis = Field(default_factory=KeywordAnalysis)
    format: FormatAnalysis = Field(default_factory=FormatAnalysis)
    overall_structure_score: int = Field(default=0, ge=0, le=100)
    structure_summary: str = ""


# ------------------------------------------------------------------ #
#  Rater evaluation
# ------------------------------------------------------------------ #


class QuotedFeedback(CamelModel):
    quote: str = ""
    evaluation: str = ""
    is_positive: bool = False


class DetailedScore(CamelModel):
    score: int = Field(default=0, ge=0, le=20)
    comment: str = ""
    quotes: list[QuotedFeedback] = Field(default_factory=list)


class DetailedFeedback(CamelModel):
    theory: DetailedScore = Field(default_factory=DetailedScore)
    practical: DetailedScore = Field(default_factory=DetailedScore)
    structure: DetailedScore = Field(default_factory=DetailedScore)
    expression: DetailedScore = Field(default_factory=DetailedScore)
    completeness: DetailedScore = Field(default_factory=DetailedScore)


DETAIL_KEYS: tuple[str, ...] = (
    "theory",
    "practical",
    "structure",
    "expression",
    "completeness",
)


class EvaluationResult(CamelModel):
    evaluator_id: EvaluatorId
    score: int = Field(default=0, ge=0, le=100)
    strengths: list[str] = Field(default_factory=list)
    weaknesses: list[str] = Field(default_factory=list)
    comment: str = ""
    detailed_feedback: DetailedFeedback = Field(default_factory=DetailedFeedback)
    key_points: list[str] = Field(default_factory=list)


# ------------------------------------------------------------------ #
#  Comprehensive report
# ------------------------------------------------------------------ #


class StudyGuide(CamelModel):
    priority: list[str] = Field(default_factory=list)
    resources: list[str] = Field(default_factory=list)
    tips: list[str] = Field(default_factory=list)


class ComprehensiveResult(CamelModel):
    average_score: float
    predicted_grade: PredictedGrade
    pass_status: PassStatus
    evaluations: list[EvaluationResult]
    overall_strengths: list[str] = Field(default_factory=list)
    overall_weaknesses: list[str] = Field(default_factory=list)
    improvements: list[str] = Field(default_factory=list)
    study_guide: StudyGuide = Field(default_factory=StudyGuide)
    model_answer: str | None = None
    structure_analysis: StructureAnalysis | None = None
    selected_field: EngineerField | None = None
