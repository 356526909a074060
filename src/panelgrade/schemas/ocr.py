from pydantic import Field

from panelgrade.schemas.base import CamelModel


class OCRResult(CamelModel):
    """Text recognized from one answer-sheet page."""

    text: str = ""
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    has_formulas: bool = False
    has_diagrams: bool = False


class PagedOCRResult(OCRResult):
    """Pages joined with the page-break marker, confidence averaged."""

    page_count: int = 0
