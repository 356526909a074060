"""Request field validation shared by the routers."""

from panelgrade.exceptions import ValidationError
from panelgrade.schemas.evaluation import EngineerField


def require_text(text: str) -> str:
    """Return the answer text, or raise ValidationError when it is blank."""
    if not text or not text.strip():
        raise ValidationError("분석할 텍스트가 제공되지 않았습니다.")
    return text


def parse_field(value: str) -> EngineerField:
    """Parse the selected exam field.

    Raises:
        ValidationError: field missing or not one of the EngineerField values
    """
    if not value:
        raise ValidationError("기술사 종목이 선택되지 않았습니다.")
    try:
        return EngineerField(value)
    except ValueError as e:
        raise ValidationError(f"지원하지 않는 기술사 종목입니다: {value}") from e
