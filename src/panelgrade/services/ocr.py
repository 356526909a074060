"""Handwriting OCR through the provider's vision model.

A page image goes to the same ProviderClient the raters use, with the OCR
prompt; the JSON reply is normalized into an OCRResult. Multi-page answers
are recognized page by page and joined with the page-break marker.
"""

from __future__ import annotations

import asyncio
import base64
import logging
import re
from typing import TYPE_CHECKING

from panelgrade.exceptions import OCRError, StageError, ValidationError
from panelgrade.schemas.ocr import OCRResult, PagedOCRResult
from panelgrade.services.llm import ImagePart
from panelgrade.services.pipeline.base import LLMStage
from panelgrade.services.prompts import OCR_PROMPT
from panelgrade.utils.llm_parse import normalize_ocr

if TYPE_CHECKING:
    from panelgrade.config import Settings
    from panelgrade.services.key_pool import KeyRotationPool
    from panelgrade.services.llm import ProviderClient

logger = logging.getLogger(__name__)

_DATA_URL_RE = re.compile(r"^data:([^;]+);base64,(.+)$", re.DOTALL)


def parse_data_url(image: str) -> ImagePart:
    """Split a `data:<mime>;base64,<data>` URL into an ImagePart."""
    if not image:
        raise ValidationError("이미지가 제공되지 않았습니다.")
    match = _DATA_URL_RE.match(image)
    if not match:
        raise ValidationError("올바른 이미지 형식이 아닙니다.")
    return ImagePart(media_type=match.group(1), data=match.group(2))


def image_from_bytes(content: bytes, content_type: str | None) -> ImagePart:
    """Wrap an uploaded file as an ImagePart."""
    if not content:
        raise ValidationError("이미지가 제공되지 않았습니다.")
    if not content_type or not content_type.startswith("image/"):
        raise ValidationError("올바른 이미지 형식이 아닙니다.")
    return ImagePart(
        media_type=content_type,
        data=base64.b64encode(content).decode("ascii"),
    )


class OCRService(LLMStage):
    name = "ocr"
    max_tokens = 4096
    temperature = 0.0

    error_message = "OCR 처리 중 오류가 발생했습니다."
    empty_message = "OCR 결과를 가져올 수 없습니다."
    format_message = "OCR 응답 형식이 올바르지 않습니다."

    def __init__(self, client: ProviderClient, settings: Settings) -> None:
        super().__init__(client, settings)
        self._page_break = settings.page_break_marker

    def failure(self, message: str) -> StageError:
        return OCRError(message)

    async def perform_ocr(self, image_data_url: str, credential: str) -> OCRResult:
        return await self.recognize(parse_data_url(image_data_url), credential)

    async def recognize(self, image: ImagePart, credential: str) -> OCRResult:
        raw = await self.generate(OCR_PROMPT, credential, images=[image])
        result = normalize_ocr(self.parse(raw))
        logger.info(
            "OCR page: %d chars, confidence=%.2f", len(result.text), result.confidence
        )
        return result

    async def perform_ocr_pages(
        self, images: list[str], pool: KeyRotationPool
    ) -> PagedOCRResult:
        """OCR every page; all data URLs are validated before any call is made."""
        if not images:
            raise ValidationError("이미지가 제공되지 않았습니다.")
        parts = [parse_data_url(image) for image in images]
        return await self.recognize_pages(parts, pool)

    async def recognize_pages(
        self, images: list[ImagePart], pool: KeyRotationPool
    ) -> PagedOCRResult:
        if not images:
            raise ValidationError("이미지가 제공되지 않았습니다.")

        # pages are independent; the provider client caps how many are in flight
        tasks = [
            asyncio.create_task(
                self.recognize(image, pool.get_credential(i)), name=f"ocr-page-{i + 1}"
            )
            for i, image in enumerate(images)
        ]
        try:
            pages = await asyncio.gather(*tasks)
        except BaseException:
            for task in tasks:
                task.cancel()
            raise

        return PagedOCRResult(
            text=f"\n\n{self._page_break}\n\n".join(page.text for page in pages),
            confidence=sum(page.confidence for page in pages) / len(pages),
            has_formulas=any(page.has_formulas for page in pages),
            has_diagrams=any(page.has_diagrams for page in pages),
            page_count=len(pages),
        )
