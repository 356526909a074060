from fastapi import APIRouter, Depends, File, UploadFile

from panelgrade.config import Settings
from panelgrade.dependencies import build_key_pool, get_ocr_service, get_settings
from panelgrade.exceptions import PayloadTooLargeError
from panelgrade.schemas.api import APIResponse, OCRPagesRequest, OCRRequest
from panelgrade.services.ocr import OCRService, image_from_bytes

router = APIRouter(prefix="/api/v1", tags=["ocr"])


@router.post("/ocr", response_model=APIResponse, response_model_exclude_none=True)
async def ocr(
    body: OCRRequest,
    service: OCRService = Depends(get_ocr_service),
    settings: Settings = Depends(get_settings),
) -> APIResponse:
    """Recognize the handwriting on one page image (data URL)."""
    pool = build_key_pool(settings)
    result = await service.perform_ocr(body.image, pool.primary)
    return APIResponse(success=True, data=result.model_dump(by_alias=True))


@router.post("/ocr/pages", response_model=APIResponse, response_model_exclude_none=True)
async def ocr_pages(
    body: OCRPagesRequest,
    service: OCRService = Depends(get_ocr_service),
    settings: Settings = Depends(get_settings),
) -> APIResponse:
    """Recognize several pages and join them with the page-break marker."""
    pool = build_key_pool(settings)
    result = await service.perform_ocr_pages(body.images, pool)
    return APIResponse(success=True, data=result.model_dump(by_alias=True))


@router.post("/ocr/upload", response_model=APIResponse, response_model_exclude_none=True)
async def ocr_upload(
    files: list[UploadFile] = File(...),
    service: OCRService = Depends(get_ocr_service),
    settings: Settings = Depends(get_settings),
) -> APIResponse:
    """Upload page images as multipart files, in page order."""
    images = []
    total = 0
    for upload in files:
        content = await upload.read()
        total += len(content)
        if total > settings.max_upload_size_bytes:
            raise PayloadTooLargeError(
                f"업로드 용량이 너무 큽니다. 최대 {settings.max_upload_size_mb}MB까지 가능합니다."
            )
        images.append(image_from_bytes(content, upload.content_type))

    pool = build_key_pool(settings)
    result = await service.recognize_pages(images, pool)
    return APIResponse(success=True, data=result.model_dump(by_alias=True))
