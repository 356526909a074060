"""Map PanelgradeError and request validation failures to the JSON envelope."""

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from panelgrade.exceptions import PanelgradeError, PayloadTooLargeError, ValidationError

logger = logging.getLogger(__name__)


def error_response(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "error": message})


async def request_validation_error_handler(request: Request, exc: RequestValidationError):
    logger.info("%s %s rejected: %s", request.method, request.url.path, exc.errors())
    return error_response(400, "요청 형식이 올바르지 않습니다.")


async def panelgrade_error_handler(request: Request, exc: PanelgradeError):
    if isinstance(exc, ValidationError):
        return error_response(400, str(exc))
    if isinstance(exc, PayloadTooLargeError):
        logger.info("%s %s rejected: %s", request.method, request.url.path, exc)
        return error_response(413, str(exc))
    logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    return error_response(500, str(exc))


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(RequestValidationError, request_validation_error_handler)
    app.add_exception_handler(PanelgradeError, panelgrade_error_handler)
