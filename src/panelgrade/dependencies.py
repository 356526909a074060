from fastapi import Request

from panelgrade.config import Settings
from panelgrade.services.key_pool import KeyRotationPool
from panelgrade.services.llm import ProviderClient
from panelgrade.services.ocr import OCRService
from panelgrade.services.pipeline import EvaluationOrchestrator


def get_settings(request: Request) -> Settings:
    """Retrieve the Settings instance from app state."""
    return request.app.state.settings


def get_orchestrator(request: Request) -> EvaluationOrchestrator:
    """Retrieve the EvaluationOrchestrator singleton from app state."""
    return request.app.state.orchestrator


def get_ocr_service(request: Request) -> OCRService:
    """Retrieve the OCRService singleton from app state."""
    return request.app.state.ocr


def get_provider_client(request: Request) -> ProviderClient:
    """Retrieve the ProviderClient singleton from app state."""
    return request.app.state.llm_client


def build_key_pool(settings: Settings) -> KeyRotationPool:
    """Fresh pool per request; raises MissingCredentialError without keys."""
    return KeyRotationPool.from_settings(settings)
