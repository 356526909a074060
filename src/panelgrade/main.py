import logging
from contextlib import asynccontextmanager

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from panelgrade.config import settings
from panelgrade.errors import register_error_handlers
from panelgrade.routers import evaluation, ocr
from panelgrade.services.llm import create_client
from panelgrade.services.ocr import OCRService
from panelgrade.services.pipeline import EvaluationOrchestrator

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create the provider client and services on startup, close the client on shutdown."""
    logger.info("Starting Panelgrade service ...")

    llm_client = create_client(settings)
    try:
        app.state.settings = settings
        app.state.llm_client = llm_client
        app.state.orchestrator = EvaluationOrchestrator(llm_client, settings)
        app.state.ocr = OCRService(llm_client, settings)

        if not settings.api_keys:
            logger.warning("No LLM API key configured; evaluation requests will fail")
        logger.info(
            "Panelgrade service ready (provider=%s, model=%s, keys=%d).",
            llm_client.name,
            llm_client.model,
            len(settings.api_keys),
        )
        yield
    finally:
        logger.info("Shutting down Panelgrade service ...")
        await llm_client.close()


app = FastAPI(
    title="Panelgrade",
    description="Multi-rater LLM evaluation of handwritten exam answers",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(evaluation.router)
app.include_router(ocr.router)
register_error_handlers(app)
