"""
cim-extract FastAPI Application

Endpoints:
    POST /analyze         - Run the extraction orchestrator on one document
    GET  /health          - Liveness
    GET  /health/breakers - Circuit breaker states per provider family

Run:
    uvicorn cim_extract.api.app:app --port 8000
"""

import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, FastAPI, Request
from fastapi.responses import JSONResponse

from cim_extract.core.config import Settings, get_settings
from cim_extract.core.exceptions import ValidationError
from cim_extract.core.logging_config import get_logger, setup_logging
from cim_extract.core.models import ExtractionRequest
from cim_extract.orchestration.factory import build_orchestrator
from cim_extract.orchestration.orchestrator import VERSION, Orchestrator
from cim_extract.resilience.circuit_breaker import CircuitState

logger = logging.getLogger(__name__)

router = APIRouter()


def get_orchestrator(request: Request) -> Orchestrator:
    """Dependency: the process-wide orchestrator built at startup."""
    return request.app.state.orchestrator


@router.post("/analyze")
async def analyze(payload: ExtractionRequest, orchestrator: Orchestrator = Depends(get_orchestrator)):
    """
    Extract structured financial data from page images and/or document bytes.

    Returns:
        200 with {success: true, data} on success,
        400 on invalid input,
        500 with {success: false, error: {message, attempts}} when every attempt failed
    """
    try:
        result = await orchestrator.run(payload)
    except ValidationError as e:
        logger.warning(f"[API] Rejected {payload.file_name}: {e.message}")
        return JSONResponse(
            status_code=400,
            content={"success": False, "error": {"message": e.message, "attempts": []}},
        )

    return JSONResponse(status_code=200 if result.success else 500, content=result.to_dict())


@router.get("/health")
async def health() -> Dict[str, Any]:
    return {"status": "healthy", "version": VERSION}


@router.get("/health/breakers")
async def breaker_health(orchestrator: Orchestrator = Depends(get_orchestrator)) -> Dict[str, Any]:
    """Breaker snapshot; degraded while any breaker is not CLOSED."""
    breakers = orchestrator.breakers.status()
    degraded = any(b["state"] != CircuitState.CLOSED.value for b in breakers.values())
    return {"status": "degraded" if degraded else "healthy", "breakers": breakers}


def create_app(orchestrator: Optional[Orchestrator] = None, settings: Optional[Settings] = None) -> FastAPI:
    """
    Build the FastAPI app.

    Args:
        orchestrator: Pre-built orchestrator (tests); built from settings at startup otherwise
        settings: Settings override; defaults to get_settings()
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned: Optional[Orchestrator] = None
        if app.state.orchestrator is None:
            app_settings = settings or get_settings()
            setup_logging(level=app_settings.log_level, service_name="cim_extract_api")
            owned = build_orchestrator(app_settings)
            app.state.orchestrator = owned
            get_logger("cim_extract_api").info("cim-extract API ready")
        try:
            yield
        finally:
            if owned is not None:
                await owned.aclose()
                get_logger("cim_extract_api").info("cim-extract API shut down")

    app = FastAPI(title="cim-extract", version=VERSION, lifespan=lifespan)
    app.state.orchestrator = orchestrator
    app.include_router(router)
    return app


app = create_app()
