"""
FormDesk API Server - REST API for form records and follow-up actions.
"""
# ruff: noqa: S104
# S104: Development server binding (guarded by __name__ check)

import logging
import os

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from formdesk import __version__, config
from formdesk.errors import ConfigurationError, NotFound, ValidationConflict
from formdesk.observability import CorrelationIdMiddleware, configure_logging
from formdesk.services import get_services

from .forms_router import router as forms_router
from .response_models import ConflictDetail, HealthResponse

logger = logging.getLogger(__name__)


def create_app() -> FastAPI:
    app = FastAPI(
        title="FormDesk API",
        description="Multilingual form records, dedup and follow-up documents",
        version=__version__,
    )

    # CORS middleware - configurable via CORS_ORIGINS env var
    cors_origins_env = os.getenv("CORS_ORIGINS", "*")
    cors_origins = ["*"] if cors_origins_env == "*" else [o.strip() for o in cors_origins_env.split(",")]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(CorrelationIdMiddleware)

    @app.exception_handler(NotFound)
    async def not_found_handler(request: Request, exc: NotFound):
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    @app.exception_handler(ValidationConflict)
    async def conflict_handler(request: Request, exc: ValidationConflict):
        detail = ConflictDetail(
            message=exc.message,
            rule_id=exc.rule_id,
            existing_record_id=exc.existing_record_id,
        )
        return JSONResponse(status_code=409, content={"detail": detail.model_dump()})

    @app.exception_handler(ConfigurationError)
    async def configuration_error_handler(request: Request, exc: ConfigurationError):
        logger.error(f"Configuration error on {request.url.path}: {exc}")
        return JSONResponse(status_code=500, content={"detail": str(exc)})

    @app.get("/api/health", response_model=HealthResponse)
    async def health():
        return HealthResponse(status="healthy", version=__version__, forms=get_services().registry.keys())

    app.include_router(forms_router, prefix="/api")
    return app


app = create_app()


if __name__ == "__main__":
    configure_logging(config.LOG_LEVEL)
    port = int(os.getenv("PORT", "8420"))
    uvicorn.run(app, host="0.0.0.0", port=port)
