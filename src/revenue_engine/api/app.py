"""FastAPI application factory."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from revenue_engine.api.routes import (
    coach_groups_router,
    health_router,
    jobs_router,
    payouts_router,
    reconciliation_router,
    revenue_splits_router,
    tds_router,
)
from revenue_engine.config import get_settings
from revenue_engine.database import dispose_db, init_db
from revenue_engine.errors import EngineError
from revenue_engine.logging_config import configure_logging
from revenue_engine.services.audit import to_json_safe

logger = logging.getLogger(__name__)

ERROR_STATUS = {
    "VALIDATION_ERROR": status.HTTP_400_BAD_REQUEST,
    "NOT_FOUND": status.HTTP_404_NOT_FOUND,
    "DUPLICATE_SPLIT": status.HTTP_409_CONFLICT,
    "DUPLICATE_SCHEDULE": status.HTTP_409_CONFLICT,
    "DUPLICATE_EARNINGS_UPDATE": status.HTTP_409_CONFLICT,
    "CONCURRENT_UPDATE": status.HTTP_409_CONFLICT,
    "INVALID_TRANSITION": status.HTTP_409_CONFLICT,
    "CONFIGURATION_ERROR": status.HTTP_422_UNPROCESSABLE_ENTITY,
    "RAIL_ERROR": status.HTTP_502_BAD_GATEWAY,
    "CAPTURE_FEED_ERROR": status.HTTP_502_BAD_GATEWAY,
}


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler."""
    settings = get_settings()
    configure_logging(settings.log_level)
    init_db()
    logger.info("revenue engine %s starting", settings.engine_version)
    yield
    dispose_db()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="Revenue Engine API",
        description="Coaching revenue split, payout scheduling and reconciliation",
        version="1.0.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(EngineError)
    async def engine_error_handler(request: Request, exc: EngineError) -> JSONResponse:
        """Map domain errors to HTTP status codes."""
        status_code = ERROR_STATUS.get(exc.code, status.HTTP_500_INTERNAL_SERVER_ERROR)
        if status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc)
        return JSONResponse(
            status_code=status_code,
            content={
                "detail": exc.message,
                "code": exc.code,
                "details": to_json_safe(exc.details),
            },
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Handle unexpected exceptions."""
        logger.exception("unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "detail": "An unexpected error occurred",
                "code": "INTERNAL_ERROR",
            },
        )

    app.include_router(health_router)
    for router in (
        tds_router,
        payouts_router,
        reconciliation_router,
        coach_groups_router,
        revenue_splits_router,
        jobs_router,
    ):
        app.include_router(router, prefix="/api/v1")

    return app


# Default app instance for uvicorn
app = create_app()
