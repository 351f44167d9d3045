"""
Main FastAPI application.
"""
import logging
import uuid
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from proctor.api.v1.api import api_router
from proctor.core.analytics import AnalyticsTracker
from proctor.core.config import settings
from proctor.core.error_tracking import (
    capture_error,
    init_error_tracking,
    shutdown_error_tracking,
)
from proctor.core.exceptions import (
    InvalidSessionWindowError,
    NotFoundError,
    ProctorError,
    StateConflictError,
)
from proctor.core.logging_config import setup_logging
from proctor.middleware import RequestLoggingMiddleware
from proctor.models import async_engine, create_all_tables

# Initialize logging configuration at startup
setup_logging()

logger = logging.getLogger(__name__)

# Domain error -> HTTP status
_DOMAIN_ERROR_STATUS = {
    NotFoundError: status.HTTP_404_NOT_FOUND,
    StateConflictError: status.HTTP_409_CONFLICT,
    InvalidSessionWindowError: status.HTTP_400_BAD_REQUEST,
}


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Application lifespan event handler.

    - On startup: initializes error tracking and, if configured, creates tables
    - On shutdown: flushes error tracking and disposes the database engine
    """
    init_error_tracking()

    if settings.DB_CREATE_ALL:
        await create_all_tables()
        logger.info("Database tables ensured")

    yield

    shutdown_error_tracking()
    await async_engine.dispose()
    logger.info("Application shut down")


tags_metadata = [
    {
        "name": "health",
        "description": "Health check endpoints for monitoring application status",
    },
    {
        "name": "sessions",
        "description": "Session scheduling, status changes and participant registration",
    },
    {
        "name": "attempts",
        "description": "Attempt lifecycle (start, answer, finish) and fresh scoring",
    },
    {
        "name": "live-test",
        "description": "Live monitoring aggregates for admin dashboards",
    },
    {
        "name": "users",
        "description": "Per-user score reporting",
    },
]


def create_application() -> FastAPI:
    """
    Create and configure the FastAPI application.
    """
    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        lifespan=lifespan,
        description=(
            "**Proctor API** - session state machine, live progress and scoring "
            "for proctored psychometric test sessions.\n\n"
            "Time-based transitions (session expiry, attempt auto-completion, "
            "no-show assignment) are evaluated on every read; there is no "
            "background scheduler.\n\n"
            "## Authentication\n\n"
            "Session management and live monitoring endpoints require the "
            "`X-Admin-Token` header."
        ),
        docs_url=f"{settings.API_V1_PREFIX}/docs",
        redoc_url=f"{settings.API_V1_PREFIX}/redoc",
        openapi_url=f"{settings.API_V1_PREFIX}/openapi.json",
        openapi_tags=tags_metadata,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", "X-Admin-Token", "X-Request-ID"],
    )
    app.add_middleware(RequestLoggingMiddleware, slow_request_threshold=1.0)

    app.include_router(api_router, prefix=settings.API_V1_PREFIX)

    @app.exception_handler(ProctorError)
    async def domain_exception_handler(request: Request, exc: ProctorError):
        """
        Map domain errors (not found, state conflict, invalid window) to HTTP.
        """
        status_code = _DOMAIN_ERROR_STATUS.get(
            type(exc), status.HTTP_400_BAD_REQUEST
        )
        logger.info(
            f"{exc.__class__.__name__} on {request.method} {request.url.path}: "
            f"{exc.detail}"
        )
        AnalyticsTracker.track_api_error(
            method=request.method,
            path=str(request.url.path),
            error_type=exc.__class__.__name__,
            error_message=exc.detail,
        )
        return JSONResponse(status_code=status_code, content={"detail": exc.detail})

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        """
        Handle HTTP exceptions and track them in analytics.
        """
        if exc.status_code >= 400:
            AnalyticsTracker.track_api_error(
                method=request.method,
                path=str(request.url.path),
                error_type="HTTPException",
                error_message=str(exc.detail),
            )
        if exc.status_code >= 500:
            capture_error(
                exc,
                context={
                    "path": str(request.url.path),
                    "method": request.method,
                    "status_code": exc.status_code,
                },
                tags={"error_type": "HTTPException"},
            )

        return JSONResponse(
            status_code=exc.status_code,
            content={"detail": exc.detail},
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request, exc: RequestValidationError
    ):
        """
        Handle request validation errors.
        """
        errors = [
            {
                "loc": list(error.get("loc", [])),
                "msg": str(error.get("msg", "")),
                "type": str(error.get("type", "")),
            }
            for error in exc.errors()
        ]

        AnalyticsTracker.track_api_error(
            method=request.method,
            path=str(request.url.path),
            error_type="ValidationError",
            error_message=str(errors),
        )

        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content={"detail": errors},
        )

    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception):
        """
        Handle unexpected exceptions.

        Each response carries an error_id that is also logged with the full
        traceback, so support can find the matching log entry.
        """
        error_id = str(uuid.uuid4())

        logger.exception(
            f"Unhandled exception [error_id={error_id}]: {exc}",
            extra={"error_id": error_id},
        )

        AnalyticsTracker.track_api_error(
            method=request.method,
            path=str(request.url.path),
            error_type=exc.__class__.__name__,
            error_message=str(exc),
        )

        capture_error(
            exc,
            context={
                "path": str(request.url.path),
                "method": request.method,
                "error_id": error_id,
            },
            tags={"error_type": exc.__class__.__name__},
        )

        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "detail": "Internal server error",
                "error_id": error_id,
            },
        )

    return app


app = create_application()


@app.get("/")
async def root():
    """
    Root endpoint.
    """
    return {
        "message": f"Welcome to {settings.APP_NAME}",
        "version": settings.APP_VERSION,
        "docs": f"{settings.API_V1_PREFIX}/docs",
    }
