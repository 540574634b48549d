"""
FastAPI Main Application Entry Point.

This module initializes the FastAPI application with:
- CORS middleware
- Health check endpoint
- Schedule and scheduler routers under /api
- Scheduler lifecycle under the lifespan (leader-only via lock)
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from ..config import get_settings
from ..scheduler.errors import (
    ConcurrentClaimLost,
    InvalidTransition,
    NotFound,
    SchedulerError,
    ValidationError,
)
from .schemas import ErrorResponse, HealthResponse

logger = logging.getLogger(__name__)


OPENAPI_TAGS = [
    {
        "name": "Health",
        "description": "Health check and status endpoints",
    },
    {
        "name": "Schedules",
        "description": "Cron schedules for container actions. Create, update, pause, trigger and inspect history.",
    },
    {
        "name": "Scheduler",
        "description": "Scheduler operational endpoints.",
    },
]

API_PREFIX = "/api"


def _safe_db_ref(url: str) -> str:
    from sqlalchemy.engine.url import make_url

    parsed = make_url(url)
    if parsed.drivername.startswith("sqlite"):
        return parsed.database or "<memory>"
    host = parsed.host or ""
    port = f":{parsed.port}" if parsed.port else ""
    user = f"{parsed.username}@" if parsed.username else ""
    return f"{parsed.drivername}://{user}{host}{port}/{parsed.database or ''}"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Startup: ensure the schema exists, then try to become scheduler leader.
    Shutdown: stop the loop and release the lock.
    """
    settings = get_settings()
    logger.info("Starting %s v%s", settings.app_name, settings.app_version)

    from ..database.bootstrap import init_db
    from ..database.engine import get_database_url

    logger.info("Database: %s", _safe_db_ref(get_database_url()))
    init_db()

    from .scheduler_runtime import start_scheduler, stop_scheduler

    start_scheduler()

    yield

    stop_scheduler()
    logger.info("Shutting down %s", settings.app_name)


def create_app() -> FastAPI:
    """
    FastAPI application factory.

    Returns:
        FastAPI: Configured FastAPI application instance
    """
    settings = get_settings()

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="Cron-driven container actions: restart, rebuild, scale, snapshot and signal on a schedule.",
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url=f"{API_PREFIX}/openapi.json",
        openapi_tags=OPENAPI_TAGS,
        lifespan=lifespan,
    )

    allow_origins = settings.cors_origins_list
    # If allow_origins is wildcard, credentials must be disabled to avoid invalid CORS responses.
    allow_credentials = False if allow_origins == ["*"] else True
    app.add_middleware(
        CORSMiddleware,
        allow_origins=allow_origins,
        allow_credentials=allow_credentials,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_exception_handlers(app)
    register_routers(app)

    return app


def _status_for(exc: SchedulerError) -> int:
    if isinstance(exc, ValidationError):
        return 400
    if isinstance(exc, NotFound):
        return 404
    if isinstance(exc, (InvalidTransition, ConcurrentClaimLost)):
        return 409
    return 500


def register_exception_handlers(app: FastAPI) -> None:
    """Register global exception handlers."""

    @app.exception_handler(SchedulerError)
    async def scheduler_error_handler(request: Request, exc: SchedulerError):
        status_code = _status_for(exc)
        if status_code >= 500:
            logger.error("Unhandled scheduler error on %s %s: %s", request.method, request.url.path, exc)
        body = ErrorResponse(error={"type": exc.error_type, "message": exc.message})
        return JSONResponse(status_code=status_code, content=body.model_dump(exclude_none=True))

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        errors = [
            {
                "loc": [str(part) for part in err.get("loc", ())],
                "msg": str(err.get("msg", "")),
                "type": str(err.get("type", "")),
            }
            for err in exc.errors()
        ]
        return JSONResponse(
            status_code=400,
            content={
                "success": False,
                "error": {"type": "validation_error", "message": "Request validation failed"},
                "validation_errors": errors,
            },
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """Handle unexpected exceptions."""
        settings = get_settings()
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)

        error_response = {
            "success": False,
            "error": {
                "type": "internal_error",
                "message": "An unexpected error occurred"
            }
        }

        if settings.expose_error_details:
            error_response["error"]["details"] = str(exc)

        return JSONResponse(
            status_code=500,
            content=error_response
        )


def register_routers(app: FastAPI) -> None:
    """Register all API routers under /api."""

    @app.get(
        f"{API_PREFIX}/health",
        tags=["Health"],
        summary="Health Check",
        description="Check if the API is running. Returns service info, scheduler state and timestamp.",
        response_model=HealthResponse,
    )
    def health_check() -> HealthResponse:
        settings = get_settings()
        from .scheduler_runtime import get_status

        sched = get_status()
        return HealthResponse(
            status="healthy",
            service=settings.app_name,
            version=settings.app_version,
            timestamp=datetime.now(timezone.utc),
            scheduler_running=sched.running,
            scheduler_is_leader=sched.is_leader,
            scheduled_jobs_count=sched.scheduled_jobs_count,
        )

    @app.get("/", include_in_schema=False)
    def root():
        return JSONResponse(
            content={
                "message": f"Welcome to {get_settings().app_name}",
                "docs": "/docs",
                "health": f"{API_PREFIX}/health",
            }
        )

    from .routers import scheduler_router, schedules_router

    app.include_router(schedules_router, prefix=API_PREFIX)
    app.include_router(scheduler_router, prefix=API_PREFIX)


# Create the application instance
app = create_app()
