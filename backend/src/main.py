"""
FastAPI application entry point for the study notification engine.

This module initializes the FastAPI application with:
- Background tasks (delivery dispatcher, behavioral trigger scanner)
- Exception handlers for consistent error responses
- Logging configuration

Environment Variables:
    STUDYNOTIFY_DB_URL: Database URL
    STUDYNOTIFY_DB_POOL_SIZE: PostgreSQL connection pool size (default: 10)
    STUDYNOTIFY_ENV: Environment (production/development, default: development)
    STUDYNOTIFY_LOG_LEVEL: Log level (DEBUG/INFO/WARNING/ERROR/CRITICAL, default: INFO)
    RUN_BACKGROUND_TASKS: Start dispatcher and scanner with the app (default: true)
"""

import asyncio
from contextlib import asynccontextmanager
from typing import Any, Dict

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError

from backend.src.config.settings import get_settings
from backend.src.db.database import SessionLocal, dispose_engine
from backend.src.services.behavioral_scanner import build_scan_cycle
from backend.src.services.delivery_dispatcher import build_dispatch_cycle
from backend.src.services.exceptions import NotFoundError
from backend.src.services.exceptions import ValidationError as ServiceValidationError
from backend.src.utils.logging_config import get_logger, init_logging
from backend.src.utils.recurring_task import RecurringTask


APP_VERSION = "1.0.0"


def build_background_tasks(session_factory=SessionLocal, settings=None) -> Dict[str, RecurringTask]:
    """
    Build the dispatcher and scanner tasks.

    The scanner does blocking database work, so its cycle runs in a worker
    thread; the dispatcher cycle is async and runs on the event loop.
    """
    settings = settings or get_settings()
    scan_cycle = build_scan_cycle(session_factory, settings=settings)

    return {
        "dispatcher": RecurringTask(
            name="delivery-dispatcher",
            cycle=build_dispatch_cycle(session_factory, settings=settings),
            interval_seconds=settings.dispatch_interval_seconds,
        ),
        "scanner": RecurringTask(
            name="behavioral-scanner",
            cycle=lambda: asyncio.to_thread(scan_cycle),
            interval_seconds=settings.scan_interval_seconds,
        ),
    }


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan context manager.

    Handles startup and shutdown events:
    - Startup: Start the dispatcher and scanner tasks
    - Shutdown: Stop them, letting an in-flight cycle finish

    Args:
        app: FastAPI application instance

    Yields:
        Control to the application
    """
    logger = get_logger("api")
    logger.info("Starting study notification engine")

    settings = get_settings()
    app.state.background_tasks = {}
    if settings.run_background_tasks:
        app.state.background_tasks = build_background_tasks(settings=settings)
        for task in app.state.background_tasks.values():
            task.start()
        logger.info(
            "Background tasks started",
            extra={"tasks": sorted(app.state.background_tasks)},
        )
    else:
        logger.info("Background tasks disabled (RUN_BACKGROUND_TASKS=false)")

    yield

    # Shutdown
    logger.info("Shutting down study notification engine")
    for task in app.state.background_tasks.values():
        await task.stop()
    dispose_engine()


# Initialize logging before creating app
init_logging()

app = FastAPI(
    title="Study Notification API",
    description="Schedules, deduplicates and delivers study notifications "
                "over push, email and in-app channels.",
    version=APP_VERSION,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
)


# Exception handlers


@app.exception_handler(ValidationError)
async def validation_exception_handler(
    request: Request, exc: ValidationError
) -> JSONResponse:
    """Handle Pydantic validation errors raised outside request parsing."""
    logger = get_logger("api")
    logger.warning(
        "Validation error",
        extra={
            "path": request.url.path,
            "method": request.method,
            "errors": exc.errors(),
        }
    )

    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "error": "Validation Error",
            "message": "Request validation failed",
            "details": exc.errors(),
        }
    )


@app.exception_handler(ServiceValidationError)
async def service_validation_exception_handler(
    request: Request, exc: ServiceValidationError
) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "error": "Validation Error",
            "message": exc.message,
            "field": exc.field,
        }
    )


@app.exception_handler(NotFoundError)
async def not_found_exception_handler(
    request: Request, exc: NotFoundError
) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_404_NOT_FOUND,
        content={
            "error": "Not Found",
            "message": str(exc),
        }
    )


@app.exception_handler(SQLAlchemyError)
async def database_exception_handler(
    request: Request, exc: SQLAlchemyError
) -> JSONResponse:
    """
    Handle SQLAlchemy database errors.

    Args:
        request: HTTP request
        exc: SQLAlchemy exception

    Returns:
        JSON response with database error message
    """
    logger = get_logger("db")
    logger.error(
        "Database error",
        extra={
            "path": request.url.path,
            "method": request.method,
            "error": str(exc),
        }
    )

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": "Database Error",
            "message": "An error occurred while accessing the database. "
                      "Please try again later.",
        }
    )


# Health check endpoint


@app.get("/health", tags=["Health"])
async def health_check() -> Dict[str, Any]:
    """
    Health check endpoint.

    Returns:
        Health status and the state of each background task
    """
    tasks = getattr(app.state, "background_tasks", {})
    return {
        "status": "healthy",
        "service": "studynotify",
        "version": APP_VERSION,
        "background_tasks": {
            name: {"running": task.is_running, "cycles": task.cycle_count}
            for name, task in tasks.items()
        },
    }


# API routers
from backend.src.api import notifications

app.include_router(notifications.router, prefix="/api")
