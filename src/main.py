"""FastAPI application initialization."""

from contextlib import asynccontextmanager
from uuid import uuid4

from dotenv import load_dotenv

# Load environment variables before anything else
load_dotenv()

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from src.api.middleware import CorrelationIdMiddleware
from src.api.routes import router
from src.api.suggestions import maintenance_router
from src.api.suggestions import router as suggestions_router
from src.config import get_settings
from src.models.response import ErrorResponse
from src.services.logging_service import configure_logging, get_logger


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup/shutdown events."""
    # Startup
    settings = get_settings()
    configure_logging(settings.log_level)
    logger = get_logger("main")

    try:
        from src.database import init_database, run_migrations

        await init_database()
        applied = await run_migrations()
        logger.info("database_initialized", migrations_applied=applied)
    except Exception as e:
        logger.warning(
            "database_initialization_failed",
            error=str(e),
            note="Continuing without database - suggestion features will be unavailable",
        )

    maintenance_service = None
    if settings.maintenance_enabled:
        try:
            from src.services.maintenance_service import MaintenanceService

            maintenance_service = MaintenanceService()
            maintenance_service.start()
            app.state.maintenance_service = maintenance_service
        except Exception as e:
            logger.warning(
                "maintenance_service_start_failed",
                error=str(e),
                note="Continuing without maintenance - expired suggestions will not be cleaned up",
            )

    logger.info(
        "application_started",
        log_level=settings.log_level,
        max_suggestions=settings.max_suggestions,
    )

    yield

    # Shutdown
    if maintenance_service is not None:
        try:
            await maintenance_service.stop()
        except Exception as e:
            logger.warning("maintenance_service_stop_failed", error=str(e))

    try:
        from src.database import close_database

        await close_database()
    except Exception as e:
        logger.warning("database_close_failed", error=str(e))

    logger.info("application_shutdown")


app = FastAPI(
    title="Task Suggestions API",
    description="Pattern-based task suggestions that adapt to user feedback",
    version="0.1.0",
    lifespan=lifespan,
)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Handle Pydantic validation errors with user-friendly messages.

    Returns 400 Bad Request with:
    - What happened (error type)
    - Why (validation details)
    - What to do (implied in details)
    """
    correlation_id = getattr(request.state, "correlation_id", None) or str(uuid4())
    logger = structlog.get_logger()

    errors = exc.errors()
    if errors:
        first_error = errors[0]
        field = ".".join(str(loc) for loc in first_error.get("loc", ["unknown"]))
        message = first_error.get("msg", "Validation failed")
        detail = f"Field '{field}': {message}"
    else:
        detail = "Request validation failed"

    logger.warning(
        "validation_error",
        correlation_id=correlation_id,
        detail=detail,
    )

    return JSONResponse(
        status_code=400,
        content=ErrorResponse(
            error="Validation error", detail=detail, correlation_id=correlation_id
        ).model_dump(),
        headers={"X-Correlation-Id": correlation_id},
    )


# CORS middleware for browser clients
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_middleware(CorrelationIdMiddleware)

app.include_router(suggestions_router)
app.include_router(maintenance_router)
app.include_router(router)
