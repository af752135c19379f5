from fastapi import FastAPI, Request
from contextlib import asynccontextmanager
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import os
from dotenv import load_dotenv

# Load environment variables before settings are read
load_dotenv()

# Import core components
from signflow.core.logging_config import setup_logging
from signflow.core.settings import settings
from signflow.middleware.logging import LoggingMiddleware

# Import configuration
from signflow.config import init_firebase

# Import route modules
from signflow.routes import conventions, health, scheduled_tasks, verify
from signflow.exceptions import (
    UnauthorizedException, ForbiddenException,
    NotFoundException, ValidationException,
    CooldownActiveError, WorkflowError,
)
from signflow.services.factory import reset_services

# Set up logging first
logger = setup_logging()

_docs_enabled = settings.is_development or os.getenv("SHOW_DOCS", "").lower() in ("1", "true", "yes")


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup logic
    logger.info("=" * 50)
    logger.info("Internship agreement signature API starting up")
    logger.info(f"Environment: {settings.environment}")
    logger.info(f"Store backend: {settings.store_backend}{' (demo, nothing persisted)' if settings.is_demo else ''}")
    logger.info(f"CORS origins: {settings.cors_origins}")
    logger.info(f"SQL Debug: {'enabled' if settings.sql_debug else 'disabled'}")

    from signflow.services.email import get_sendgrid_client
    email_status = "configured" if get_sendgrid_client() else "not configured (logging only)"
    logger.info(f"SendGrid Email: {email_status}")
    logger.info("=" * 50)

    yield
    # Shutdown logic
    reset_services()
    logger.info("Signature API shutting down gracefully")

app = FastAPI(
    title="Signflow API",
    description="Multi-party signature workflow for internship agreements",
    version="1.0.0",
    docs_url="/docs" if _docs_enabled else None,
    redoc_url="/redoc" if _docs_enabled else None,
    lifespan=lifespan,
)

# Add middleware in correct order (last added = first executed)
app.add_middleware(LoggingMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=settings.cors_origins != ["*"],
    allow_methods=["GET", "POST", "PUT", "DELETE", "PATCH", "OPTIONS"],
    allow_headers=["*"],
)

# Initialize Firebase (skip in test environment)
if os.getenv("ENV") != "test":
    init_firebase()

# Include routers
app.include_router(health.router)
app.include_router(conventions.router)
app.include_router(verify.router)
app.include_router(scheduled_tasks.router)


def _error_response(request: Request, status_code: int, detail: str, **extra) -> JSONResponse:
    correlation_id = getattr(request.state, 'correlation_id', 'unknown')
    return JSONResponse(
        status_code=status_code,
        content={"detail": detail, "correlation_id": correlation_id, **extra}
    )


# Exception handlers
CLIENT_ERROR_STATUS = {
    UnauthorizedException: 401,
    ForbiddenException: 403,
    ValidationException: 400,
    NotFoundException: 404,
}


async def client_error_handler(request: Request, exc: Exception):
    status_code = CLIENT_ERROR_STATUS[type(exc)]
    correlation_id = getattr(request.state, 'correlation_id', 'unknown')
    logger.warning(f"[{correlation_id}] {status_code} {type(exc).__name__} on {request.url.path}: {exc.detail}")
    return _error_response(request, status_code, exc.detail)


for _exc_class in CLIENT_ERROR_STATUS:
    app.add_exception_handler(_exc_class, client_error_handler)


@app.exception_handler(WorkflowError)
async def workflow_exception_handler(request: Request, exc: WorkflowError):
    correlation_id = getattr(request.state, 'correlation_id', 'unknown')
    logger.warning(f"[{correlation_id}] {type(exc).__name__} on {request.url.path}: {exc.detail}")
    extra = {"error": type(exc).__name__}
    if exc.convention_id:
        extra["convention_id"] = exc.convention_id
    if isinstance(exc, CooldownActiveError):
        extra["retry_after_seconds"] = exc.retry_after_seconds
        response = _error_response(request, exc.status_code, exc.detail, **extra)
        response.headers["Retry-After"] = str(exc.retry_after_seconds)
        return response
    return _error_response(request, exc.status_code, exc.detail, **extra)

@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    correlation_id = getattr(request.state, 'correlation_id', 'unknown')
    logger.error(f"[{correlation_id}] Unhandled exception on {request.url.path}: {str(exc)}", exc_info=True)

    if settings.is_development:
        return _error_response(request, 500, "Internal server error", error=str(exc), type=type(exc).__name__)
    return _error_response(request, 500, "Internal server error")

# Root endpoint
@app.get("/", tags=["Root"])
async def root():
    """Root endpoint with API information."""
    return {
        "message": "Signflow API",
        "version": "1.0.0",
        "environment": settings.environment,
        "docs_url": "/docs" if _docs_enabled else None,
        "health_check": "/health",
        "status": "running"
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        app,
        host="0.0.0.0",
        port=8000,
        log_level="info" if settings.is_development else "warning"
    )
