"""Main FastAPI application for the Service Catalog API."""

from fastapi import FastAPI
from fastapi.staticfiles import StaticFiles
from fastapi.middleware.cors import CORSMiddleware
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException
from contextlib import asynccontextmanager
from pathlib import Path

from service_catalog.core.config import settings
from service_catalog.core.errors import ServiceError
from service_catalog.core.logging_config import setup_logging, get_logger
from service_catalog.db.session import engine, init_models
from service_catalog.storage import build_storage
from service_catalog.api.v1 import services, health
from service_catalog.api.middleware import RequestLoggingMiddleware
from service_catalog.api.exception_handlers import (
    service_error_handler,
    http_exception_handler,
    validation_exception_handler,
    general_exception_handler,
)


# Initialize logging system (MUST be done before any logging calls)
setup_logging(debug=settings.is_debug_mode, json_logs=settings.use_json_logs)
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events (startup and shutdown).

    Handles:
    - Database schema initialization
    - Storage backend construction (one instance for the process)
    - Engine disposal on shutdown
    """
    logger.info(
        "application_startup",
        service=settings.SERVICE_NAME,
        version=settings.VERSION,
        environment=settings.ENVIRONMENT,
        debug_mode=settings.is_debug_mode,
        log_level=settings.LOG_LEVEL,
        storage_backend=settings.STORAGE_BACKEND,
    )

    await init_models(engine)
    logger.info("database_initialized", database_url=engine.url.render_as_string(hide_password=True))

    app.state.storage = build_storage(settings)
    logger.info("storage_backend_initialized", backend=settings.STORAGE_BACKEND)

    yield

    logger.info("application_shutdown_initiated")
    await engine.dispose()
    logger.info("application_shutdown", graceful=True)


app = FastAPI(
    title=settings.SERVICE_NAME,
    description="Service categories with image lifecycle management",
    version=settings.VERSION,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc"
)

# Exception handlers for structured error logging
app.add_exception_handler(ServiceError, service_error_handler)
app.add_exception_handler(StarletteHTTPException, http_exception_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(Exception, general_exception_handler)

app.add_middleware(RequestLoggingMiddleware, slow_request_threshold_ms=1000.0)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(services.router)
app.include_router(health.router)

# Mount static files for local storage backend
if settings.STORAGE_BACKEND == "local":
    storage_path = Path(settings.STORAGE_PATH)
    storage_path.mkdir(parents=True, exist_ok=True)

    app.mount(
        settings.STORAGE_PUBLIC_PATH,
        StaticFiles(directory=settings.STORAGE_PATH),
        name="uploads"
    )
    logger.info(
        "static_files_mounted",
        mount_path=settings.STORAGE_PUBLIC_PATH,
        directory=settings.STORAGE_PATH,
    )


@app.get("/")
async def root():
    """Root endpoint with service information."""
    return {
        "service": settings.SERVICE_NAME,
        "version": settings.VERSION,
        "documentation": "/docs",
        "health_check": "/api/v1/health",
        "storage_backend": settings.STORAGE_BACKEND,
        "limits": {
            "max_upload_size_mb": settings.MAX_UPLOAD_SIZE_MB,
            "allowed_mime_types": settings.ALLOWED_MIME_TYPES,
        },
    }
