"""
FastAPI application entry point for the Hacienda electronic document broker
"""
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException
from contextlib import asynccontextmanager
import logging

from app.core.config import settings
from app.core.database import health_check as database_health_check
from app.core.database import init_db
from app.core.error_handler import error_handler
from app.core.logging import audit_logger, configure_logging
from app.api.v1.api import api_router
from app.middleware.logging import LoggingMiddleware
from app.utils.error_responses import APIError

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events"""
    # Startup
    configure_logging()
    await init_db()
    audit_logger.log_system_event(
        "startup",
        "Application started",
        additional_data={"environment": settings.HACIENDA_ENVIRONMENT, "signing_mode": settings.SIGNING_MODE}
    )
    yield
    # Shutdown
    audit_logger.log_system_event("shutdown", "Application stopped")


def create_application() -> FastAPI:
    """Create and configure FastAPI application"""
    app = FastAPI(
        title=settings.PROJECT_NAME,
        description="Validates, keys, signs and submits Costa Rica electronic documents to Hacienda",
        version=settings.VERSION,
        openapi_url=f"{settings.API_V1_STR}/openapi.json",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan
    )

    # Set up CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.get_cors_origins(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Correlation ids and request/response logging
    app.add_middleware(LoggingMiddleware)

    @app.exception_handler(APIError)
    async def api_exception_handler(request: Request, exc: APIError):
        return await error_handler.handle_exception(request, exc)

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        return await error_handler.handle_exception(request, exc)

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        return await error_handler.handle_exception(request, exc)

    # Add global exception handler
    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """Global exception handler for all unhandled exceptions"""
        return await error_handler.handle_exception(request, exc)

    # Include API router
    app.include_router(api_router, prefix=settings.API_V1_STR)

    return app


app = create_application()


@app.get("/health")
async def health_check():
    """Health check endpoint"""
    return {"status": "healthy", "service": "hacienda-document-broker"}


@app.get("/health/detailed")
async def detailed_health_check():
    """Database connectivity and error counts since startup"""
    database_ok = database_health_check()
    return {
        "status": "healthy" if database_ok else "unhealthy",
        "service": "hacienda-document-broker",
        "components": {"database": "healthy" if database_ok else "unhealthy"},
        "errors": error_handler.get_error_statistics()
    }
