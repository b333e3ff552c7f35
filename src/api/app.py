"""
Main FastAPI application factory.
"""
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import settings
from .dependencies import get_logger
from .routes import callback, health
from .models import ErrorResponse


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup and shutdown events."""
    logger = get_logger()
    logger.info("Starting FastAPI application",
                environment=settings.environment,
                api_version=settings.api_version)
    yield
    logger.info("Shutting down FastAPI application")


def create_app() -> FastAPI:
    """
    Create and configure the FastAPI application.

    Returns:
        Configured FastAPI application instance
    """
    app = FastAPI(
        title=settings.app_name,
        description=settings.app_description,
        version=settings.app_version,
        docs_url=f"{settings.api_prefix}/docs",
        redoc_url=f"{settings.api_prefix}/redoc",
        openapi_url=f"{settings.api_prefix}/openapi.json",
        lifespan=lifespan
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=False,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
    )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        """Malformed callback bodies are client errors."""
        get_logger().warning("Request validation failed", path=request.url.path)
        return JSONResponse(
            status_code=400,
            content=ErrorResponse(
                success=False,
                message="Invalid request",
                error_code="INVALID_REQUEST",
                details={"errors": [error.get("msg") for error in exc.errors()]}
            ).model_dump(mode="json")
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """Global exception handler for unhandled errors."""
        get_logger().error("Unhandled exception", path=request.url.path, error=str(exc), exc_info=True)
        return JSONResponse(
            status_code=500,
            content=ErrorResponse(
                success=False,
                message="Internal server error",
                error_code="INTERNAL_ERROR",
                details={"error": str(exc)}
            ).model_dump(mode="json")
        )

    app.include_router(
        health.router,
        prefix=f"{settings.api_prefix}/{settings.api_version}"
    )

    app.include_router(
        callback.router,
        prefix=f"{settings.api_prefix}/{settings.api_version}"
    )

    @app.get("/")
    async def root():
        """Root endpoint with API information."""
        return {
            "message": "Turnover callback API is running",
            "version": settings.app_version,
            "environment": settings.environment,
            "docs": f"{settings.api_prefix}/docs"
        }

    return app


app = create_app()
