"""
Rendering Service Application
=============================

FastAPI application serving an application's render callbacks over HTTP:
``POST /`` and ``POST /static`` for buffered renders, ``POST /stream`` for
streamed renders and ``GET /health``.
"""

from contextlib import asynccontextmanager
import uuid
from typing import AsyncGenerator, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
import uvicorn

from universal_renderer.config.settings import get_settings, Settings
from universal_renderer.config.logging import get_logger
from universal_renderer.models.schemas import ErrorResponse
from universal_renderer.service.handlers import RenderHandlers, RenderServiceError
from .routes import health, render, stream

logger = get_logger(__name__)


def create_app(handlers: RenderHandlers, settings: Optional[Settings] = None) -> FastAPI:
    """
    Application factory for the rendering service.

    Args:
        handlers: Render callbacks to serve
        settings: Settings; the global settings when omitted

    Returns:
        FastAPI application instance
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Application lifespan manager."""
        logger.info(
            "Starting rendering service",
            streaming=handlers.supports_streaming,
            environment=settings.environment,
        )
        try:
            yield
        finally:
            logger.info("Shutting down rendering service")

    app = FastAPI(
        title=settings.app_name,
        description="Server-side rendering service",
        version=settings.app_version,
        lifespan=lifespan,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
    )
    app.state.handlers = handlers
    app.state.settings = settings

    # Request ID middleware
    @app.middleware("http")
    async def add_request_id(request: Request, call_next) -> JSONResponse:  # type: ignore
        """Add request ID to all requests."""
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.request_id = request_id

        response = await call_next(request)  # type: ignore
        response.headers["X-Request-ID"] = request_id  # type: ignore

        return response  # type: ignore

    # Exception handlers
    @app.exception_handler(StarletteHTTPException)
    async def custom_http_exception_handler(
        request: Request, exc: StarletteHTTPException
    ) -> JSONResponse:
        """Custom HTTP exception handler with structured error response."""
        error_response = ErrorResponse(
            error=str(exc.detail),
            error_code=str(exc.status_code),
            details=None,
            request_id=getattr(request.state, "request_id", None),
        )

        logger.error(
            "HTTP exception",
            status_code=exc.status_code,
            detail=exc.detail,
            request_id=error_response.request_id,
        )

        return JSONResponse(
            status_code=exc.status_code, content=error_response.model_dump(mode="json")
        )

    @app.exception_handler(RenderServiceError)
    async def render_service_exception_handler(
        request: Request, exc: RenderServiceError
    ) -> JSONResponse:
        """Handle failures raised by the application's render callbacks."""
        error_response = ErrorResponse(
            error="Internal Server Error",
            error_code="RENDER_ERROR",
            details={"message": str(exc), "url": exc.url} if settings.debug else None,
            request_id=getattr(request.state, "request_id", None),
        )

        logger.error(
            "Render error",
            url=exc.url,
            error_message=str(exc),
            request_id=error_response.request_id,
            exc_info=exc.__cause__ or exc,
        )

        return JSONResponse(status_code=500, content=error_response.model_dump(mode="json"))

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """General exception handler for unexpected errors."""
        request_id = getattr(request.state, "request_id", None)
        error_response = ErrorResponse(
            error="Internal server error",
            error_code="INTERNAL_ERROR",
            details={"exception": str(exc)} if settings.debug else None,
            request_id=request_id,
        )

        logger.error(
            "Unhandled exception",
            exception=str(exc),
            request_id=request_id,
            exc_info=True,
        )

        response = JSONResponse(status_code=500, content=error_response.model_dump(mode="json"))
        if request_id:
            response.headers["X-Request-ID"] = request_id
        return response

    app.include_router(health.router)
    app.include_router(render.router)
    app.include_router(stream.router)

    return app


def run_server(handlers: RenderHandlers, settings: Optional[Settings] = None) -> None:
    """Run the rendering service with uvicorn."""
    settings = settings or get_settings()
    uvicorn.run(
        create_app(handlers, settings),
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
        log_config=None,
        access_log=True,
    )
