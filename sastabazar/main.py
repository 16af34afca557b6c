"""
sastabazar payments service - application factory

Run locally with:
    uvicorn sastabazar.main:create_app --factory --reload
"""

import logging
import uuid
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from . import __version__
from .api.v1 import api_v1_router
from .core.config import Settings, get_settings, validate_payment_config
from .core.dependencies import PaymentContainer, build_container
from .core.exceptions import SastabazarException, ValidationError, create_error_response, sastabazar_exception_handler
from .core.logging_config import set_request_id, setup_logging

logger = logging.getLogger(__name__)


def create_app(settings: Optional[Settings] = None, container: Optional[PaymentContainer] = None) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        settings: Defaults to the process settings, or the container's settings
        container: Pre-built services; built from settings when omitted
    """
    if container is not None:
        settings = container.settings
    settings = settings or get_settings()

    validate_payment_config(settings)
    container = container or build_container(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        setup_logging(settings.LOG_LEVEL, settings.LOG_FORMAT)
        logger.info(
            f"Starting {settings.PROJECT_NAME} payments {__version__} "
            f"({settings.ENVIRONMENT}, gateways: {', '.join(settings.ENABLED_GATEWAYS)})"
        )
        yield
        logger.info("Shutting down payments service")

    app = FastAPI(
        title=f"{settings.PROJECT_NAME} payments",
        version=__version__,
        lifespan=lifespan,
        docs_url=None if settings.is_production else "/docs",
        redoc_url=None,
    )
    app.state.container = container

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[settings.CLIENT_URL],
        allow_credentials=True,
        allow_methods=["GET", "POST"],
        allow_headers=["Authorization", "Content-Type", "X-Request-ID"],
    )

    @app.middleware("http")
    async def add_request_id(request: Request, call_next):
        """Propagate or assign a request ID and expose it to log records"""
        request_id = request.headers.get("X-Request-ID") or f"req_{uuid.uuid4().hex[:16]}"
        request.state.request_id = request_id
        set_request_id(request_id)
        try:
            response = await call_next(request)
        finally:
            set_request_id(None)
        response.headers["X-Request-ID"] = request_id
        return response

    app.add_exception_handler(SastabazarException, sastabazar_exception_handler)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        errors = [
            {"field": ".".join(str(part) for part in err.get("loc", [])), "message": err.get("msg")}
            for err in exc.errors()
        ]
        return create_error_response(ValidationError("Invalid request body", {"errors": errors}))

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        """Handle HTTP exceptions with the same envelope as service errors"""
        return JSONResponse(
            status_code=exc.status_code,
            content={
                "success": False,
                "error": exc.detail,
                "error_code": f"HTTP_{exc.status_code}",
                "details": {},
            },
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        """Never expose internal error details"""
        request_id = getattr(request.state, "request_id", "unknown")
        logger.error(f"Unhandled exception [request_id={request_id}]: {exc}", exc_info=True)
        return JSONResponse(
            status_code=500,
            content={
                "success": False,
                "error": "Internal server error",
                "error_code": "INTERNAL_ERROR",
                "details": {"request_id": request_id},
            },
        )

    @app.get("/health", tags=["health"])
    async def health_check():
        return {"status": "ok", "version": __version__, "environment": settings.ENVIRONMENT}

    app.include_router(api_v1_router)
    return app


def run() -> None:
    uvicorn.run(
        "sastabazar.main:create_app",
        factory=True,
        host="0.0.0.0",
        port=8000,
        log_level="info",
    )


if __name__ == "__main__":
    run()
