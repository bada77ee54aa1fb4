"""Palette - FastAPI Application

This module creates and configures the FastAPI application for the Palette
identity and session service.
"""

import traceback
import uuid
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .api.auth import router as auth_router
from .api.users import router as users_router
from .auth.jwt_manager import get_token_issuer
from .core.config import get_settings_instance
from .core.database import check_db_connection, close_db, get_async_session_local, init_db
from .core.exceptions import PaletteException
from .core.http_client import close_http_client
from .core.logging import get_logger, setup_logging
from .schemas.envelope import ErrorResponse

logger = get_logger(__name__)


def generate_error_id() -> str:
    """Generate a unique error ID for tracking."""
    return f"ERR-{uuid.uuid4().hex[:8].upper()}"


def get_request_context(request: Request) -> dict[str, Any]:
    """Extract request context for error logging. Never includes headers carrying credentials."""
    return {
        "method": request.method,
        "path": request.url.path,
        "client": request.client.host if request.client else None,
    }


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    settings = get_settings_instance()
    logger.info(
        "Starting Palette",
        extra={"version": settings.version, "environment": settings.environment},
    )
    await init_db()

    session_local = get_async_session_local()
    async with session_local() as db:
        await get_token_issuer().purge_consumed_tokens(db)

    yield

    await close_http_client()
    await close_db()
    logger.info("Palette shut down")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings_instance()
    app = FastAPI(
        title=settings.app_name,
        description="Palette identity and session API",
        version=settings.version,
        debug=settings.debug,
        docs_url="/docs" if settings.debug else None,
        openapi_url="/openapi.json" if settings.debug else None,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    setup_exception_handlers(app)
    setup_routes(app)

    logger.info("Palette FastAPI application created successfully")
    return app


def _error_body(code: str, message: str, details: Any, error_id: str | None = None) -> dict[str, Any]:
    error: dict[str, Any] = {"code": code, "message": message, "details": details or {}}
    if error_id:
        error["error_id"] = error_id
    return ErrorResponse(error=error).model_dump()


def setup_exception_handlers(app: FastAPI) -> None:
    """Register handlers rendering every failure in the error envelope."""
    settings = get_settings_instance()

    @app.exception_handler(PaletteException)
    async def palette_exception_handler(request: Request, exc: PaletteException):
        error_id = generate_error_id() if exc.status_code >= 500 else None

        if exc.status_code >= 500:
            logger.error(
                "Palette server error",
                extra={
                    "error_id": error_id,
                    "error_code": exc.error_code,
                    "error_message": exc.message,
                    **get_request_context(request),
                },
            )
        else:
            logger.warning(
                "Palette client error",
                extra={"error_code": exc.error_code, "status_code": exc.status_code, **get_request_context(request)},
            )

        return JSONResponse(
            status_code=exc.status_code,
            content=_error_body(exc.error_code, exc.message, exc.details, error_id),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        errors = [
            {"field": ".".join(str(part) for part in err.get("loc", ()) if part != "body"), "message": err.get("msg")}
            for err in exc.errors()
        ]
        logger.warning("Request validation failed", extra=get_request_context(request))
        return JSONResponse(
            status_code=400,
            content=_error_body("VALIDATION_ERROR", "Request validation failed", {"errors": errors}),
        )

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        error_id = generate_error_id() if exc.status_code >= 500 else None
        if error_id:
            logger.error("HTTP server error", extra={"error_id": error_id, **get_request_context(request)})
        return JSONResponse(
            status_code=exc.status_code,
            content=_error_body(f"HTTP_{exc.status_code}", str(exc.detail), {}, error_id),
            headers=getattr(exc, "headers", None) or None,
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        error_id = generate_error_id()
        include_traceback = settings.debug or settings.environment == "development"
        logger.error(
            "Unhandled exception",
            extra={"error_id": error_id, "exception_type": type(exc).__name__, **get_request_context(request)},
            exc_info=exc,
        )

        details: dict[str, Any] = {}
        if include_traceback:
            details = {
                "exception_type": type(exc).__name__,
                "exception_message": str(exc),
                "traceback": traceback.format_exception(exc),
            }
        return JSONResponse(
            status_code=500,
            content=_error_body("INTERNAL_SERVER_ERROR", "Internal server error", details, error_id),
        )


def setup_routes(app: FastAPI) -> None:
    """Configure application routes."""
    settings = get_settings_instance()
    app.include_router(auth_router, prefix=settings.api_v1_prefix)
    app.include_router(users_router, prefix=settings.api_v1_prefix)

    @app.get(f"{settings.api_v1_prefix}/health", tags=["health"])
    async def health() -> dict[str, Any]:
        database_ok = await check_db_connection()
        return {
            "data": {
                "status": "ok" if database_ok else "degraded",
                "database": database_ok,
                "version": settings.version,
            }
        }


def run() -> None:
    """Console entry point: serve the app with uvicorn."""
    import uvicorn

    settings = get_settings_instance()
    uvicorn.run(
        "palette.main:create_app",
        factory=True,
        host=settings.api_host,
        port=settings.api_port,
        log_config=None,
    )
