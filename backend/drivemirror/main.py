"""FastAPI application entry point."""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from drivemirror.api.router import api_router
from drivemirror.core.config import settings
from drivemirror.core.logging import bind_trace_id, get_logger, setup_logging

# Initialize logging
setup_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan events."""
    logger.info(
        "starting_application",
        app_name=settings.app_name,
        version=settings.version,
        host=settings.host,
        port=settings.port,
        google_oauth_configured=settings.google_oauth_configured,
    )
    yield
    logger.info("shutting_down_application")


async def unhandled_error(request: Request, exc: Exception) -> JSONResponse:
    """Answer unexpected failures with a stable code and the request's trace id."""
    trace_id = structlog.contextvars.get_contextvars().get("trace_id") or bind_trace_id()
    logger.error("unhandled_exception", path=request.url.path, error=str(exc), exc_info=exc)
    return JSONResponse(
        status_code=500,
        content={
            "detail": {
                "ok": False,
                "code": "SYNC_FAILED",
                "message": "Unexpected server error",
                "trace_id": trace_id,
            }
        },
    )


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title=settings.app_name,
        description="Mirrors a Google Drive folder into a local catalog with resumable, budgeted sync",
        version=settings.version,
        lifespan=lifespan,
        docs_url="/api/docs",
        redoc_url="/api/redoc",
        openapi_url="/api/openapi.json",
    )

    # Configure CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def clear_log_context(request: Request, call_next):
        """Start every request with an empty structlog context."""
        structlog.contextvars.clear_contextvars()
        return await call_next(request)

    app.add_exception_handler(Exception, unhandled_error)

    # Include API routes
    app.include_router(api_router)

    return app


# Create the application instance
app = create_app()


def main() -> None:
    """Run the application with uvicorn."""
    import uvicorn

    uvicorn.run(
        "drivemirror.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
    )


if __name__ == "__main__":
    main()
