"""
FastAPI Application Entry Point.

Usage:
    # Run with uvicorn
    uvicorn tts_prefetch.main:app --host 0.0.0.0 --port 8000

    # Or through the CLI
    tts-prefetch serve --port 8000
"""

from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI

from tts_prefetch.api.routes import router
from tts_prefetch.core.logging import configure_logging, get_logger, info
from tts_prefetch.services.prefetch_service import reset_service

_LOG = get_logger("tts-prefetch.main")


@asynccontextmanager
async def lifespan(app: FastAPI):
    info(_LOG, "app_started")
    yield
    # Stop the scheduler thread and close the synthesis client
    reset_service()


def create_app() -> FastAPI:
    """
    Create and configure the FastAPI application.

    Configures structured logging (TTS_PREFETCH_LOG_LEVEL and friends),
    registers the prefetch router and shuts the service down with the app.
    The service itself is created lazily on the first request.
    """
    configure_logging()

    app = FastAPI(title="tts-prefetch", lifespan=lifespan)
    app.include_router(router)
    return app


# Global application instance for ASGI servers (uvicorn, gunicorn, etc.)
app = create_app()
