"""
FastAPI Application Entry Point.

Creates the tts-relay application: boundary routes, health, metrics and
the queue worker lifecycle.

Usage:
    # Run with uvicorn
    uvicorn tts_relay.main:app --host 0.0.0.0 --port 8000

    # Or use the module directly
    python -m uvicorn tts_relay.main:app --reload
"""

from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI

from tts_relay import __version__
from tts_relay.api.dependencies import get_relay_service
from tts_relay.api.routes import router
from tts_relay.core.logging import configure_logging, get_logger, info


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start the queue worker on the server loop; stop it on shutdown."""
    log = get_logger("tts-relay.main")
    provider = app.dependency_overrides.get(get_relay_service, get_relay_service)
    service = provider()
    await service.start()
    info(log, "app_started", version=__version__)
    try:
        yield
    finally:
        await service.stop()
        info(log, "app_stopped")


def create_app() -> FastAPI:
    """
    Create and configure the FastAPI application.

    This factory function:
        1. Configures structured logging (TTS_RELAY_LOG_LEVEL)
        2. Creates a FastAPI instance with the service title
        3. Registers the relay router
        4. Attaches the queue worker lifespan

    Returns:
        FastAPI: Configured application instance ready to serve requests.
    """
    configure_logging()

    app = FastAPI(title="tts-relay", version=__version__, lifespan=lifespan)
    app.include_router(router)

    return app


# Global application instance for ASGI servers (uvicorn, gunicorn, etc.)
app = create_app()
