"""
FastAPI Dependency Injection Providers.

Architecture:
    1. get_settings() - Loads and caches application configuration
    2. get_relay_service() - Creates/returns the singleton RelayService

    The service owns the queue, the permission store and the rate
    limiter state, so every request must see the same instance.

Usage in Route Handlers:
    from fastapi import Depends
    from tts_relay.api.dependencies import get_relay_service

    @router.get("/v1/tts/queue")
    def queue(service: RelayService = Depends(get_relay_service)):
        return service.queue_status()

Lifecycle:
    1. Application startup (main.py lifespan)
       └── RelayService.start() runs the queue worker on the server loop
    2. Request handling
       └── Route handler receives RelayService via Depends()
    3. Shutdown
       └── RelayService.stop() stops the worker and closes provider clients
"""
from __future__ import annotations

import os
from functools import lru_cache

from tts_relay.core.config import Settings, load_settings
from tts_relay.services.relay_service import RelayService, get_service

DEFAULT_SETTINGS_PATH = "config/settings.yaml"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Load and cache application settings.

    The path comes from TTS_RELAY_CONFIG (default config/settings.yaml).
    A missing file means built-in defaults.
    """
    path = os.getenv("TTS_RELAY_CONFIG", DEFAULT_SETTINGS_PATH)
    try:
        return load_settings(path)
    except FileNotFoundError:
        return Settings(raw={})


def get_relay_service() -> RelayService:
    """Get the singleton RelayService instance."""
    return get_service(get_settings())
