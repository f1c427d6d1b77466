"""
FastAPI REST API Layer for tts-relay.

    - routes.py: Boundary operations (/v1/tts/*), SSE events, /health, /metrics
    - schemas.py: Request/response Pydantic models
    - dependencies.py: FastAPI dependency injection
"""
