"""
FastAPI REST API Layer for tts-prefetch.

This package defines all HTTP endpoints:
    - routes.py: Prefetch endpoints (/v1/clips, /v1/interactions, /health, /metrics)
    - schemas.py: Request/response Pydantic models
    - dependencies.py: FastAPI dependency injection
"""
