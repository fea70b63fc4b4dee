"""
FastAPI Dependency Injection Providers.

    get_settings()          loads config/settings.yaml once (defaults if absent)
    get_prefetch_service()  the process's PrefetchService

Usage in Route Handlers:
    @router.get("/health")
    def health(service: PrefetchService = Depends(get_prefetch_service)):
        return service.stats()
"""
from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from tts_prefetch.core.config import Settings, load_settings, settings_path
from tts_prefetch.services.prefetch_service import PrefetchService, get_service


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Load and cache application settings.

    The path honours TTS_PREFETCH_SETTINGS. A missing file means
    built-in defaults.
    """
    path = settings_path()
    if not Path(path).exists():
        return Settings(raw={})
    return load_settings(path)


def get_prefetch_service() -> PrefetchService:
    return get_service(get_settings())
