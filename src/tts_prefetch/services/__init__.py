"""Service layer: the owned prefetch context and the playlist built on it."""
from .playlist import PlaylistEntry, VisibleContentPlaylist
from .prefetch_service import (
    PrefetchService,
    PrepareResult,
    PrepareStatus,
    get_service,
    reset_service,
)

__all__ = [
    "PlaylistEntry",
    "PrefetchService",
    "PrepareResult",
    "PrepareStatus",
    "VisibleContentPlaylist",
    "get_service",
    "reset_service",
]
