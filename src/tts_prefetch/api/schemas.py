"""
API Request/Response Schemas.

Pydantic models for the prefetch endpoints. Content IDs are passed as
strings and parsed by the service, so malformed IDs surface as the
service's MALFORMED_IDENTITY error rather than a schema error.

Example Request (POST /v1/clips):
    {
        "id": "intro.1.4.2",
        "text": "Welcome back, <b>captain</b>.",
        "speaker": "narrator",
        "urgent": false
    }
"""
from __future__ import annotations

from pydantic import BaseModel, Field


class PrepareClipRequest(BaseModel):
    """
    Content to prefetch.

    Attributes:
        id: Content ID. Bare identity unless has_markers_applied.
        text: Text as authored; markup is stripped before synthesis.
        speaker: Speaker name used for voice lookup. The player speaker
            gets the current gender applied to its ID.
        has_markers_applied: The ID already carries ``[speed=...]``.
        urgent: Fetch this before anything else.
    """
    id: str = Field(..., min_length=1, description="Content ID")
    text: str = Field(..., max_length=20000, description="Text to speak")
    speaker: str | None = Field(default=None, description="Speaker name")
    has_markers_applied: bool = Field(default=False)
    urgent: bool = Field(default=False)


class PrepareClipResponse(BaseModel):
    clip_id: str = Field(..., description="ID with accessibility markers applied")
    status: str = Field(..., description="queued, clustered, silent, duplicate or dropped")
    chunks: int = 0
    dropped_fragments: int = 0


class ClipStatusResponse(BaseModel):
    id: str
    ready: bool
    is_cluster: bool
    available: bool
    stored_chunks: int = 0
    expected_chunks: int = 0


class InteractionRequest(BaseModel):
    id: str = Field(..., min_length=1, description="Content the consumer just reached")


class HighPriorityRequest(BaseModel):
    id: str | None = Field(default=None, description="Content needed now; null clears")
    has_markers_applied: bool = False


class HighPriorityResponse(BaseModel):
    id: str | None = None


class AccessibilitySettingsBody(BaseModel):
    speed: int = Field(..., gt=0, description="Speech speed in percent")
    is_male: bool | None = Field(default=None, description="Voice gender")
