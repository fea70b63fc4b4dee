"""
Prefetch API Routes.

Endpoints:
    POST /v1/clips                 - Queue content for prefetching (202)
    GET  /v1/clips/status          - Readiness of one piece of content
    GET  /v1/clips/audio           - WAV of a ready clip or cluster chunk
    POST /v1/interactions          - Consumer reached a piece of content
    GET  /v1/high-priority         - Current high-priority pointer
    PUT  /v1/high-priority         - Set or clear the pointer
    GET  /v1/settings              - Current accessibility settings
    PUT  /v1/settings              - Change speed / gender
    GET  /health                   - Scheduler state and counters
    GET  /metrics                  - Prometheus metrics

Error Handling:
    Errors are returned as JSON in the PrefetchError format:
    {
        "ok": false,
        "error": "<ERROR_CODE>",
        "message": "<human readable message>",
        "details": {...}
    }

    HTTP status codes are mapped from error codes:
        - MALFORMED_IDENTITY -> 400 Bad Request
        - INVALID_INPUT -> 400 Bad Request
        - CLUSTER_NOT_REGISTERED -> 409 Conflict
        - anything else -> 500 Internal Server Error

Example Usage:
    >>> import httpx
    >>> httpx.post("http://localhost:8000/v1/clips", json={"id": "1.1.1", "text": "Hello."})
    >>> httpx.get("http://localhost:8000/v1/clips/status", params={"id": "1.1.1"}).json()
    {'id': '1.1.1', 'ready': True, 'is_cluster': False, ...}
"""
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query, Response
from fastapi.responses import JSONResponse

from tts_prefetch.api.dependencies import get_prefetch_service
from tts_prefetch.api.schemas import (
    AccessibilitySettingsBody,
    ClipStatusResponse,
    HighPriorityRequest,
    HighPriorityResponse,
    InteractionRequest,
    PrepareClipRequest,
    PrepareClipResponse,
)
from tts_prefetch.core.errors import ErrorCode, PrefetchError
from tts_prefetch.core.logging import error, get_logger, set_clip_id
from tts_prefetch.services.prefetch_service import PrefetchService
from tts_prefetch.tts.accessibility import AccessibilitySettings
from tts_prefetch.tts.ids import parse_content_id, remove_accessibility_markers

router = APIRouter()

_LOG = get_logger("tts-prefetch.api")

_STATUS_MAP = {
    ErrorCode.MALFORMED_IDENTITY: 400,
    ErrorCode.INVALID_INPUT: 400,
    ErrorCode.CLUSTER_NOT_REGISTERED: 409,
}


def _error_response(exc: PrefetchError) -> JSONResponse:
    return JSONResponse(status_code=_STATUS_MAP.get(exc.code, 500), content=exc.to_dict())


def _not_found(clip_id: str, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=404,
        content={"ok": False, "error": ErrorCode.CACHE_MISS, "message": message, "details": {"id": clip_id}},
    )


def _internal_error() -> JSONResponse:
    return JSONResponse(
        status_code=500,
        content={"ok": False, "error": ErrorCode.INTERNAL_ERROR, "message": "Internal server error"},
    )


def _wav_response(clip) -> Response:
    if clip is None:
        # Deliberately silent content
        return Response(status_code=204)
    wav = clip.to_wav_bytes()
    headers = {
        "X-Clip-Id": clip.clip_id,
        "X-Sample-Rate": str(clip.sample_rate),
        "X-Bytes": str(len(wav)),
    }
    return Response(content=wav, media_type="audio/wav", headers=headers)


@router.post("/v1/clips", status_code=202, response_model=PrepareClipResponse)
def prepare_clip(
    req: PrepareClipRequest,
    service: PrefetchService = Depends(get_prefetch_service),
):
    """Queue content for prefetching. Returns immediately."""
    try:
        result = service.prepare_clip(
            req.id,
            req.text,
            speaker=req.speaker,
            has_markers_applied=req.has_markers_applied,
            urgent=req.urgent,
        )
    except PrefetchError as e:
        return _error_response(e)
    except Exception as e:
        error(_LOG, "prepare_failed", code=ErrorCode.INTERNAL_ERROR, error=str(e))
        return _internal_error()
    return PrepareClipResponse(**result.to_dict())


@router.get("/v1/clips/status", response_model=ClipStatusResponse)
def clip_status(
    clip_id: str = Query(..., alias="id", min_length=1),
    has_markers_applied: bool = False,
    service: PrefetchService = Depends(get_prefetch_service),
):
    try:
        parse_content_id(clip_id)
    except PrefetchError as e:
        return _error_response(e)

    is_cluster = service.is_cluster(clip_id, has_markers_applied)
    stored = expected = 0
    if is_cluster:
        cluster = service.get_cluster_object(clip_id, has_markers_applied)
        if cluster is not None:
            stored, expected = cluster.clip_count, cluster.expected_count
        available = service.is_cluster_available(clip_id, has_markers_applied)
    else:
        available = service.is_ready(clip_id, has_markers_applied)
    return ClipStatusResponse(
        id=clip_id,
        ready=service.is_ready(clip_id, has_markers_applied),
        is_cluster=is_cluster,
        available=available,
        stored_chunks=stored,
        expected_chunks=expected,
    )


@router.get("/v1/clips/audio", response_class=Response)
def clip_audio(
    clip_id: str = Query(..., alias="id", min_length=1),
    chunk: Optional[int] = Query(default=None, ge=1),
    has_markers_applied: bool = False,
    service: PrefetchService = Depends(get_prefetch_service),
):
    """
    WAV audio for a ready clip.

    Clusters need ``chunk`` (1-based); the chunk must be stored. Silent
    content answers 204 No Content.
    """
    set_clip_id(clip_id)
    try:
        parse_content_id(clip_id)
    except PrefetchError as e:
        return _error_response(e)

    if service.is_cluster(clip_id, has_markers_applied):
        if chunk is None:
            return _error_response(
                PrefetchError(
                    "content is segmented; pass the 1-based chunk index",
                    ErrorCode.INVALID_INPUT,
                    {"id": clip_id},
                )
            )
        cluster = service.get_cluster_object(clip_id, has_markers_applied)
        found, clip = cluster.chunk_at(chunk) if cluster is not None else (False, None)
        if not found:
            return _not_found(clip_id, f"chunk {chunk} is not ready")
        return _wav_response(clip)

    if not service.is_ready(clip_id, has_markers_applied):
        return _not_found(clip_id, "clip is not ready")
    return _wav_response(service.get_clip(clip_id, has_markers_applied))


@router.post("/v1/interactions", status_code=204, response_class=Response)
def interaction(
    req: InteractionRequest,
    service: PrefetchService = Depends(get_prefetch_service),
):
    """Move the consumption pointer; prefetching continues from there."""
    try:
        parse_content_id(remove_accessibility_markers(req.id))
        service.notify_interaction(req.id)
    except PrefetchError as e:
        return _error_response(e)
    return Response(status_code=204)


@router.get("/v1/high-priority", response_model=HighPriorityResponse)
def get_high_priority(service: PrefetchService = Depends(get_prefetch_service)):
    return HighPriorityResponse(id=service.high_priority_id)


@router.put("/v1/high-priority", response_model=HighPriorityResponse)
def set_high_priority(
    req: HighPriorityRequest,
    service: PrefetchService = Depends(get_prefetch_service),
):
    """Point the scheduler at content needed now. Ready content clears the pointer."""
    try:
        if req.id:
            parse_content_id(req.id)
        resolved = service.set_high_priority(req.id, req.has_markers_applied)
    except PrefetchError as e:
        return _error_response(e)
    return HighPriorityResponse(id=resolved)


@router.get("/v1/settings", response_model=AccessibilitySettingsBody)
def get_settings(service: PrefetchService = Depends(get_prefetch_service)):
    current = service.accessibility_settings
    return AccessibilitySettingsBody(speed=current.speed, is_male=current.is_male)


@router.put("/v1/settings", response_model=AccessibilitySettingsBody)
def update_settings(
    req: AccessibilitySettingsBody,
    service: PrefetchService = Depends(get_prefetch_service),
):
    try:
        service.update_accessibility_settings(AccessibilitySettings(speed=req.speed, is_male=req.is_male))
    except PrefetchError as e:
        return _error_response(e)
    current = service.accessibility_settings
    return AccessibilitySettingsBody(speed=current.speed, is_male=current.is_male)


@router.get("/health")
def health(service: PrefetchService = Depends(get_prefetch_service)):
    """
    Health check for load balancers and probes.

    Returns scheduler state and counters, cache statistics and the
    current accessibility settings.
    """
    stats = service.stats()
    return {"status": "healthy", **stats}


@router.get("/metrics")
def prometheus_metrics(service: PrefetchService = Depends(get_prefetch_service)):
    content, content_type = service.metrics.get_metrics_response()
    return Response(content=content, media_type=content_type)
