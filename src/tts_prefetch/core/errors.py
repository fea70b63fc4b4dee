"""
Error codes and exceptions for the prefetch subsystem.

Only two conditions are raised to callers:

    - MalformedIdentityError: a content ID that cannot be parsed. Retrying
      cannot fix it, so the caller that supplied it gets the exception.
    - ClusterRegistrationError: a chunk arrived for a cluster that was
      never registered. This is an integration bug and fails fast.

Rate limiting, synthesis failures, unsplittable text and cache misses
are handled internally; they only show up as ``code=`` fields in log
events and in metrics.
"""
from __future__ import annotations

from typing import Any, Dict, Optional


class ErrorCode:
    """Standardized error codes for log events and API responses."""
    MALFORMED_IDENTITY = "MALFORMED_IDENTITY"       # Unparseable content ID
    CLUSTER_NOT_REGISTERED = "CLUSTER_NOT_REGISTERED"   # Chunk without a cluster
    RATE_LIMITED = "RATE_LIMITED"                   # Remote 429
    SYNTHESIS_FAILED = "SYNTHESIS_FAILED"           # Any other remote error
    UNSPLITTABLE_TEXT = "UNSPLITTABLE_TEXT"         # Fragment dropped by the segmenter
    CACHE_MISS = "CACHE_MISS"                       # Query for content not yet stored
    INVALID_INPUT = "INVALID_INPUT"
    INTERNAL_ERROR = "INTERNAL_ERROR"


class PrefetchError(Exception):
    """
    Base exception for prefetch errors.

    Attributes:
        message: Human-readable error message.
        code: Error code from ErrorCode.
        details: Optional dictionary with additional context.
    """
    def __init__(self, message: str, code: str = ErrorCode.INTERNAL_ERROR, details: Optional[Dict] = None):
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        """Convert to an API error body."""
        result = {
            "ok": False,
            "error": self.code,
            "message": self.message,
        }
        if self.details:
            result["details"] = self.details
        return result


class MalformedIdentityError(PrefetchError, ValueError):
    """Raised when a content ID fails to parse or uses reserved characters."""
    def __init__(self, message: str, details: Optional[Dict] = None):
        super().__init__(message, ErrorCode.MALFORMED_IDENTITY, details)


class ClusterRegistrationError(PrefetchError):
    """Raised when a chunk is stored for an unregistered cluster or an invalid slot."""
    def __init__(self, message: str, details: Optional[Dict] = None):
        super().__init__(message, ErrorCode.CLUSTER_NOT_REGISTERED, details)
