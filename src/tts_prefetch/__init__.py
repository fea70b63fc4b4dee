"""
tts-prefetch: prefetch scheduling and clip cache for pre-synthesized speech.

Narrative text is synthesized by a slow, rate-limited remote service.
tts-prefetch predicts which content will be spoken next, fetches it
ahead of time in consumption order, and keeps the finished audio in a
cache keyed by content identity, speech speed and voice gender.

Key Features:
    - Content IDs that encode consumption order (scenario.mission.order)
      plus an accessibility prefix (``[speed=100;isMale=true]``)
    - Pluggable sequencer with cyclic, pointer-relative ordering
    - Download scheduler with adaptive pacing and 429 drain/cool-down
    - Segmentation of oversized text into ordered chunk clusters
    - A high-priority pointer for content needed right now

Example Usage:
    >>> from tts_prefetch.core.config import Settings
    >>> from tts_prefetch.services import PrefetchService
    >>>
    >>> service = PrefetchService(Settings(raw={}))
    >>> service.prepare_clip("intro.1.1.1", "Welcome back, captain.", "narrator")
    >>> service.is_ready("intro.1.1.1")
    False
"""

__version__ = "0.1.0"
__all__ = ["__version__"]
