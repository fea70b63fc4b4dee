"""
Prefetch Pipeline Components.

    - ids.py: Content ID parsing, ordering and accessibility markers
    - accessibility.py: Speed/gender settings
    - request.py: Pending synthesis requests
    - segmenter.py: Splitting oversized text into chunk clusters
    - sequencer.py: Ordering strategies for pending requests
    - scheduler.py: Download loop with rate-limit backoff
    - synthesis.py: Remote synthesis boundary (HTTP implementation)
    - cache.py: Clip cache and cluster assembly
    - voices.py: Speaker-to-voice catalog
"""
