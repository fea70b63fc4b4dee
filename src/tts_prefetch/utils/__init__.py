"""
Utility Modules for tts-prefetch.

    - audio.py: WAV decoding/encoding, silence trimming, AudioClip
    - timeit.py: Performance measurement
"""
