"""
Core Infrastructure for tts-prefetch.

This package provides foundational components:
    - config.py: Configuration loading and validation
    - logging/: Structured logging with numeric levels
    - errors.py: Error codes and the exceptions raised to callers
    - metrics.py: Prometheus metrics collection
"""
