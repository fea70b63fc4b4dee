"""
Timing helpers.

Segmentation and synthesis round-trips report their durations in a
``timings_s`` dict and in the ``seconds=`` field of log events:

    with timeit("split") as t:
        chunks = segment(text)
    timings["split"] = t.timing.seconds

Uses time.perf_counter() for sub-millisecond precision.
"""
from __future__ import annotations

from dataclasses import dataclass
from time import perf_counter
from typing import Any, Dict, Optional


@dataclass
class Timing:
    """A named duration in seconds."""
    name: str
    seconds: float
    meta: Optional[Dict[str, Any]] = None


class timeit:
    """Context manager that records a Timing on exit (also on error)."""

    def __init__(self, name: str, meta: Optional[Dict[str, Any]] = None):
        self.name = name
        self.meta = meta
        self._t0: float | None = None
        self.timing: Timing | None = None

    def __enter__(self) -> "timeit":
        self._t0 = perf_counter()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        t1 = perf_counter()
        assert self._t0 is not None
        self.timing = Timing(name=self.name, seconds=(t1 - self._t0), meta=self.meta)

    @property
    def seconds(self) -> float:
        """Elapsed seconds, or -1.0 before the block has finished."""
        return self.timing.seconds if self.timing else -1.0
