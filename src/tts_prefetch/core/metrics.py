"""
Prometheus metrics for the prefetch subsystem.

Each PrefetchService owns one PrefetchMetrics instance with a private
CollectorRegistry, so several contexts (or test cases) can run in one
process without duplicate-timeseries errors.

Metrics Exposed:
    tts_prefetch_requests_dispatched_total   - Requests sent to the synthesis service
    tts_prefetch_requests_rate_limited_total - Submissions rejected with a 429
    tts_prefetch_requests_failed_total       - Permanently failed requests, by reason
    tts_prefetch_requests_completed_total    - Payloads stored in the clip cache
    tts_prefetch_clips_stored_total          - Cache writes by kind (single/chunk/silent)
    tts_prefetch_cache_queries_total         - Cache lookups by result (hit/miss)
    tts_prefetch_pending_requests            - Requests waiting in the sequencer
    tts_prefetch_in_flight_requests          - Dispatched, not yet resolved
    tts_prefetch_request_delay_seconds       - Current inter-dispatch delay
    tts_prefetch_synthesis_seconds           - Dispatch-to-payload latency

Usage:
    metrics = PrefetchMetrics()
    metrics.record_dispatch()
    content, content_type = metrics.get_metrics_response()
"""
from __future__ import annotations

from typing import Tuple

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)


class PrefetchMetrics:
    """Counters and gauges for one prefetch context."""

    def __init__(self) -> None:
        self._registry = CollectorRegistry()

        self._dispatched = Counter(
            "tts_prefetch_requests_dispatched_total",
            "Requests sent to the synthesis service",
            registry=self._registry,
        )
        self._rate_limited = Counter(
            "tts_prefetch_requests_rate_limited_total",
            "Submissions rejected by the synthesis service with a rate limit",
            registry=self._registry,
        )
        self._failed = Counter(
            "tts_prefetch_requests_failed_total",
            "Requests dropped after a permanent failure",
            ["reason"],
            registry=self._registry,
        )
        self._completed = Counter(
            "tts_prefetch_requests_completed_total",
            "Synthesized payloads stored in the clip cache",
            registry=self._registry,
        )
        self._clips_stored = Counter(
            "tts_prefetch_clips_stored_total",
            "Clip cache writes",
            ["kind"],
            registry=self._registry,
        )
        self._cache_queries = Counter(
            "tts_prefetch_cache_queries_total",
            "Clip cache lookups",
            ["result"],
            registry=self._registry,
        )
        self._pending = Gauge(
            "tts_prefetch_pending_requests",
            "Requests waiting in the sequencer",
            registry=self._registry,
        )
        self._in_flight = Gauge(
            "tts_prefetch_in_flight_requests",
            "Requests dispatched and not yet resolved",
            registry=self._registry,
        )
        self._request_delay = Gauge(
            "tts_prefetch_request_delay_seconds",
            "Current delay between dispatches",
            registry=self._registry,
        )
        self._synthesis_seconds = Histogram(
            "tts_prefetch_synthesis_seconds",
            "Time from dispatch until the payload is complete",
            buckets=(0.25, 0.5, 1.0, 2.0, 4.0, 8.0, 16.0, 32.0),
            registry=self._registry,
        )

    @property
    def registry(self) -> CollectorRegistry:
        return self._registry

    def record_dispatch(self) -> None:
        self._dispatched.inc()

    def record_rate_limited(self) -> None:
        self._rate_limited.inc()

    def record_failure(self, reason: str) -> None:
        self._failed.labels(reason=reason).inc()

    def record_completed(self, seconds: float) -> None:
        self._completed.inc()
        self._synthesis_seconds.observe(seconds)

    def record_store(self, kind: str) -> None:
        """kind is one of ``single``, ``chunk`` or ``silent``."""
        self._clips_stored.labels(kind=kind).inc()

    def record_cache_query(self, hit: bool) -> None:
        self._cache_queries.labels(result="hit" if hit else "miss").inc()

    def set_pending(self, count: int) -> None:
        self._pending.set(count)

    def set_in_flight(self, count: int) -> None:
        self._in_flight.set(count)

    def set_request_delay(self, seconds: float) -> None:
        self._request_delay.set(seconds)

    def render(self) -> bytes:
        """Prometheus text exposition for this registry."""
        return generate_latest(self._registry)

    def get_metrics_response(self) -> Tuple[bytes, str]:
        """Body and content type for a /metrics endpoint."""
        return self.render(), CONTENT_TYPE_LATEST
