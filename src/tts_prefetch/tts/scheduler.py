"""
Download Scheduler.

Drains the sequencer against the remote synthesis service, one
dispatch at a time, and feeds finished audio into the clip cache.

States:
    IDLE ──start()──> RUNNING ──429──> AWAITING_DRAIN
      ^                  │                  │ in-flight reaches 0,
      └── no request ────┘ <── cool-down ───┘ then cool-down elapses

Loop (one worker thread, one iteration per dispatch):
    1. In AWAITING_DRAIN: wait until nothing is in flight, then wait
       the cool-down, then continue in RUNNING.
    2. Pick the next request: the high-priority target if there is one
       and it is not in flight (for a cluster, its lowest missing chunk),
       otherwise the sequencer's next request.
    3. No request: go IDLE. enqueue() wakes the loop again.
    4. Submit pre-text + text + post-text, count it in flight, then
       sleep the inter-dispatch delay.

Completion callbacks arrive on service threads:
    - accepted: wait for the handle's payload-complete signal, then
      decode and store the clip and clear the high-priority pointer if
      its target is now ready.
    - rate limited: the request goes back into the sequencer unchanged,
      the inter-dispatch delay grows by a fixed increment (it never
      shrinks), and the scheduler drains.
    - other failure: the request is dropped and logged; a high-priority
      pointer aimed at it is cleared.

stop() ends the loop at its next wait and moves accepted-but-unfinished
requests to a pending-recovery list; resume_after_restart() re-enqueues
them and starts again.

Thread Safety:
    One RLock guards counters, the pointer and the recovery lists; a
    Condition on it signals in-flight changes to the drain wait.
    Lock order is scheduler -> sequencer/cache, never the reverse.

Example:
    scheduler = DownloadScheduler(sequencer, cache, synthesis)
    scheduler.enqueue(PrefetchRequest("[speed=100]1.1.1", "Hello."))
    scheduler.high_priority_id = "[speed=100]1.4.2"
"""
from __future__ import annotations

import threading
import time
from dataclasses import asdict, dataclass
from enum import Enum
from functools import partial
from typing import Any, Dict, Iterable, List, Mapping, Optional, Set

from tts_prefetch.core.config import Defaults, SchedulerConfig
from tts_prefetch.core.errors import ErrorCode
from tts_prefetch.core.logging import (
    debug,
    error,
    get_logger,
    info,
    set_clip_id,
    success,
    verbose,
    warn,
)
from tts_prefetch.core.metrics import PrefetchMetrics
from tts_prefetch.tts.cache import ClipCache
from tts_prefetch.tts.ids import (
    cluster_id_of,
    get_gender,
    get_speed,
    has_accessibility_markers,
    remove_accessibility_markers,
)
from tts_prefetch.tts.request import PrefetchRequest, VoiceParams
from tts_prefetch.tts.sequencer import BaseSequencer
from tts_prefetch.tts.synthesis import SynthesisResult, SynthesisService, is_rate_limit_error

_LOG = get_logger("tts-prefetch.scheduler")


class SchedulerState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    AWAITING_DRAIN = "awaiting_drain"


@dataclass
class SchedulerStats:
    """Snapshot of scheduler counters."""
    state: str
    pending: int
    in_flight: int
    awaiting_payload: int
    pending_recovery: int
    request_delay_s: float
    high_priority_id: Optional[str]
    total_dispatched: int
    total_completed: int
    total_rate_limited: int
    total_failed: int

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class DownloadScheduler:
    """
    Drives prefetch downloads for one context.

    Args:
        sequencer: Ordering strategy owning the pending requests.
        cache: Destination for finished clips.
        synthesis: Remote synthesis boundary.
        config: Pacing settings.
        cache_settings: Passed through to every submission.
        metrics: Optional Prometheus metrics.
        default_voice: Voice used for requests without voice params.
        auto_start: Start the loop automatically on enqueue and on
            rate-limit retries. With False only start() launches it,
            and dispatch_next() can drive the scheduler by hand.
    """

    def __init__(
        self,
        sequencer: BaseSequencer,
        cache: ClipCache,
        synthesis: SynthesisService,
        config: Optional[SchedulerConfig] = None,
        cache_settings: Optional[Mapping[str, Any]] = None,
        metrics: Optional[PrefetchMetrics] = None,
        default_voice: str = Defaults.VOICES_DEFAULT_VOICE,
        auto_start: bool = True,
    ):
        self._sequencer = sequencer
        self._cache = cache
        self._synthesis = synthesis
        self._config = config or SchedulerConfig()
        self._cache_settings: Mapping[str, Any] = dict(cache_settings or {})
        self._metrics = metrics
        self._default_voice = default_voice
        self._auto_start = auto_start

        self._lock = threading.RLock()
        self._in_flight_changed = threading.Condition(self._lock)
        self._thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()
        self._stopped = False

        self._state = SchedulerState.IDLE
        self._draining = False
        self._request_delay = float(self._config.request_delay_s)

        self._in_flight = 0
        self._in_flight_ids: Set[str] = set()
        self._dispatched_at: Dict[str, float] = {}
        self._awaiting_payload: Dict[str, PrefetchRequest] = {}
        self._pending_recovery: Dict[str, PrefetchRequest] = {}
        self._high_priority_id: Optional[str] = None

        self._total_dispatched = 0
        self._total_completed = 0
        self._total_rate_limited = 0
        self._total_failed = 0

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def state(self) -> SchedulerState:
        with self._lock:
            return self._state

    @property
    def request_delay_s(self) -> float:
        with self._lock:
            return self._request_delay

    @property
    def in_flight(self) -> int:
        with self._lock:
            return self._in_flight

    @property
    def is_draining(self) -> bool:
        with self._lock:
            return self._draining

    @property
    def pending_recovery(self) -> List[PrefetchRequest]:
        with self._lock:
            return list(self._pending_recovery.values())

    @property
    def high_priority_id(self) -> Optional[str]:
        with self._lock:
            return self._high_priority_id

    @high_priority_id.setter
    def high_priority_id(self, clip_id: Optional[str]) -> None:
        """
        Point the scheduler at content needed right now.

        Empty values and already-ready content clear the pointer. The ID
        must carry accessibility markers so it names one rendering.
        """
        with self._lock:
            if not clip_id or self._is_ready_locked(clip_id):
                self._high_priority_id = None
                return
            if not has_accessibility_markers(clip_id):
                error(
                    _LOG, "high_priority_without_markers",
                    clip_id=clip_id,
                    code=ErrorCode.INVALID_INPUT,
                )
                self._high_priority_id = None
                return
            self._high_priority_id = clip_id
        info(_LOG, "high_priority_set", clip_id=clip_id)
        self.wake()

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def enqueue(self, request: PrefetchRequest, wake: bool = True) -> bool:
        added = self._sequencer.enqueue(request)
        self._update_gauges()
        if wake:
            self.wake()
        return added

    def enqueue_many(self, requests: Iterable[PrefetchRequest], wake: bool = True) -> int:
        added = sum(1 for r in requests if self._sequencer.enqueue(r))
        self._update_gauges()
        if wake:
            self.wake()
        return added

    def start(self) -> bool:
        """
        Run the loop if there is work.

        Returns True if a loop thread was launched. A no-op when already
        running or when nothing is pending and no pointer is set.
        """
        with self._lock:
            self._stopped = False
        return self._launch()

    def stop(self) -> None:
        """
        Stop the loop at its next wait.

        Requests already submitted are not cancelled. Accepted requests
        whose payload is not complete move to the pending-recovery list.
        """
        with self._lock:
            self._stopped = True
            self._stop_event.set()
            self._in_flight_changed.notify_all()
            thread = self._thread
            self._pending_recovery.update(self._awaiting_payload)
            self._awaiting_payload.clear()
            recovery = len(self._pending_recovery)

        if thread is not None and thread is not threading.current_thread():
            thread.join(self._config.stop_timeout_s)

        with self._lock:
            if self._thread is thread:
                self._thread = None
            self._state = SchedulerState.IDLE
        info(_LOG, "scheduler_stopped", pending_recovery=recovery)

    def resume_after_restart(self) -> int:
        """Re-enqueue every request in the recovery list and start."""
        with self._lock:
            recovered = list(self._pending_recovery.values())
            self._pending_recovery.clear()

        for request in recovered:
            self._sequencer.enqueue(request)
        info(_LOG, "resumed_after_restart", recovered=len(recovered))
        self.start()
        return len(recovered)

    def shutdown(self) -> None:
        self.stop()

    def dispatch_next(self) -> Optional[PrefetchRequest]:
        """
        Dispatch one request without waiting.

        Ignores the drain state and the inter-dispatch delay; the loop
        applies those around this step.
        """
        request = self._take_next(go_idle=False)
        if request is not None:
            self._submit(request)
        return request

    def stats(self) -> SchedulerStats:
        with self._lock:
            return SchedulerStats(
                state=self._state.value,
                pending=self._sequencer.count(),
                in_flight=self._in_flight,
                awaiting_payload=len(self._awaiting_payload),
                pending_recovery=len(self._pending_recovery),
                request_delay_s=round(self._request_delay, 3),
                high_priority_id=self._high_priority_id,
                total_dispatched=self._total_dispatched,
                total_completed=self._total_completed,
                total_rate_limited=self._total_rate_limited,
                total_failed=self._total_failed,
            )

    # ------------------------------------------------------------------
    # Loop
    # ------------------------------------------------------------------

    def wake(self) -> bool:
        """Launch the loop for new work unless auto-start is off or stopped."""
        with self._lock:
            if not self._auto_start or self._stopped:
                return False
        return self._launch()

    def _launch(self) -> bool:
        with self._lock:
            if self._thread is not None and self._thread.is_alive():
                return False
            if self._sequencer.count() == 0 and not self._high_priority_id:
                return False
            stop_event = threading.Event()
            self._stop_event = stop_event
            self._state = SchedulerState.AWAITING_DRAIN if self._draining else SchedulerState.RUNNING
            thread = threading.Thread(
                target=self._run,
                args=(stop_event,),
                name="tts-prefetch-scheduler",
                daemon=True,
            )
            self._thread = thread
            thread.start()
        verbose(_LOG, "scheduler_started", state=self._state.value, delay_s=self._request_delay)
        return True

    def _run(self, stop_event: threading.Event) -> None:
        try:
            while not stop_event.is_set():
                if self.is_draining and not self._wait_for_drain(stop_event):
                    break
                request = self._take_next(go_idle=True)
                if request is None:
                    verbose(_LOG, "scheduler_idle")
                    return
                self._submit(request)
                if stop_event.wait(self.request_delay_s):
                    break
        finally:
            with self._lock:
                if self._thread is threading.current_thread():
                    self._thread = None
                    self._state = SchedulerState.IDLE

    def _wait_for_drain(self, stop_event: threading.Event) -> bool:
        with self._lock:
            self._state = SchedulerState.AWAITING_DRAIN
            verbose(_LOG, "draining", in_flight=self._in_flight)
            while self._in_flight > 0 and not stop_event.is_set():
                self._in_flight_changed.wait(timeout=0.25)

        if stop_event.is_set() or stop_event.wait(self._config.rate_limit_cooldown_s):
            return False

        with self._lock:
            self._draining = False
            self._state = SchedulerState.RUNNING
            delay = self._request_delay
        info(_LOG, "drain_complete", delay_s=round(delay, 3))
        return True

    def _take_next(self, go_idle: bool) -> Optional[PrefetchRequest]:
        with self._lock:
            request = self._next_request_locked()
            if request is None:
                if go_idle and self._thread is threading.current_thread():
                    self._thread = None
                    self._state = SchedulerState.IDLE
                return None
            self._in_flight += 1
            self._in_flight_ids.add(request.id)
            self._dispatched_at[request.id] = time.monotonic()
            self._total_dispatched += 1
            self._update_gauges_locked()
            return request

    def _next_request_locked(self) -> Optional[PrefetchRequest]:
        target = self._high_priority_target_locked()
        if target is not None:
            request = self._sequencer.dequeue_by_id(target)
            if request is not None:
                verbose(_LOG, "high_priority_dispatch", clip_id=target)
                return request
            debug(_LOG, "high_priority_not_pending", clip_id=target)
        return self._sequencer.dequeue_highest_priority()

    def _high_priority_target_locked(self) -> Optional[str]:
        pointer = self._high_priority_id
        if not pointer:
            return None
        base = remove_accessibility_markers(pointer)
        speed = get_speed(pointer)
        if self._cache.is_cluster(base, speed=speed):
            cluster = self._cache.get_cluster_object(base, get_gender(pointer), speed=speed)
            if cluster is None or cluster.is_complete:
                return None
            return cluster.first_missing_chunk_id(exclude=self._in_flight_ids)
        if pointer in self._in_flight_ids:
            return None
        return pointer

    def _submit(self, request: PrefetchRequest) -> None:
        params = (request.voice_params or VoiceParams(self._default_voice)).with_speed(get_speed(request.id))
        set_clip_id(request.id)
        info(_LOG, "dispatched", voice=params.voice, chars=len(request.text), in_flight=self.in_flight)
        if self._metrics:
            self._metrics.record_dispatch()
        try:
            self._synthesis.submit(
                request.full_text,
                request.id,
                params,
                self._cache_settings,
                partial(self._on_submitted, request),
            )
        except Exception as exc:
            self._on_submitted(request, None, f"{type(exc).__name__}: {exc}")

    # ------------------------------------------------------------------
    # Completion callbacks
    # ------------------------------------------------------------------

    def _on_submitted(self, request: PrefetchRequest, handle: Optional[SynthesisResult], error_text: str) -> None:
        set_clip_id(request.id)
        accepted = False
        retry = False
        with self._lock:
            self._in_flight = max(0, self._in_flight - 1)
            self._in_flight_ids.discard(request.id)
            self._in_flight_changed.notify_all()

            if handle is not None and not error_text:
                accepted = True
                if self._stopped:
                    self._pending_recovery[request.id] = request
                else:
                    self._awaiting_payload[request.id] = request
            elif is_rate_limit_error(error_text):
                retry = True
                self._sequencer.enqueue(request)
                self._dispatched_at.pop(request.id, None)
                self._total_rate_limited += 1
                if not self._draining:
                    self._draining = True
                    self._request_delay += self._config.delay_increment_s
                    if self._state is SchedulerState.RUNNING:
                        self._state = SchedulerState.AWAITING_DRAIN
                warn(
                    _LOG, "rate_limited",
                    code=ErrorCode.RATE_LIMITED,
                    delay_s=round(self._request_delay, 3),
                    in_flight=self._in_flight,
                )
            else:
                self._fail_locked(request, error_text or "no result handle")
            self._update_gauges_locked()

        if accepted:
            verbose(_LOG, "accepted")
            handle.add_completion_listener(partial(self._on_payload_complete, request))
        elif retry:
            if self._metrics:
                self._metrics.record_rate_limited()
            self.wake()

    def _on_payload_complete(self, request: PrefetchRequest, handle: SynthesisResult) -> None:
        set_clip_id(request.id)
        if handle.failed:
            with self._lock:
                if request.id in self._pending_recovery:
                    # Lost while stopped; resume_after_restart re-enqueues it
                    verbose(_LOG, "payload_lost_while_stopped", error=handle.error_text)
                    return
                self._awaiting_payload.pop(request.id, None)
                self._fail_locked(request, f"payload interrupted: {handle.error_text}")
                self._update_gauges_locked()
            return

        with self._lock:
            self._awaiting_payload.pop(request.id, None)
            self._pending_recovery.pop(request.id, None)
            started = self._dispatched_at.pop(request.id, None)

        try:
            clip = handle.extract_clip()
        except (RuntimeError, ValueError) as exc:
            with self._lock:
                self._fail_locked(request, f"undecodable payload: {exc}")
            return

        self._cache.store(request.id, clip)

        elapsed = time.monotonic() - started if started is not None else 0.0
        with self._lock:
            self._total_completed += 1
            # A recovered copy may have been re-enqueued meanwhile
            self._sequencer.dequeue_by_id(request.id)
            if self._high_priority_id and self._is_ready_locked(self._high_priority_id):
                verbose(_LOG, "high_priority_ready", target=self._high_priority_id)
                self._high_priority_id = None
            self._update_gauges_locked()

        success(_LOG, "clip_ready", seconds=round(elapsed, 3))
        if self._metrics:
            self._metrics.record_completed(elapsed)

    def _fail_locked(self, request: PrefetchRequest, reason: str) -> None:
        self._total_failed += 1
        self._dispatched_at.pop(request.id, None)
        fail_code = ErrorCode.SYNTHESIS_FAILED
        error(_LOG, "synthesis_failed", code=fail_code, error=reason)
        if self._metrics:
            self._metrics.record_failure(fail_code)

        pointer = self._high_priority_id
        if pointer and (request.id == pointer or cluster_id_of(request.id) == pointer):
            warn(_LOG, "high_priority_cleared", target=pointer)
            self._high_priority_id = None

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _is_ready_locked(self, clip_id: str) -> bool:
        return self._cache.is_ready(
            remove_accessibility_markers(clip_id),
            get_gender(clip_id),
            speed=get_speed(clip_id),
        )

    def _update_gauges(self) -> None:
        with self._lock:
            self._update_gauges_locked()

    def _update_gauges_locked(self) -> None:
        if not self._metrics:
            return
        self._metrics.set_pending(self._sequencer.count())
        self._metrics.set_in_flight(self._in_flight)
        self._metrics.set_request_delay(self._request_delay)
