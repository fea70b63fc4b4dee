"""
Tests for the download scheduler.

Most tests drive the scheduler by hand (auto_start=False, dispatch_next)
against a scripted synthesis service; a few run the real loop thread.

Tests cover:
- Dispatch order, in-flight accounting, payload storage
- Rate limiting: re-enqueue, drain, one delay increment per episode
- Permanent failures
- High-priority pointer (single clips and clusters)
- stop() / resume_after_restart()
"""
import time

import pytest

from tts_prefetch.tts.request import PrefetchRequest, VoiceParams


def wait_until(predicate, timeout: float = 3.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


def _req(clip_id: str, **kwargs) -> PrefetchRequest:
    return PrefetchRequest(id=clip_id, text=f"text {clip_id}", **kwargs)


@pytest.fixture
def make_scheduler(fake_synthesis):
    from tts_prefetch.core.config import SchedulerConfig
    from tts_prefetch.core.metrics import PrefetchMetrics
    from tts_prefetch.tts.accessibility import AccessibilitySettings
    from tts_prefetch.tts.cache import ClipCache
    from tts_prefetch.tts.scheduler import DownloadScheduler
    from tts_prefetch.tts.sequencer import PriorityIdSequencer

    created = []

    def _make(synthesis=None, auto_start=False, settings=None, **config):
        config.setdefault("request_delay_s", 0.0)
        config.setdefault("rate_limit_cooldown_s", 0.0)
        scheduler = DownloadScheduler(
            sequencer=PriorityIdSequencer(lambda: settings or AccessibilitySettings(speed=100, is_male=True)),
            cache=ClipCache(),
            synthesis=synthesis or fake_synthesis,
            config=SchedulerConfig(**config),
            cache_settings={"ttl": 60},
            metrics=PrefetchMetrics(),
            default_voice="narrator-default",
            auto_start=auto_start,
        )
        created.append(scheduler)
        return scheduler

    yield _make
    for scheduler in created:
        scheduler.shutdown()


def _ready(scheduler, clip_id: str) -> bool:
    return scheduler._is_ready_locked(clip_id)


class TestDispatch:
    """dispatch_next() and completion."""

    def test_dispatches_in_id_order(self, make_scheduler, fake_synthesis):
        scheduler = make_scheduler()
        scheduler.enqueue_many([_req("[speed=100]1.2.1"), _req("[speed=100]1.1.1")])

        assert scheduler.dispatch_next().id == "[speed=100]1.1.1"
        assert scheduler.dispatch_next().id == "[speed=100]1.2.1"
        assert scheduler.dispatch_next() is None
        assert fake_synthesis.submitted_ids == ["[speed=100]1.1.1", "[speed=100]1.2.1"]
        assert scheduler.in_flight == 2

    def test_accepted_payload_is_stored(self, make_scheduler, fake_synthesis):
        scheduler = make_scheduler()
        scheduler.enqueue(_req("[speed=100]1.1.1"))
        scheduler.dispatch_next()

        fake_synthesis.accept("[speed=100]1.1.1")

        assert scheduler.in_flight == 0
        assert _ready(scheduler, "[speed=100]1.1.1")
        stats = scheduler.stats()
        assert stats.total_dispatched == 1
        assert stats.total_completed == 1
        assert stats.awaiting_payload == 0

    def test_in_flight_drops_on_accept_not_on_payload(self, make_scheduler, fake_synthesis):
        """Acceptance ends the in-flight period; the payload may stream later."""
        scheduler = make_scheduler()
        scheduler.enqueue(_req("[speed=100]1.1.1"))
        scheduler.dispatch_next()

        sub = fake_synthesis.accept(finish=False)
        assert scheduler.in_flight == 0
        assert scheduler.stats().awaiting_payload == 1
        assert not _ready(scheduler, "[speed=100]1.1.1")

        sub.handle.append(fake_synthesis.payload)
        sub.handle.finish()
        assert _ready(scheduler, "[speed=100]1.1.1")

    def test_submission_contents(self, make_scheduler, fake_synthesis):
        """Pre/post text wrap the text; speed comes from the ID."""
        from tts_prefetch.tts.accessibility import AccessibilitySettings

        scheduler = make_scheduler(settings=AccessibilitySettings(speed=150))
        scheduler.enqueue(_req(
            "[speed=150]1.1.1",
            pre_text="<a>",
            post_text="</a>",
            voice_params=VoiceParams("en-US-Ava"),
        ))
        scheduler.dispatch_next()
        sub = fake_synthesis.submissions[0]
        assert sub.full_text == "<a>text [speed=150]1.1.1</a>"
        assert sub.voice_params == VoiceParams("en-US-Ava", 150)
        assert sub.cache_settings == {"ttl": 60}

    def test_default_voice(self, make_scheduler, fake_synthesis):
        scheduler = make_scheduler()
        scheduler.enqueue(_req("[speed=100]1.1.1"))
        scheduler.dispatch_next()
        assert fake_synthesis.submissions[0].voice_params == VoiceParams("narrator-default", 100)

    def test_payload_trimmed(self, make_scheduler, fake_synthesis):
        from conftest import make_wav

        scheduler = make_scheduler()
        scheduler.enqueue(_req("[speed=100]1.1.1"))
        scheduler.dispatch_next()
        fake_synthesis.accept(payload=make_wav(seconds=0.1, pad=800))

        clip = scheduler._cache.get_clip("1.1.1", speed=100)
        assert len(clip.samples) == 1600
        assert clip.sample_rate == 16000


class TestRateLimit:
    """429 handling."""

    def test_request_goes_back(self, make_scheduler, fake_synthesis):
        scheduler = make_scheduler(request_delay_s=1.0, delay_increment_s=0.1)
        scheduler.enqueue(_req("[speed=100]1.1.1"))
        scheduler.dispatch_next()

        fake_synthesis.rate_limit()

        assert scheduler.in_flight == 0
        assert scheduler._sequencer.contains("[speed=100]1.1.1")
        assert scheduler.is_draining
        assert scheduler.request_delay_s == pytest.approx(1.1)
        assert scheduler.stats().total_rate_limited == 1

    def test_one_increment_per_episode(self, make_scheduler, fake_synthesis):
        """Several 429s before the drain completes grow the delay once."""
        scheduler = make_scheduler(request_delay_s=1.0, delay_increment_s=0.1)
        scheduler.enqueue_many([_req("[speed=100]1.1.1"), _req("[speed=100]1.1.2")])
        scheduler.dispatch_next()
        scheduler.dispatch_next()

        fake_synthesis.rate_limit()
        fake_synthesis.rate_limit()

        assert scheduler.request_delay_s == pytest.approx(1.1)
        assert scheduler._sequencer.count() == 2

    def test_delay_never_shrinks(self, make_scheduler, fake_synthesis):
        scheduler = make_scheduler(request_delay_s=1.0, delay_increment_s=0.1)
        scheduler.enqueue(_req("[speed=100]1.1.1"))
        scheduler.dispatch_next()
        fake_synthesis.rate_limit()

        scheduler.dispatch_next()
        fake_synthesis.accept()
        assert scheduler.request_delay_s == pytest.approx(1.1)

    def test_rate_limit_metric(self, make_scheduler, fake_synthesis):
        scheduler = make_scheduler()
        scheduler.enqueue(_req("[speed=100]1.1.1"))
        scheduler.dispatch_next()
        fake_synthesis.rate_limit()

        text = scheduler._metrics.render().decode()
        assert "tts_prefetch_requests_rate_limited_total 1.0" in text


class TestFailures:
    """Permanent failures drop the request."""

    def test_failed_request_dropped(self, make_scheduler, fake_synthesis):
        scheduler = make_scheduler()
        scheduler.enqueue(_req("[speed=100]1.1.1"))
        scheduler.dispatch_next()

        fake_synthesis.fail(text="HTTP 500: boom")

        assert scheduler.in_flight == 0
        assert scheduler._sequencer.count() == 0
        assert not scheduler.is_draining
        assert scheduler.stats().total_failed == 1

    def test_submit_exception_is_failure(self, make_scheduler):
        from tts_prefetch.tts.synthesis import SynthesisService

        class Broken(SynthesisService):
            def submit(self, *args, **kwargs):
                raise ConnectionError("refused")

        scheduler = make_scheduler(synthesis=Broken())
        scheduler.enqueue(_req("[speed=100]1.1.1"))
        scheduler.dispatch_next()

        assert scheduler.in_flight == 0
        assert scheduler.stats().total_failed == 1

    def test_interrupted_payload_is_failure(self, make_scheduler, fake_synthesis):
        """A payload cut off after acceptance drops the request and the pointer."""
        scheduler = make_scheduler()
        scheduler.enqueue(_req("[speed=100;isMale=true]1.1.1"))
        scheduler.high_priority_id = "[speed=100;isMale=true]1.1.1"
        scheduler.dispatch_next()

        sub = fake_synthesis.accept(finish=False)
        assert scheduler.stats().awaiting_payload == 1

        sub.handle.fail("ReadError: connection reset")

        stats = scheduler.stats()
        assert stats.awaiting_payload == 0
        assert stats.total_failed == 1
        assert stats.high_priority_id is None
        assert not _ready(scheduler, "[speed=100;isMale=true]1.1.1")

    def test_payload_lost_while_stopped_is_recovered(self, make_scheduler, fake_synthesis):
        scheduler = make_scheduler()
        scheduler.enqueue(_req("[speed=100]1.1.1"))
        scheduler.dispatch_next()
        sub = fake_synthesis.accept(finish=False)
        scheduler.stop()

        sub.handle.fail("ReadError: connection reset")

        stats = scheduler.stats()
        assert stats.pending_recovery == 1
        assert stats.total_failed == 0
        assert scheduler.resume_after_restart() == 1

    def test_http_body_cut_off(self, make_scheduler):
        import httpx

        from tts_prefetch.tts.synthesis import HttpSynthesisService

        class CutOff(httpx.SyncByteStream):
            def __iter__(self):
                yield b"RIFF"
                raise httpx.ReadError("connection reset")

        client = httpx.Client(
            transport=httpx.MockTransport(lambda request: httpx.Response(200, stream=CutOff())),
            base_url="http://synth.test",
        )
        synthesis = HttpSynthesisService(client=client, max_workers=1)
        try:
            scheduler = make_scheduler(synthesis=synthesis)
            scheduler.enqueue(_req("[speed=100;isMale=true]1.1.1"))
            scheduler.high_priority_id = "[speed=100;isMale=true]1.1.1"
            scheduler.dispatch_next()

            assert wait_until(lambda: scheduler.stats().total_failed == 1)
            stats = scheduler.stats()
            assert stats.awaiting_payload == 0
            assert stats.high_priority_id is None
        finally:
            synthesis.shutdown()

    def test_unexpected_transport_exception(self, make_scheduler):
        import httpx

        from tts_prefetch.tts.synthesis import HttpSynthesisService

        def handler(request):
            raise RuntimeError("ssl layer blew up")

        client = httpx.Client(transport=httpx.MockTransport(handler), base_url="http://synth.test")
        synthesis = HttpSynthesisService(client=client, max_workers=1)
        try:
            scheduler = make_scheduler(synthesis=synthesis)
            scheduler.enqueue(_req("[speed=100]1.1.1"))
            scheduler.dispatch_next()

            assert wait_until(lambda: scheduler.stats().total_failed == 1)
            assert scheduler.in_flight == 0
        finally:
            synthesis.shutdown()

    def test_undecodable_payload(self, make_scheduler, fake_synthesis):
        scheduler = make_scheduler()
        scheduler.enqueue(_req("[speed=100]1.1.1"))
        scheduler.dispatch_next()

        fake_synthesis.accept(payload=b"not a wav file")

        assert not _ready(scheduler, "[speed=100]1.1.1")
        assert scheduler.stats().total_failed == 1

    def test_empty_payload_is_silent_clip(self, make_scheduler, fake_synthesis):
        scheduler = make_scheduler()
        scheduler.enqueue(_req("[speed=100]1.1.1"))
        scheduler.dispatch_next()

        fake_synthesis.accept(payload=b"")
        assert _ready(scheduler, "[speed=100]1.1.1")


class TestHighPriority:
    """high_priority_id pointer."""

    def test_pointer_overrides_order(self, make_scheduler):
        scheduler = make_scheduler()
        scheduler.enqueue_many([_req(f"[speed=100]1.{i}.1") for i in range(1, 5)])

        scheduler.high_priority_id = "[speed=100]1.3.1"
        assert scheduler.dispatch_next().id == "[speed=100]1.3.1"
        assert scheduler.dispatch_next().id == "[speed=100]1.1.1"

    def test_pointer_cleared_when_ready(self, make_scheduler, fake_synthesis):
        scheduler = make_scheduler()
        scheduler.enqueue(_req("[speed=100]1.3.1"))
        scheduler.high_priority_id = "[speed=100]1.3.1"
        scheduler.dispatch_next()

        fake_synthesis.accept()
        assert scheduler.high_priority_id is None

    def test_pointer_without_markers_rejected(self, make_scheduler):
        scheduler = make_scheduler()
        scheduler.high_priority_id = "1.3.1"
        assert scheduler.high_priority_id is None

    def test_pointer_to_ready_content_clears(self, make_scheduler):
        scheduler = make_scheduler()
        scheduler._cache.store("[speed=100]1.3.1", None)
        scheduler.high_priority_id = "[speed=100]1.3.1"
        assert scheduler.high_priority_id is None

    def test_empty_pointer_clears(self, make_scheduler):
        scheduler = make_scheduler()
        scheduler.enqueue(_req("[speed=100]1.3.1"))
        scheduler.high_priority_id = "[speed=100]1.3.1"
        scheduler.high_priority_id = ""
        assert scheduler.high_priority_id is None

    def test_pointer_not_pending_falls_back(self, make_scheduler):
        scheduler = make_scheduler()
        scheduler.enqueue(_req("[speed=100]1.1.1"))
        scheduler.high_priority_id = "[speed=100]9.9.9"
        assert scheduler.dispatch_next().id == "[speed=100]1.1.1"

    def test_pointer_in_flight_not_redispatched(self, make_scheduler):
        scheduler = make_scheduler()
        scheduler.enqueue_many([_req("[speed=100]1.1.1"), _req("[speed=100]1.3.1")])
        scheduler.high_priority_id = "[speed=100]1.3.1"

        assert scheduler.dispatch_next().id == "[speed=100]1.3.1"
        assert scheduler.dispatch_next().id == "[speed=100]1.1.1"

    def test_cluster_pointer_takes_lowest_missing_chunk(self, make_scheduler, fake_synthesis):
        scheduler = make_scheduler()
        scheduler._cache.store_cluster("[speed=100]2.1.1", 3)
        scheduler.enqueue_many(
            [_req("[speed=100]1.1.1")] + [_req(f"[speed=100]2.1.1_{i}") for i in (1, 2, 3)]
        )
        scheduler.high_priority_id = "[speed=100]2.1.1"

        assert scheduler.dispatch_next().id == "[speed=100]2.1.1_1"
        assert scheduler.dispatch_next().id == "[speed=100]2.1.1_2"
        fake_synthesis.accept("[speed=100]2.1.1_1")
        assert scheduler.dispatch_next().id == "[speed=100]2.1.1_3"
        assert scheduler.high_priority_id == "[speed=100]2.1.1"

        fake_synthesis.accept("[speed=100]2.1.1_2")
        fake_synthesis.accept("[speed=100]2.1.1_3")
        assert scheduler.high_priority_id is None

    def test_failure_clears_pointer(self, make_scheduler, fake_synthesis):
        scheduler = make_scheduler()
        scheduler.enqueue(_req("[speed=100]1.3.1"))
        scheduler.high_priority_id = "[speed=100]1.3.1"
        scheduler.dispatch_next()

        fake_synthesis.fail()
        assert scheduler.high_priority_id is None


class TestStopAndResume:
    """stop() / resume_after_restart()"""

    def test_stop_moves_unfinished_to_recovery(self, make_scheduler, fake_synthesis):
        scheduler = make_scheduler()
        scheduler.enqueue(_req("[speed=100]1.1.1"))
        scheduler.dispatch_next()
        fake_synthesis.accept(finish=False)

        scheduler.stop()
        assert [r.id for r in scheduler.pending_recovery] == ["[speed=100]1.1.1"]

    def test_late_payload_leaves_recovery(self, make_scheduler, fake_synthesis):
        scheduler = make_scheduler()
        scheduler.enqueue(_req("[speed=100]1.1.1"))
        scheduler.dispatch_next()
        sub = fake_synthesis.accept(finish=False)
        scheduler.stop()

        sub.handle.append(fake_synthesis.payload)
        sub.handle.finish()
        assert scheduler.pending_recovery == []
        assert _ready(scheduler, "[speed=100]1.1.1")

    def test_accepted_after_stop_goes_to_recovery(self, make_scheduler, fake_synthesis):
        scheduler = make_scheduler()
        scheduler.enqueue(_req("[speed=100]1.1.1"))
        scheduler.dispatch_next()
        scheduler.stop()

        fake_synthesis.accept(finish=False)
        assert [r.id for r in scheduler.pending_recovery] == ["[speed=100]1.1.1"]

    def test_resume_refetches(self, make_scheduler, fake_synthesis):
        scheduler = make_scheduler()
        scheduler.enqueue(_req("[speed=100]1.1.1"))
        scheduler.dispatch_next()
        original = fake_synthesis.accept(finish=False)
        scheduler.stop()

        fake_synthesis.auto_accept = True
        assert scheduler.resume_after_restart() == 1
        assert wait_until(lambda: _ready(scheduler, "[speed=100]1.1.1"))
        assert scheduler.pending_recovery == []

        # The original payload finishing late is ignored
        original.handle.append(fake_synthesis.payload)
        original.handle.finish()
        assert scheduler.stats().total_completed == 2


class TestLoop:
    """The real worker thread."""

    def test_loop_drains_queue(self, make_scheduler, auto_synthesis):
        scheduler = make_scheduler(synthesis=auto_synthesis, auto_start=True)
        ids = [f"[speed=100]1.{i}.1" for i in (3, 1, 2)]
        scheduler.enqueue_many([_req(i) for i in ids])

        assert wait_until(lambda: all(_ready(scheduler, i) for i in ids))
        assert auto_synthesis.submitted_ids == sorted(ids)
        assert wait_until(lambda: scheduler.state.value == "idle")

    def test_loop_recovers_from_rate_limit(self, make_scheduler):
        from conftest import FakeSynthesisService

        class LimitedOnce(FakeSynthesisService):
            def submit(self, full_text, clip_id, voice_params, cache_settings, on_complete):
                if not self.submissions:
                    self.submissions.append(None)
                    on_complete(None, "HTTP 429 Too Many Requests")
                    return
                super().submit(full_text, clip_id, voice_params, cache_settings, on_complete)

        synthesis = LimitedOnce(auto_accept=True)
        scheduler = make_scheduler(synthesis=synthesis, auto_start=True, delay_increment_s=0.05)
        scheduler.enqueue(_req("[speed=100]1.1.1"))

        assert wait_until(lambda: _ready(scheduler, "[speed=100]1.1.1"))
        assert scheduler.request_delay_s == pytest.approx(0.05)
        assert scheduler.stats().total_rate_limited == 1
        assert not scheduler.is_draining

    def test_start_without_work_is_noop(self, make_scheduler):
        scheduler = make_scheduler()
        assert scheduler.start() is False

    def test_no_auto_start(self, make_scheduler, fake_synthesis):
        scheduler = make_scheduler(auto_start=False)
        scheduler.enqueue(_req("[speed=100]1.1.1"))
        time.sleep(0.05)
        assert fake_synthesis.submissions == []
