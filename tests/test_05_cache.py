"""
Tests for the clip cache.

Tests cover:
- Single clips by speed and gender
- Silent (None) clips
- Cluster registration and out-of-order chunk arrival
- Readiness and availability queries
- Registration errors
- Hit/miss statistics and metrics
"""
import numpy as np
import pytest

from tts_prefetch.core.errors import ClusterRegistrationError, ErrorCode


def _clip(clip_id: str, value: float = 0.5):
    from tts_prefetch.utils.audio import AudioClip

    return AudioClip(clip_id=clip_id, samples=np.full(10, value, dtype=np.float32), sample_rate=16000)


@pytest.fixture
def cache():
    from tts_prefetch.tts.cache import ClipCache

    return ClipCache()


class TestSingleClips:
    """store() / get_clip() / is_ready()"""

    def test_store_and_get(self, cache):
        clip = _clip("[speed=100]1.1.1")
        assert cache.store("[speed=100]1.1.1", clip) is True

        assert cache.get_clip("1.1.1", speed=100) is clip
        assert cache.is_ready("1.1.1", speed=100)

    def test_speed_is_part_of_the_key(self, cache):
        cache.store("[speed=150]1.1.1", _clip("[speed=150]1.1.1"))

        assert cache.get_clip("1.1.1", speed=100) is None
        assert not cache.is_ready("1.1.1", speed=100)
        assert cache.is_ready("1.1.1", speed=150)

    def test_gendered_clip_only_answers_its_gender(self, cache):
        male = _clip("[speed=100;isMale=true]1.1.1")
        cache.store("[speed=100;isMale=true]1.1.1", male)

        assert cache.get_clip("1.1.1", True, speed=100) is male
        assert cache.get_clip("1.1.1", False, speed=100) is None
        assert not cache.is_ready("1.1.1", False, speed=100)

    def test_ungendered_clip_answers_any_gender(self, cache):
        clip = _clip("[speed=100]1.1.1")
        cache.store("[speed=100]1.1.1", clip)

        assert cache.get_clip("1.1.1", True, speed=100) is clip
        assert cache.get_clip("1.1.1", False, speed=100) is clip
        assert cache.get_clip("1.1.1", speed=100) is clip

    def test_both_genders_stored(self, cache):
        male = _clip("[speed=100;isMale=true]1.1.1", 0.1)
        female = _clip("[speed=100;isMale=false]1.1.1", 0.2)
        cache.store("[speed=100;isMale=true]1.1.1", male)
        cache.store("[speed=100;isMale=false]1.1.1", female)

        assert cache.get_clip("1.1.1", True, speed=100) is male
        assert cache.get_clip("1.1.1", False, speed=100) is female

    def test_silent_clip_is_ready(self, cache):
        """None marks deliberately silent content."""
        assert cache.store("[speed=100]1.1.1", None) is True
        assert cache.is_ready("1.1.1", speed=100)
        assert cache.get_clip("1.1.1", speed=100) is None

    def test_second_write_ignored(self, cache):
        first = _clip("[speed=100]1.1.1", 0.1)
        cache.store("[speed=100]1.1.1", first)

        assert cache.store("[speed=100]1.1.1", _clip("[speed=100]1.1.1", 0.9)) is False
        assert cache.get_clip("1.1.1", speed=100) is first

    def test_query_accepts_marked_ids(self, cache):
        clip = _clip("[speed=100]1.1.1")
        cache.store("[speed=100]1.1.1", clip)
        assert cache.get_clip("[speed=100]1.1.1", speed=100) is clip


class TestClusters:
    """store_cluster() / chunk routing / cluster queries."""

    def test_out_of_order_arrival(self, cache):
        """Chunks land in their slot whatever order they arrive in."""
        handle = cache.store_cluster("[speed=100]2.1.1", 3)
        c1, c2, c3 = (_clip(f"[speed=100]2.1.1_{i}", i / 10) for i in (1, 2, 3))

        handle.store_chunk("[speed=100]2.1.1_3", c3)
        assert cache.is_cluster("2.1.1", speed=100)
        assert cache.is_cluster_available("2.1.1", speed=100)
        assert not cache.is_ready("2.1.1", speed=100)

        cache.store("[speed=100]2.1.1_1", c1)
        assert cache.get_clip_cluster("2.1.1", speed=100) == [c1, c3]

        cache.store("[speed=100]2.1.1_2", c2)
        assert cache.is_ready("2.1.1", speed=100)
        assert cache.get_clip_cluster("2.1.1", speed=100) == [c1, c2, c3]

    def test_cluster_object(self, cache):
        cache.store_cluster("[speed=100]2.1.1", 2)
        cache.store("[speed=100]2.1.1_2", None)

        cluster = cache.get_cluster_object("2.1.1", speed=100)
        assert cluster.clip_count == 1
        assert cluster.expected_count == 2
        assert cluster.missing_indices() == [1]
        assert cluster.first_missing_chunk_id() == "[speed=100]2.1.1_1"
        assert cluster.first_missing_chunk_id(exclude=["[speed=100]2.1.1_1"]) is None
        assert cluster.chunk_at(2) == (True, None)
        assert cluster.chunk_at(1) == (False, None)
        assert cluster.is_part_of_cluster("[speed=100]2.1.1_1")
        assert not cluster.is_part_of_cluster("[speed=100]2.1.2_1")

    def test_registered_but_empty(self, cache):
        cache.store_cluster("[speed=100]2.1.1", 2)

        assert cache.is_cluster("2.1.1", speed=100)
        assert not cache.is_cluster_available("2.1.1", speed=100)
        assert cache.get_clip_cluster("2.1.1", speed=100) == []

    def test_gendered_cluster(self, cache):
        cache.store_cluster("[speed=100;isMale=false]2.1.1", 1)
        cache.store("[speed=100;isMale=false]2.1.1_1", _clip("x"))

        assert cache.is_ready("2.1.1", False, speed=100)
        assert not cache.is_ready("2.1.1", True, speed=100)
        assert cache.get_clip_cluster("2.1.1", True, speed=100) is None

    def test_re_registration_returns_same_cluster(self, cache):
        first = cache.store_cluster("[speed=100]2.1.1", 2)
        second = cache.store_cluster("[speed=100]2.1.1", 2)
        assert first.cluster is second.cluster


class TestClusterErrors:
    """ClusterRegistrationError cases."""

    def test_chunk_without_cluster(self, cache):
        with pytest.raises(ClusterRegistrationError) as exc_info:
            cache.store("[speed=100]2.1.1_1", _clip("x"))
        assert exc_info.value.code == ErrorCode.CLUSTER_NOT_REGISTERED

    def test_index_out_of_range(self, cache):
        cache.store_cluster("[speed=100]2.1.1", 2)
        with pytest.raises(ClusterRegistrationError):
            cache.store("[speed=100]2.1.1_3", _clip("x"))

    def test_chunk_of_other_cluster(self, cache):
        handle = cache.store_cluster("[speed=100]2.1.1", 2)
        with pytest.raises(ClusterRegistrationError):
            handle.store_chunk("[speed=100]2.1.2_1", _clip("x"))

    def test_conflicting_count(self, cache):
        cache.store_cluster("[speed=100]2.1.1", 2)
        with pytest.raises(ClusterRegistrationError):
            cache.store_cluster("[speed=100]2.1.1", 3)

    def test_cluster_id_with_chunk_suffix(self, cache):
        with pytest.raises(ClusterRegistrationError):
            cache.store_cluster("[speed=100]2.1.1_1", 2)

    def test_zero_chunks(self, cache):
        with pytest.raises(ClusterRegistrationError):
            cache.store_cluster("[speed=100]2.1.1", 0)


class TestStats:
    """stats() and metrics."""

    def test_hits_and_misses(self, cache):
        cache.store("[speed=100]1.1.1", _clip("x"))
        cache.get_clip("1.1.1", speed=100)
        cache.get_clip("1.1.2", speed=100)

        stats = cache.stats()
        assert stats.hits == 1
        assert stats.misses == 1
        assert stats.clips == 1

    def test_cluster_counts(self, cache):
        cache.store_cluster("[speed=100]2.1.1", 1)
        cache.store_cluster("[speed=100]2.1.2", 2)
        cache.store("[speed=100]2.1.1_1", None)

        stats = cache.stats().to_dict()
        assert stats["clusters"] == 2
        assert stats["complete_clusters"] == 1

    def test_metrics_recorded(self):
        from tts_prefetch.core.metrics import PrefetchMetrics
        from tts_prefetch.tts.cache import ClipCache

        metrics = PrefetchMetrics()
        cache = ClipCache(metrics=metrics)
        cache.store("[speed=100]1.1.1", None)
        cache.get_clip("1.1.2", speed=100)

        text = metrics.render().decode()
        assert 'tts_prefetch_clips_stored_total{kind="silent"} 1.0' in text
        assert 'tts_prefetch_cache_queries_total{result="miss"} 1.0' in text
