"""Tests for WAV decoding and silence trimming."""
from __future__ import annotations

import numpy as np
import pytest


class TestTrimSilence:
    def test_trims_both_ends(self):
        from tts_prefetch.utils.audio import trim_silence

        samples = np.array([0, 0, 0.5, 0, 0.25, 0, 0], dtype=np.float32)
        assert trim_silence(samples).tolist() == [0.5, 0.0, 0.25]

    def test_all_zero(self):
        from tts_prefetch.utils.audio import trim_silence

        assert trim_silence(np.zeros(10, dtype=np.float32)).size == 0

    def test_nothing_to_trim(self):
        from tts_prefetch.utils.audio import trim_silence

        samples = np.array([0.1, 0.2], dtype=np.float32)
        assert trim_silence(samples).tolist() == pytest.approx([0.1, 0.2])


class TestClipDecoding:
    def test_decode_and_trim(self):
        from conftest import SAMPLE_RATE, make_wav
        from tts_prefetch.utils.audio import clip_from_wav_bytes

        clip = clip_from_wav_bytes("[speed=100]1.1.1", make_wav(seconds=0.5, pad=400))
        assert clip.sample_rate == SAMPLE_RATE
        assert len(clip.samples) == SAMPLE_RATE // 2
        assert clip.duration_s == pytest.approx(0.5)
        assert clip.samples.dtype == np.float32

    def test_untrimmed(self):
        from conftest import SAMPLE_RATE, make_wav
        from tts_prefetch.utils.audio import clip_from_wav_bytes

        clip = clip_from_wav_bytes("[speed=100]1.1.1", make_wav(seconds=0.5, pad=400), trim=False)
        assert len(clip.samples) == SAMPLE_RATE // 2 + 800

    def test_empty_payload_is_none(self):
        from tts_prefetch.utils.audio import clip_from_wav_bytes

        assert clip_from_wav_bytes("[speed=100]1.1.1", b"") is None

    def test_garbage_payload_raises(self):
        from tts_prefetch.utils.audio import clip_from_wav_bytes

        with pytest.raises(RuntimeError):
            clip_from_wav_bytes("[speed=100]1.1.1", b"definitely not audio")

    def test_wav_roundtrip_header(self):
        from tts_prefetch.utils.audio import wav_bytes_from_float32

        wav = wav_bytes_from_float32(np.full(160, 0.1, dtype=np.float32), 16000)
        assert wav[:4] == b"RIFF"
        assert wav[8:12] == b"WAVE"

    def test_stereo_mixed_to_mono(self):
        import io

        import soundfile as sf

        from tts_prefetch.utils.audio import wav_bytes_to_float32

        stereo = np.stack([np.full(100, 0.5), np.full(100, 0.25)], axis=1).astype(np.float32)
        buf = io.BytesIO()
        sf.write(buf, stereo, 8000, format="WAV", subtype="FLOAT")

        samples, sample_rate = wav_bytes_to_float32(buf.getvalue())
        assert sample_rate == 8000
        assert samples.ndim == 1
        assert samples[0] == pytest.approx(0.375)

    def test_zero_sample_rate_duration(self):
        from tts_prefetch.utils.audio import AudioClip

        assert AudioClip("x", np.zeros(4, dtype=np.float32), 0).duration_s == 0.0
