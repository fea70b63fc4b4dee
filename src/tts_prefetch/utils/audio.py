"""
Audio Processing Utilities.

Synthesized clips arrive from the remote service as WAV payloads. They
are decoded once, when the payload is complete, into an AudioClip that
the cache stores and the playback layer consumes.

Clip format:
    - float32 numpy samples in [-1, 1]
    - mono (multi-channel payloads are averaged)
    - leading and trailing zero samples removed, so clips played back
      to back have no built-in gaps

Dependencies:
    - numpy: Array operations
    - soundfile: WAV reading/writing (uses libsndfile)

Example:
    >>> clip = clip_from_wav_bytes("[speed=100]1.2.3", payload)
    >>> clip.duration_s
    1.84
"""
from __future__ import annotations

import io
from dataclasses import dataclass
from typing import Optional, Tuple

import numpy as np
import soundfile as sf


@dataclass
class AudioClip:
    """
    A decoded, trimmed clip.

    Attributes:
        clip_id: Content ID (accessibility markers included).
        samples: float32 mono samples.
        sample_rate: Samples per second.
    """
    clip_id: str
    samples: np.ndarray
    sample_rate: int

    @property
    def duration_s(self) -> float:
        if self.sample_rate <= 0:
            return 0.0
        return float(len(self.samples)) / float(self.sample_rate)

    def to_wav_bytes(self) -> bytes:
        return wav_bytes_from_float32(self.samples, self.sample_rate)


def wav_bytes_from_float32(waveform: np.ndarray, sample_rate: int) -> bytes:
    """Encode float32 samples as 16-bit PCM mono WAV."""
    wav = np.asarray(waveform, dtype=np.float32)
    if wav.ndim > 1:
        wav = wav.reshape(-1)

    buf = io.BytesIO()
    sf.write(buf, wav, sample_rate, format="WAV", subtype="PCM_16")
    return buf.getvalue()


def wav_bytes_to_float32(wav_bytes: bytes) -> Tuple[np.ndarray, int]:
    """
    Decode WAV bytes to float32 mono samples.

    Raises:
        soundfile.LibsndfileError: If the payload is not a readable audio file.
    """
    wav, sr = sf.read(io.BytesIO(wav_bytes), dtype="float32")
    if wav.ndim > 1:
        wav = wav.mean(axis=1)
    return np.asarray(wav, dtype=np.float32), int(sr)


def trim_silence(samples: np.ndarray) -> np.ndarray:
    """
    Drop leading and trailing samples that are exactly zero.

    An all-zero input returns an empty array.
    """
    nonzero = np.flatnonzero(samples)
    if nonzero.size == 0:
        return samples[:0]
    return samples[nonzero[0]:nonzero[-1] + 1]


def clip_from_wav_bytes(clip_id: str, wav_bytes: bytes, trim: bool = True) -> Optional[AudioClip]:
    """Decode a finished payload. An empty payload yields None."""
    if not wav_bytes:
        return None
    samples, sample_rate = wav_bytes_to_float32(wav_bytes)
    if trim:
        samples = trim_silence(samples)
    return AudioClip(clip_id=clip_id, samples=samples, sample_rate=sample_rate)
