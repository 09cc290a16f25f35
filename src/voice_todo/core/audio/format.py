from __future__ import annotations

import math
from dataclasses import dataclass

import numpy as np


@dataclass(frozen=True, slots=True)
class AudioFrameF32:
    samples: np.ndarray
    sample_rate_hz: int


def to_mono_f32(samples: np.ndarray) -> np.ndarray:
    if samples.ndim == 1:
        return np.asarray(samples, dtype=np.float32)
    if samples.ndim == 2:
        return np.asarray(samples.mean(axis=1), dtype=np.float32)
    raise ValueError("samples must be 1D (mono) or 2D (frames, channels)")


def resample_linear(samples: np.ndarray, *, from_rate_hz: int, to_rate_hz: int) -> np.ndarray:
    if from_rate_hz <= 0 or to_rate_hz <= 0:
        raise ValueError("sample rates must be > 0")

    samples = np.asarray(samples, dtype=np.float32)
    if from_rate_hz == to_rate_hz or samples.size == 0:
        return samples

    src_len = int(samples.shape[0])
    dst_len = max(int(math.floor(src_len * (to_rate_hz / from_rate_hz))), 1)
    x_src = np.arange(src_len, dtype=np.float32)
    x_dst = np.linspace(0.0, src_len - 1, num=dst_len, dtype=np.float32)
    return np.interp(x_dst, x_src, samples).astype(np.float32)


def frame_to_pcm16le(frame: AudioFrameF32, *, target_sample_rate_hz: int) -> bytes:
    """Mix down, resample and encode one captured frame for a recognizer."""
    mono = to_mono_f32(np.asarray(frame.samples))
    mono = resample_linear(mono, from_rate_hz=frame.sample_rate_hz, to_rate_hz=target_sample_rate_hz)
    return float32_to_pcm16le_bytes(mono)


def float32_to_pcm16le_bytes(samples: np.ndarray) -> bytes:
    clipped = np.clip(np.asarray(samples, dtype=np.float32), -1.0, 1.0)
    return np.round(clipped * 32767.0).astype("<i2").tobytes()
