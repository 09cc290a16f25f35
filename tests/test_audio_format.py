from __future__ import annotations

import numpy as np
import pytest

from voice_todo.core.audio.format import (
    AudioFrameF32,
    float32_to_pcm16le_bytes,
    frame_to_pcm16le,
    resample_linear,
    to_mono_f32,
)


def test_to_mono_mixes_channels():
    stereo = np.array([[0.0, 1.0], [1.0, 0.0]], dtype=np.float32)
    mono = to_mono_f32(stereo)
    assert mono.shape == (2,)
    assert np.allclose(mono, np.array([0.5, 0.5], dtype=np.float32))


def test_to_mono_rejects_3d_input():
    with pytest.raises(ValueError):
        to_mono_f32(np.zeros((2, 2, 2), dtype=np.float32))


def test_resample_length_ratio():
    src = np.linspace(-1.0, 1.0, num=480, dtype=np.float32)
    dst = resample_linear(src, from_rate_hz=48000, to_rate_hz=16000)
    assert dst.shape[0] == 160


def test_resample_same_rate_is_identity():
    src = np.linspace(-1.0, 1.0, num=16, dtype=np.float32)
    assert np.array_equal(resample_linear(src, from_rate_hz=16000, to_rate_hz=16000), src)


def test_pcm16_encoding_clips_and_is_little_endian():
    data = float32_to_pcm16le_bytes(np.array([2.0, -2.0, 0.0], dtype=np.float32))
    values = np.frombuffer(data, dtype="<i2")
    assert values.tolist() == [32767, -32767, 0]


def test_frame_to_pcm16le_downmixes_and_resamples():
    samples = np.full((480, 2), 0.25, dtype=np.float32)
    pcm = frame_to_pcm16le(AudioFrameF32(samples=samples, sample_rate_hz=48000), target_sample_rate_hz=16000)
    values = np.frombuffer(pcm, dtype="<i2")
    assert values.shape == (160,)
    assert np.all(values == round(0.25 * 32767))
