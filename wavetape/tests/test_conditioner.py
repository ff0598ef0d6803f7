"""Unit tests for rectification, smoothing, downsampling and band-pass."""

from __future__ import annotations

import numpy as np
import pytest

from wavetape.conditioner import (
    bandpass,
    condition,
    downsample,
    from_unsigned_bytes,
    rectify,
    smooth,
)
from wavetape.config import SonarConfig


def test_rectify_full_wave() -> None:
    assert rectify([-0.5, 0.25, 0.0]).tolist() == pytest.approx([0.5, 0.25, 0.0])


def test_rectify_silence_threshold_zeroes_small_samples() -> None:
    out = rectify([-0.5, 0.25, -0.01, 0.04], silence_threshold=0.05)
    assert out.tolist() == pytest.approx([0.5, 0.25, 0.0, 0.0])


def test_rectify_around_baseline() -> None:
    assert rectify([1.0, 0.5, 0.0], baseline=0.5).tolist() == pytest.approx([0.5, 0.0, 0.5])


def test_from_unsigned_bytes_centres_on_128() -> None:
    out = from_unsigned_bytes([128, 192, 64, 0])
    assert out.tolist() == pytest.approx([0.0, 0.5, -0.5, -1.0])


def test_smooth_skips_out_of_range_samples() -> None:
    out = smooth([1.0, 2.0, 3.0, 4.0, 5.0], 1)
    assert out.tolist() == pytest.approx([1.5, 2.0, 3.0, 4.0, 4.5])


def test_smooth_kernel_zero_is_identity() -> None:
    rng = np.random.default_rng(3)
    buffer = rng.normal(size=257)
    out = smooth(buffer, 0)
    assert np.array_equal(out, buffer)
    assert out is not buffer


def test_smooth_rejects_negative_kernel() -> None:
    with pytest.raises(ValueError):
        smooth([1.0, 2.0], -1)


def test_smooth_empty_buffer() -> None:
    assert smooth([], 4).size == 0


def test_downsample_length_is_floor() -> None:
    for length in (0, 1, 7, 8, 9, 100):
        assert downsample(np.arange(length), 8).size == length // 8


def test_downsample_takes_every_nth_sample() -> None:
    assert downsample(np.arange(10), 3).tolist() == [0.0, 3.0, 6.0]


def test_downsample_factor_one_is_identity() -> None:
    buffer = np.array([0.3, 0.1, 0.9, 0.4])
    assert np.array_equal(downsample(buffer, 1), buffer)


def test_downsample_windowed_uses_local_mean() -> None:
    out = downsample([0.0, 0.0, 3.0, 0.0, 0.0, 0.0], 2, window=1)
    assert out.tolist() == pytest.approx([0.0, 1.0, 0.0])


def test_downsample_rejects_non_positive_factor() -> None:
    with pytest.raises(ValueError):
        downsample([1.0, 2.0], 0)


def test_bandpass_keeps_pulse_frequency() -> None:
    sample_rate = 48000.0
    t = np.arange(4800) / sample_rate
    in_band = bandpass(np.sin(2 * np.pi * 12000 * t), 12000, sample_rate, 50.0)
    off_band = bandpass(np.sin(2 * np.pi * 3000 * t), 12000, sample_rate, 50.0)

    def rms(x: np.ndarray) -> float:
        tail = x[x.size // 2 :]
        return float(np.sqrt(np.mean(tail**2)))

    assert rms(in_band) == pytest.approx(np.sqrt(0.5), rel=0.05)
    assert rms(in_band) > 10 * rms(off_band)


def test_bandpass_disabled_with_zero_q() -> None:
    buffer = np.array([0.1, -0.2, 0.3])
    assert np.array_equal(bandpass(buffer, 12000, 48000, 0.0), buffer)


def test_condition_produces_downsampled_envelope() -> None:
    config = SonarConfig(bandpass_q=0.0)
    rng = np.random.default_rng(1)
    envelope = condition(rng.normal(size=1003), config)

    assert len(envelope) == 1003 // config.downsample_factor
    assert envelope.samples_per_step == config.downsample_factor
    assert np.all(envelope.values >= 0.0)
    assert envelope.time_at(10) == pytest.approx(10 * 8 / 48000.0)
