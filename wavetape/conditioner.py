"""Signal conditioning: turn raw microphone samples into a volume envelope."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence, Union

import numpy as np
from scipy import signal

from .config import SonarConfig

Samples = Union[Sequence[float], np.ndarray]


@dataclass(frozen=True, eq=False)
class Envelope:
    """Non-negative magnitude over time, one value per (downsampled) step."""

    values: np.ndarray
    sample_rate: float
    samples_per_step: int = 1

    def __len__(self) -> int:
        return int(self.values.size)

    def time_at(self, index: int) -> float:
        """Seconds from the start of the capture window to ``index``."""
        return index * self.samples_per_step / self.sample_rate

    @property
    def duration_s(self) -> float:
        return self.time_at(len(self))


def from_unsigned_bytes(samples: Samples) -> np.ndarray:
    """Map unsigned 8-bit PCM (baseline 128) onto signed floats in [-1, 1)."""
    values = np.asarray(samples, dtype=float)
    return (values - 128.0) / 128.0


def rectify(
    buffer: Samples,
    baseline: float = 0.0,
    silence_threshold: float = 0.0,
) -> np.ndarray:
    """Full-wave rectify ``buffer`` around ``baseline``.

    Magnitudes strictly below ``silence_threshold`` are zeroed, which keeps
    quantisation hiss of byte-oriented sources out of the envelope.
    """
    magnitude = np.abs(np.asarray(buffer, dtype=float) - baseline)
    if silence_threshold > 0.0:
        magnitude[magnitude < silence_threshold] = 0.0
    return magnitude


def smooth(buffer: Samples, kernel: int) -> np.ndarray:
    """Centred moving average with half-width ``kernel``.

    Indices outside the buffer are skipped rather than zero-padded, so the
    edges average over fewer samples.
    """
    if kernel < 0:
        raise ValueError("kernel must not be negative")
    values = np.asarray(buffer, dtype=float)
    if kernel == 0 or values.size == 0:
        return values.copy()

    size = values.size
    csum = np.concatenate(([0.0], np.cumsum(values)))
    idx = np.arange(size)
    lo = np.maximum(idx - kernel, 0)
    hi = np.minimum(idx + kernel, size - 1) + 1
    return (csum[hi] - csum[lo]) / (hi - lo)


def downsample(buffer: Samples, n: int, window: int = 0) -> np.ndarray:
    """Keep every ``n``-th sample.

    With ``window > 0`` each kept value is the mean of the surrounding
    ``window`` samples on either side instead of the raw sample, which
    avoids aliasing from plain decimation.
    """
    if n <= 0:
        raise ValueError("downsample factor must be greater than zero")
    values = np.asarray(buffer, dtype=float)
    if window:
        values = smooth(values, window)
    count = values.size // n
    return values[: count * n : n].copy()


def bandpass(
    buffer: Samples,
    frequency_hz: float,
    sample_rate: float,
    q: float,
) -> np.ndarray:
    """Narrow band-pass around the pulse frequency; ``q <= 0`` disables it."""
    values = np.asarray(buffer, dtype=float)
    if q <= 0.0 or values.size == 0:
        return values
    b, a = signal.iirpeak(frequency_hz, q, fs=sample_rate)
    return signal.lfilter(b, a, values)


def condition(buffer: Samples, config: SonarConfig) -> Envelope:
    """Run the full conditioning chain used for every captured window."""
    values = bandpass(buffer, config.frequency_hz, config.sample_rate, config.bandpass_q)
    volume = rectify(values, silence_threshold=config.silence_threshold)
    smoothed = smooth(volume, config.kernel)
    mini = downsample(smoothed, config.downsample_factor, window=config.downsample_window)
    # Re-smooth at the reduced rate to make up for the lost resolution.
    mini_kernel = config.kernel // config.downsample_factor
    for _ in range(config.post_smooth_passes):
        mini = smooth(mini, mini_kernel)
    return Envelope(
        values=mini,
        sample_rate=config.sample_rate,
        samples_per_step=config.downsample_factor,
    )


__all__ = [
    "Envelope",
    "bandpass",
    "condition",
    "downsample",
    "from_unsigned_bytes",
    "rectify",
    "smooth",
]
