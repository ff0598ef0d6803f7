"""Time-of-flight to distance conversion and rolling averages."""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass
from typing import Deque, Iterator

from .config import SonarConfig
from .detector import Peak


@dataclass(frozen=True)
class Measurement:
    distance_m: float
    timestamp: float


@dataclass(frozen=True)
class ValidRange:
    """Advisory bounds of distances the current configuration can resolve."""

    min_m: float
    max_m: float


def speed_of_sound(temperature_c: float = 20.0) -> float:
    """Speed of sound in dry air in m/s, linear around room temperature."""
    return 331.3 + 0.6 * temperature_c


def time_to_distance(seconds: float, temperature_c: float = 20.0) -> float:
    """Convert a round-trip time to the one-way distance in metres."""
    # Divide by 2 because the pulse travels to the target and back.
    return seconds * speed_of_sound(temperature_c) / 2.0


def distance(pulse: Peak, echo: Peak, temperature_c: float = 20.0) -> float:
    """Distance to the reflector that produced ``echo``."""
    return time_to_distance(echo.time - pulse.time, temperature_c)


def valid_range(config: SonarConfig) -> ValidRange:
    """Return the shortest and longest distance ``config`` can report.

    The lower bound is the pulse length plus the smoothing blur, below which
    pulse and echo merge into one peak. The upper bound is the recorded
    window in continuous mode. In snapshot mode the window ends
    ``snapshot_delay_s`` after the pulse, so an echo has to arrive by then.
    """
    blur_s = (2 * config.kernel + 1) / config.sample_rate
    min_s = config.pulse_ms / 1000.0 + blur_s
    if config.mode == "continuous":
        window_s = config.record_samples / config.sample_rate
    else:
        window_s = min(config.snapshot_delay_s, config.window_s)
    return ValidRange(
        min_m=time_to_distance(min_s, config.temperature_c),
        max_m=time_to_distance(window_s, config.temperature_c),
    )


class RollingAverage:
    """Bounded FIFO of measurements; the oldest entry drops out when full."""

    def __init__(self, capacity: int) -> None:
        if capacity <= 0:
            raise ValueError("Rolling average capacity must be greater than zero")
        self._window: Deque[Measurement] = deque(maxlen=capacity)

    @property
    def capacity(self) -> int:
        return self._window.maxlen or 0

    @property
    def full(self) -> bool:
        return len(self._window) == self.capacity

    def __len__(self) -> int:
        return len(self._window)

    def __iter__(self) -> Iterator[Measurement]:
        return iter(self._window)

    def push(self, measurement: Measurement) -> None:
        self._window.append(measurement)

    def mean(self) -> float:
        if not self._window:
            raise ValueError("Rolling average window is empty")
        return sum(m.distance_m for m in self._window) / len(self._window)

    def clear(self) -> None:
        self._window.clear()


__all__ = [
    "Measurement",
    "RollingAverage",
    "ValidRange",
    "distance",
    "speed_of_sound",
    "time_to_distance",
    "valid_range",
]
