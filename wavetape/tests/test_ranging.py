"""Unit tests for distance conversion, valid range and rolling average."""

from __future__ import annotations

import pytest

from wavetape.config import SonarConfig
from wavetape.detector import Peak
from wavetape.ranging import (
    Measurement,
    RollingAverage,
    distance,
    speed_of_sound,
    time_to_distance,
    valid_range,
)


def _peak(t: float) -> Peak:
    return Peak(index=0, time=t, amplitude=1.0)


def test_speed_of_sound_at_20C() -> None:
    assert speed_of_sound(20.0) == pytest.approx(343.3)
    assert speed_of_sound(0.0) == pytest.approx(331.3)


def test_distance_halves_round_trip() -> None:
    # 1 m away: the sound covers 2 m in 2 / 343.3 s.
    assert distance(_peak(0.0), _peak(2 / 343.3), 20.0) == pytest.approx(1.0)


def test_distance_monotonic_in_delay() -> None:
    delays = [0.001, 0.002, 0.005, 0.01]
    distances = [distance(_peak(0.01), _peak(0.01 + d), 20.0) for d in delays]
    assert distances == sorted(distances)
    assert len(set(distances)) == len(distances)


def test_distance_monotonic_in_temperature() -> None:
    cold = time_to_distance(0.005, -10.0)
    room = time_to_distance(0.005, 20.0)
    hot = time_to_distance(0.005, 35.0)
    assert cold < room < hot


def test_valid_range_snapshot_ends_at_read_delay() -> None:
    config = SonarConfig()
    limits = valid_range(config)
    half_c = speed_of_sound(config.temperature_c) / 2.0
    assert limits.min_m == pytest.approx((0.002 + 65 / 48000.0) * half_c)
    assert limits.max_m == pytest.approx(0.022 * half_c)


def test_valid_range_continuous_subtracts_guard() -> None:
    config = SonarConfig(mode="continuous", guard_samples=160)
    limits = valid_range(config)
    half_c = speed_of_sound(config.temperature_c) / 2.0
    assert limits.max_m == pytest.approx((8160 - 160) / 48000.0 * half_c)
    assert limits.min_m < limits.max_m


def test_rolling_average_evicts_oldest() -> None:
    window = RollingAverage(3)
    for value in (1.0, 2.0, 3.0):
        window.push(Measurement(distance_m=value, timestamp=0.0))
    assert window.full
    assert window.mean() == pytest.approx(2.0)

    window.push(Measurement(distance_m=4.0, timestamp=1.0))
    assert len(window) == 3
    assert window.mean() == pytest.approx(3.0)
    assert [m.distance_m for m in window] == [2.0, 3.0, 4.0]


def test_rolling_average_clear_and_empty() -> None:
    window = RollingAverage(2)
    window.push(Measurement(distance_m=1.0, timestamp=0.0))
    assert not window.full
    window.clear()
    assert len(window) == 0
    with pytest.raises(ValueError):
        window.mean()


def test_rolling_average_invalid_capacity() -> None:
    with pytest.raises(ValueError):
        RollingAverage(0)
