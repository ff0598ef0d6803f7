"""Unit tests for the snapshot and continuous capture strategies."""

from __future__ import annotations

import numpy as np
import pytest

from wavetape.capture import (
    CaptureState,
    ContinuousCapture,
    SnapshotCapture,
    create_capture,
)
from wavetape.config import SonarConfig


def test_snapshot_take_requires_pulse() -> None:
    capture = SnapshotCapture(5)
    capture.feed([1.0, 2.0, 3.0])
    assert capture.state is CaptureState.IDLE
    assert capture.take() is None


def test_snapshot_returns_most_recent_window() -> None:
    capture = SnapshotCapture(5)
    assert capture.feed([1.0, 2.0, 3.0]) is None
    capture.on_pulse()
    assert capture.state is CaptureState.WAITING

    window = capture.take()
    assert window is not None
    assert window.tolist() == [0.0, 0.0, 1.0, 2.0, 3.0]
    assert capture.state is CaptureState.IDLE
    assert capture.take() is None


def test_snapshot_keeps_only_window_length() -> None:
    capture = SnapshotCapture(4)
    capture.feed(np.arange(3.0))
    capture.feed(np.arange(3.0, 10.0))
    capture.on_pulse()
    window = capture.take()
    assert window is not None
    assert window.tolist() == [6.0, 7.0, 8.0, 9.0]


def test_snapshot_window_is_a_copy() -> None:
    capture = SnapshotCapture(3)
    capture.feed([1.0, 2.0, 3.0])
    capture.on_pulse()
    window = capture.take()
    capture.feed([9.0])
    assert window is not None
    assert window.tolist() == [1.0, 2.0, 3.0]


def test_snapshot_window_ends_delay_after_pulse() -> None:
    capture = SnapshotCapture(4, delay_samples=3)
    capture.feed([1.0, 2.0])
    capture.on_pulse()
    assert capture.feed([3.0, 4.0, 5.0, 6.0]) is None

    window = capture.take()
    assert window is not None
    assert window.tolist() == [2.0, 3.0, 4.0, 5.0]
    assert capture.state is CaptureState.IDLE


def test_snapshot_read_before_audio_arrives_is_deferred() -> None:
    capture = SnapshotCapture(3, delay_samples=4)
    capture.on_pulse()
    assert capture.take() is None
    assert capture.state is CaptureState.WAITING

    assert capture.feed([1.0, 2.0]) is None
    window = capture.feed([3.0, 4.0, 5.0])
    assert window is not None
    assert window.tolist() == [2.0, 3.0, 4.0]
    assert capture.state is CaptureState.IDLE
    assert capture.take() is None


def test_snapshot_reset_drops_pending_read() -> None:
    capture = SnapshotCapture(3, delay_samples=1)
    capture.on_pulse()
    capture.take()
    capture.reset()
    assert capture.feed([1.0, 2.0]) is None
    assert capture.state is CaptureState.IDLE


def test_continuous_ignores_blocks_until_armed() -> None:
    capture = ContinuousCapture(target_samples=6, onset_threshold=0.5, lead_in=2)
    assert capture.feed([0.9, 0.9, 0.9, 0.9, 0.9, 0.9]) is None
    assert capture.state is CaptureState.IDLE


def test_continuous_records_from_onset_with_lead_in() -> None:
    capture = ContinuousCapture(target_samples=6, onset_threshold=0.5, lead_in=2)
    capture.on_pulse()
    assert capture.state is CaptureState.ARMED

    assert capture.feed([0.1, -0.2]) is None
    assert capture.state is CaptureState.ARMED

    assert capture.feed([0.0, -0.9, 0.1]) is None
    assert capture.state is CaptureState.RECORDING

    window = capture.feed([0.3, 0.3])
    assert window is not None
    assert window.tolist() == pytest.approx([0.0, 0.0, 0.0, -0.9, 0.1, 0.3])
    assert capture.state is CaptureState.IDLE


def test_continuous_does_not_rearm_while_recording() -> None:
    capture = ContinuousCapture(target_samples=10, onset_threshold=0.5)
    capture.on_pulse()
    capture.feed([1.0, 0.0])
    capture.on_pulse()
    assert capture.state is CaptureState.RECORDING


def test_continuous_threshold_is_exclusive() -> None:
    capture = ContinuousCapture(target_samples=4, onset_threshold=0.5)
    capture.on_pulse()
    assert capture.feed([0.5, -0.5]) is None
    assert capture.state is CaptureState.ARMED


def test_continuous_reset_discards_partial_recording() -> None:
    capture = ContinuousCapture(target_samples=4, onset_threshold=0.1)
    capture.on_pulse()
    capture.feed([1.0, 1.0])
    capture.reset()
    assert capture.state is CaptureState.IDLE
    capture.on_pulse()
    capture.feed([0.5, 0.5, 0.5])
    window = capture.feed([0.5])
    assert window is not None
    assert window.tolist() == [0.5, 0.5, 0.5, 0.5]


def test_create_capture_selects_by_mode() -> None:
    snapshot = create_capture(SonarConfig(mode="snapshot"))
    continuous = create_capture(SonarConfig(mode="continuous"))
    assert isinstance(snapshot, SnapshotCapture)
    assert snapshot.needs_delayed_read
    assert isinstance(continuous, ContinuousCapture)
    assert not continuous.needs_delayed_read


def test_create_capture_unknown_mode() -> None:
    with pytest.raises(ValueError):
        create_capture(SonarConfig(mode="burst"))
