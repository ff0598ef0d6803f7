"""Strategies for cutting the microphone stream into per-pulse windows."""

from __future__ import annotations

import enum
import logging
from typing import List, Optional

import numpy as np

from .conditioner import Samples, rectify
from .config import SonarConfig

LOGGER = logging.getLogger(__name__)


class CaptureState(enum.Enum):
    IDLE = "idle"
    WAITING = "waiting"
    CAPTURED = "captured"
    ARMED = "armed"
    RECORDING = "recording"
    FULL = "full"


class CaptureStrategy:
    """Turns pulse notifications and incoming blocks into capture windows."""

    #: Whether the session must schedule a delayed ``take()`` after each pulse.
    needs_delayed_read = False

    def __init__(self) -> None:
        self._state = CaptureState.IDLE

    @property
    def state(self) -> CaptureState:
        return self._state

    def on_pulse(self) -> None:
        raise NotImplementedError

    def feed(self, block: Samples) -> Optional[np.ndarray]:
        """Consume one block; return a finished window when one completes."""
        raise NotImplementedError

    def take(self) -> Optional[np.ndarray]:
        return None

    def reset(self) -> None:
        self._state = CaptureState.IDLE


class SnapshotCapture(CaptureStrategy):
    """Read the window that ends ``delay_samples`` after each pulse.

    The window is frozen by sample count, not wall-clock time, so a delayed
    ``take()`` that fires before the audio has arrived is deferred until
    ``feed`` has seen enough samples.
    """

    needs_delayed_read = True

    def __init__(self, window_samples: int, delay_samples: int = 0) -> None:
        super().__init__()
        if window_samples <= 0:
            raise ValueError("window_samples must be greater than zero")
        if delay_samples < 0:
            raise ValueError("delay_samples must not be negative")
        self._window_samples = window_samples
        self._delay = delay_samples
        self._live = np.zeros(window_samples)
        self._heard = 0
        self._frozen: Optional[np.ndarray] = None
        self._read_due = False

    def on_pulse(self) -> None:
        self._state = CaptureState.WAITING
        self._heard = 0
        self._read_due = False
        self._frozen = self._live.copy() if self._delay == 0 else None

    def feed(self, block: Samples) -> Optional[np.ndarray]:
        samples = np.asarray(block, dtype=float).ravel()
        if self._state is CaptureState.WAITING and self._frozen is None:
            remaining = self._delay - self._heard
            if samples.size >= remaining:
                self._append(samples[:remaining])
                self._frozen = self._live.copy()
                self._append(samples[remaining:])
            else:
                self._append(samples)
            self._heard += samples.size
        else:
            self._append(samples)

        if self._read_due and self._frozen is not None:
            return self._hand_off()
        return None

    def take(self) -> Optional[np.ndarray]:
        """Return the window for the pending pulse, or defer until it is heard."""
        if self._state is not CaptureState.WAITING:
            return None
        if self._frozen is None:
            self._read_due = True
            return None
        return self._hand_off()

    def reset(self) -> None:
        super().reset()
        self._live = np.zeros(self._window_samples)
        self._heard = 0
        self._frozen = None
        self._read_due = False

    def _append(self, samples: np.ndarray) -> None:
        if samples.size >= self._window_samples:
            self._live = samples[-self._window_samples :].copy()
        elif samples.size:
            self._live = np.concatenate((self._live[samples.size :], samples))

    def _hand_off(self) -> np.ndarray:
        self._state = CaptureState.CAPTURED
        window, self._frozen = self._frozen, None
        self._read_due = False
        self._state = CaptureState.IDLE
        assert window is not None
        return window


class ContinuousCapture(CaptureStrategy):
    """Start recording at the pulse onset and stop once the window is full."""

    def __init__(
        self,
        target_samples: int,
        onset_threshold: float,
        lead_in: int = 0,
    ) -> None:
        super().__init__()
        if target_samples <= 0:
            raise ValueError("target_samples must be greater than zero")
        self._target = target_samples
        self._threshold = onset_threshold
        self._lead_in = max(0, lead_in)
        self._blocks: List[np.ndarray] = []
        self._length = 0

    def on_pulse(self) -> None:
        # A new cycle only arms once the previous recording has been handed off.
        if self._state is CaptureState.IDLE:
            self._state = CaptureState.ARMED

    def feed(self, block: Samples) -> Optional[np.ndarray]:
        samples = np.asarray(block, dtype=float).ravel()
        if self._state is CaptureState.ARMED:
            if samples.size == 0:
                return None
            peak = float(rectify(samples).max())
            if peak <= self._threshold:
                return None
            LOGGER.debug("Pulse onset detected: peak=%.3f threshold=%.3f", peak, self._threshold)
            self._state = CaptureState.RECORDING
            self._blocks = [np.zeros(self._lead_in)]
            self._length = self._lead_in
        elif self._state is not CaptureState.RECORDING:
            return None

        self._blocks.append(samples)
        self._length += samples.size
        if self._length < self._target:
            return None

        self._state = CaptureState.FULL
        window = np.concatenate(self._blocks)[: self._target]
        self._blocks = []
        self._length = 0
        self._state = CaptureState.IDLE
        return window

    def reset(self) -> None:
        super().reset()
        self._blocks = []
        self._length = 0


def create_capture(config: SonarConfig) -> CaptureStrategy:
    """Build the capture strategy selected by ``config.mode``."""
    if config.mode == "snapshot":
        return SnapshotCapture(config.window_samples, config.snapshot_delay_samples)
    if config.mode == "continuous":
        return ContinuousCapture(
            config.record_samples,
            config.onset_threshold,
            lead_in=config.lead_in_samples,
        )
    raise ValueError(f"Unknown capture mode: {config.mode!r}")


__all__ = [
    "CaptureState",
    "CaptureStrategy",
    "ContinuousCapture",
    "SnapshotCapture",
    "create_capture",
]
