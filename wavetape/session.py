"""Measurement session: periodic pulses, capture, echo detection, averaging."""

from __future__ import annotations

import enum
import json
import logging
import threading
import time
from concurrent.futures import Future
from functools import partial
from typing import Callable, Optional, Set

import numpy as np

from .audio import Capturer, Emitter
from .capture import CaptureStrategy, create_capture
from .conditioner import Envelope, condition
from .config import SonarConfig
from .detector import EchoReading, detect_echo
from .errors import DeviceUnavailableError
from .ranging import Measurement, RollingAverage, ValidRange, distance, valid_range

LOGGER = logging.getLogger(__name__)

MeasurementCallback = Callable[[float], None]
DebugCallback = Callable[[Envelope, Optional[EchoReading]], None]


def _log_event(event: str, **fields: object) -> None:
    LOGGER.info(json.dumps({"event": event, **fields}))


class SessionState(enum.Enum):
    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"


class MeasurementSession:
    """Owns the emitter, capturer and rolling average for one ranging run.

    ``start`` opens both devices and begins pulsing every ``period_s``;
    ``stop`` releases them again. Every completed capture window is
    conditioned and searched for an echo. Distances are averaged over the
    last ``num_measurements`` readings and reported through the
    ``on_measurement`` callback.

    State changes happen under a single re-entrant lock. Each run gets a
    generation number so that timers, blocks and device completions that
    belong to an earlier run are ignored. User callbacks run on the thread
    that completed the window, without the lock held.
    """

    def __init__(
        self,
        config: SonarConfig,
        emitter: Emitter,
        capturer: Capturer,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._config = config
        self._emitter = emitter
        self._capturer = capturer
        self._clock = clock

        self._lock = threading.RLock()
        self._state = SessionState.STOPPED
        self._generation = 0
        self._ready: Future[None] = Future()
        self._ready.set_result(None)

        self._capture: Optional[CaptureStrategy] = None
        self._average: Optional[RollingAverage] = None
        self._on_measurement: Optional[MeasurementCallback] = None
        self._on_debug: Optional[DebugCallback] = None
        self._ticker_stop: Optional[threading.Event] = None
        self._pending_reads: Set[threading.Timer] = set()

    @property
    def config(self) -> SonarConfig:
        return self._config

    @property
    def state(self) -> SessionState:
        with self._lock:
            return self._state

    def get_valid_range(self) -> ValidRange:
        return valid_range(self._config)

    def __enter__(self) -> "MeasurementSession":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.stop()

    # Lifecycle ----------------------------------------------------------------

    def start(
        self,
        on_measurement: MeasurementCallback,
        on_debug: Optional[DebugCallback] = None,
    ) -> "Future[None]":
        """Open the devices and start pulsing.

        Returns a future that resolves once the session is running, or fails
        with ``DeviceUnavailableError`` if either device cannot be opened.
        Calling ``start`` on a session that is not stopped returns the
        future of the current run and changes nothing.
        """
        with self._lock:
            if self._state is not SessionState.STOPPED:
                return self._ready
            self._config.validate()

            self._generation += 1
            generation = self._generation
            self._state = SessionState.STARTING
            self._capture = create_capture(self._config)
            self._average = RollingAverage(self._config.num_measurements)
            self._on_measurement = on_measurement
            self._on_debug = on_debug
            ready: Future[None] = Future()
            self._ready = ready

        try:
            self._emitter.open()
            opened = self._capturer.open(partial(self._on_block, generation))
        except Exception as exc:
            self._fail_start(generation, exc)
            return ready
        opened.add_done_callback(partial(self._on_capture_ready, generation))
        return ready

    def stop(self) -> None:
        """Stop pulsing and release the devices. Safe to call at any time."""
        with self._lock:
            if self._state is SessionState.STOPPED:
                return
            previous = self._state
            self._state = SessionState.STOPPED
            self._generation += 1
            self._discard_run_locked()
            ready = self._ready

        if not ready.done():
            ready.cancel()
        self._release_devices()
        _log_event("session_stopped", previous=previous.value)

    def pulse(self) -> bool:
        """Emit one pulse now. Normally driven by the session's own timer."""
        with self._lock:
            generation = self._generation
        return self._pulse(generation)

    # Start-up -----------------------------------------------------------------

    def _on_capture_ready(self, generation: int, opened: "Future[None]") -> None:
        if opened.cancelled():
            error: Optional[BaseException] = DeviceUnavailableError("Capture open was cancelled")
        else:
            error = opened.exception()

        with self._lock:
            current = generation == self._generation and self._state is SessionState.STARTING
            if current and error is None:
                self._state = SessionState.RUNNING
                ticker_stop = threading.Event()
                self._ticker_stop = ticker_stop
                threading.Thread(
                    target=self._tick_loop,
                    args=(generation, ticker_stop),
                    name="wavetape-pulse",
                    daemon=True,
                ).start()
                self._ready.set_result(None)

        if not current:
            self._release_if_stopped()
            return
        if error is not None:
            self._fail_start(generation, error)
            return

        limits = self.get_valid_range()
        _log_event(
            "session_started",
            mode=self._config.mode,
            period_s=self._config.period_s,
            min_m=round(limits.min_m, 3),
            max_m=round(limits.max_m, 3),
        )

    def _fail_start(self, generation: int, error: BaseException) -> None:
        with self._lock:
            current = generation == self._generation and self._state is SessionState.STARTING
            if current:
                self._state = SessionState.STOPPED
                self._discard_run_locked()
                ready = self._ready

        if not current:
            self._release_if_stopped()
            return
        self._release_devices()
        _log_event("device_open_failed", error=str(error))
        if not isinstance(error, DeviceUnavailableError):
            wrapped = DeviceUnavailableError(str(error))
            wrapped.__cause__ = error
            error = wrapped
        ready.set_exception(error)

    def _release_if_stopped(self) -> None:
        # stop() ran while the devices were still opening; close what they opened.
        with self._lock:
            stopped = self._state is SessionState.STOPPED
        if stopped:
            self._release_devices()

    # Cycle --------------------------------------------------------------------

    def _tick_loop(self, generation: int, ticker_stop: threading.Event) -> None:
        period = self._config.period_s
        next_tick = time.monotonic() + period
        while not ticker_stop.wait(max(0.0, next_tick - time.monotonic())):
            next_tick += period
            if not self._pulse(generation):
                return

    def _pulse(self, generation: int) -> bool:
        with self._lock:
            if not self._is_current(generation):
                return False
            assert self._capture is not None
            self._capture.on_pulse()
            self._emitter.emit(self._config.frequency_hz, self._config.pulse_ms)
            if self._capture.needs_delayed_read:
                timer = threading.Timer(
                    self._config.snapshot_delay_s,
                    self._read_snapshot,
                    args=(generation,),
                )
                timer.daemon = True
                self._pending_reads.add(timer)
                timer.start()
        return True

    def _read_snapshot(self, generation: int) -> None:
        with self._lock:
            self._pending_reads.discard(threading.current_thread())  # type: ignore[arg-type]
            if not self._is_current(generation):
                return
            assert self._capture is not None
            window = self._capture.take()
        if window is not None:
            self._complete(generation, window)

    def _on_block(self, generation: int, block: np.ndarray) -> None:
        with self._lock:
            if not self._is_current(generation):
                return
            assert self._capture is not None
            window = self._capture.feed(block)
        if window is not None:
            self._complete(generation, window)

    def _complete(self, generation: int, window: np.ndarray) -> None:
        envelope = condition(window, self._config)
        reading = detect_echo(envelope, self._config.cutoff_ratio)

        with self._lock:
            if not self._is_current(generation):
                return
            assert self._average is not None
            on_measurement = self._on_measurement
            on_debug = self._on_debug

            mean: Optional[float] = None
            if reading is None:
                LOGGER.debug("No echo in capture window (%d steps)", len(envelope))
            else:
                meters = distance(reading.pulse, reading.echo, self._config.temperature_c)
                self._average.push(Measurement(distance_m=meters, timestamp=self._clock()))
                if self._average.full or self._config.mode == "continuous":
                    mean = self._average.mean()

        # Callbacks run unlocked so stop() never waits on them.
        if mean is not None and on_measurement is not None and self._is_current(generation):
            on_measurement(mean)
        if on_debug is not None and self._is_current(generation):
            on_debug(envelope, reading)

    # Helpers ------------------------------------------------------------------

    def _is_current(self, generation: int) -> bool:
        return generation == self._generation and self._state is SessionState.RUNNING

    def _discard_run_locked(self) -> None:
        if self._ticker_stop is not None:
            self._ticker_stop.set()
            self._ticker_stop = None
        for timer in self._pending_reads:
            timer.cancel()
        self._pending_reads.clear()
        if self._capture is not None:
            self._capture.reset()
        if self._average is not None:
            self._average.clear()
        self._capture = None
        self._average = None
        self._on_measurement = None
        self._on_debug = None

    def _release_devices(self) -> None:
        try:
            self._capturer.close()
        finally:
            self._emitter.close()


__all__ = ["DebugCallback", "MeasurementCallback", "MeasurementSession", "SessionState"]
