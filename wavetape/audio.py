"""Speaker and microphone backends: sounddevice hardware and a simulated room."""

from __future__ import annotations

import json
import logging
import queue
import threading
import time
from concurrent.futures import Future
from typing import Callable, Optional, Protocol, Union

import numpy as np

from .errors import DeviceUnavailableError
from .ranging import speed_of_sound

try:
    import sounddevice as sd  # type: ignore
except (ImportError, OSError):  # pragma: no cover - PortAudio missing on headless hosts
    sd = None  # type: ignore

LOGGER = logging.getLogger(__name__)

BlockCallback = Callable[[np.ndarray], None]
DeviceSpec = Union[int, str, None]


def _log_event(event: str, **fields: object) -> None:
    LOGGER.info(json.dumps({"event": event, **fields}))


class Emitter(Protocol):
    """Plays short tone bursts through a speaker."""

    def open(self) -> None:
        ...

    def emit(self, frequency_hz: float, duration_ms: float) -> None:
        ...

    def close(self) -> None:
        ...


class Capturer(Protocol):
    """Pushes fixed-size blocks of mono microphone samples to a callback."""

    def open(self, on_block: BlockCallback) -> "Future[None]":
        ...

    def close(self) -> None:
        ...


def tone_burst(
    frequency_hz: float,
    duration_ms: float,
    sample_rate: float,
    amplitude: float = 1.0,
) -> np.ndarray:
    """Return a sine burst of ``duration_ms`` milliseconds."""
    count = max(1, int(round(sample_rate * duration_ms / 1000.0)))
    t = np.arange(count) / sample_rate
    return amplitude * np.sin(2.0 * np.pi * frequency_hz * t)


def _resolve_device(device: DeviceSpec) -> DeviceSpec:
    if device is None or isinstance(device, int):
        return device
    text = str(device).strip()
    if not text:
        return None
    return int(text) if text.isdigit() else text


class SoundDeviceEmitter:
    """Tone output on a sounddevice output device."""

    def __init__(
        self,
        sample_rate: float,
        device: DeviceSpec = None,
        volume: float = 1.0,
    ) -> None:
        self._sample_rate = sample_rate
        self._device = _resolve_device(device)
        self._volume = volume
        self._open = False

    def open(self) -> None:
        if sd is None:
            raise DeviceUnavailableError("sounddevice library is not available on this host")
        try:
            sd.check_output_settings(
                device=self._device, samplerate=self._sample_rate, channels=1
            )
        except (sd.PortAudioError, ValueError) as exc:
            raise DeviceUnavailableError(f"Unable to open output device: {exc}") from exc
        self._open = True
        _log_event("emitter_opened", device=self._device, sample_rate=self._sample_rate)

    def emit(self, frequency_hz: float, duration_ms: float) -> None:
        if not self._open:
            return
        tone = tone_burst(frequency_hz, duration_ms, self._sample_rate, self._volume)
        sd.play(
            tone.astype(np.float32),
            samplerate=self._sample_rate,
            device=self._device,
            blocking=False,
        )

    def close(self) -> None:
        if not self._open:
            return
        self._open = False
        sd.stop()
        _log_event("emitter_closed")


class SoundDeviceCapturer:
    """Mono float32 input stream.

    The PortAudio callback only queues blocks; a worker thread hands them to
    ``on_block`` so that processing, and closing the stream from a callback,
    never happens on the audio thread.
    """

    def __init__(
        self,
        sample_rate: float,
        block_size: int,
        device: DeviceSpec = None,
        queue_size: int = 64,
    ) -> None:
        self._sample_rate = sample_rate
        self._block_size = block_size
        self._device = _resolve_device(device)
        self._queue_size = max(1, queue_size)
        self._stream = None
        self._closed = threading.Event()

    def open(self, on_block: BlockCallback) -> "Future[None]":
        ready: Future[None] = Future()
        if sd is None:
            ready.set_exception(
                DeviceUnavailableError("sounddevice library is not available on this host")
            )
            return ready

        blocks: "queue.Queue[np.ndarray]" = queue.Queue(maxsize=self._queue_size)
        closed = threading.Event()

        def callback(indata, frames, time_info, status):  # noqa: ANN001
            if status:
                LOGGER.debug("Input stream status: %s", status)
            try:
                blocks.put_nowait(indata[:, 0].copy())
            except queue.Full:
                LOGGER.debug("Dropping input block, consumer is behind")

        try:
            stream = sd.InputStream(
                device=self._device,
                channels=1,
                samplerate=self._sample_rate,
                blocksize=self._block_size,
                dtype="float32",
                callback=callback,
            )
            stream.start()
        except (sd.PortAudioError, ValueError) as exc:
            ready.set_exception(DeviceUnavailableError(f"Unable to open input device: {exc}"))
            return ready

        self._stream = stream
        self._closed = closed
        threading.Thread(
            target=self._drain,
            args=(blocks, closed, on_block),
            name="wavetape-capture",
            daemon=True,
        ).start()
        _log_event(
            "capturer_opened",
            device=self._device,
            sample_rate=self._sample_rate,
            block_size=self._block_size,
        )
        ready.set_result(None)
        return ready

    def close(self) -> None:
        stream, self._stream = self._stream, None
        if stream is None:
            return
        self._closed.set()
        stream.stop()
        stream.close()
        _log_event("capturer_closed")

    @staticmethod
    def _drain(
        blocks: "queue.Queue[np.ndarray]",
        closed: threading.Event,
        on_block: BlockCallback,
    ) -> None:
        while not closed.is_set():
            try:
                block = blocks.get(timeout=0.1)
            except queue.Empty:
                continue
            if closed.is_set():
                return
            on_block(block)


class SimRoom:
    """A single virtual reflector shared by a simulated speaker and microphone."""

    def __init__(
        self,
        sample_rate: float,
        distance_m: float = 1.0,
        echo_gain: float = 0.4,
        noise: float = 0.002,
        temperature_c: float = 20.0,
        seed: Optional[int] = 0,
    ) -> None:
        self.sample_rate = sample_rate
        self.distance_m = distance_m
        self.echo_gain = echo_gain
        self.noise = noise
        self.temperature_c = temperature_c
        self._rng = np.random.default_rng(seed)
        self._pending = np.zeros(0)
        self._lock = threading.Lock()

    @property
    def echo_delay_samples(self) -> int:
        round_trip_s = 2.0 * self.distance_m / speed_of_sound(self.temperature_c)
        return int(round(round_trip_s * self.sample_rate))

    def play(self, tone: np.ndarray) -> None:
        """Mix ``tone`` and its echo into the audio that has not been heard yet."""
        delay = self.echo_delay_samples
        mix = np.zeros(delay + tone.size)
        mix[: tone.size] += tone
        mix[delay:] += tone * self.echo_gain
        with self._lock:
            if self._pending.size < mix.size:
                self._pending = np.concatenate(
                    (self._pending, np.zeros(mix.size - self._pending.size))
                )
            self._pending[: mix.size] += mix

    def next_block(self, size: int) -> np.ndarray:
        with self._lock:
            heard, self._pending = self._pending[:size], self._pending[size:]
        block = self._rng.normal(0.0, self.noise, size) if self.noise > 0 else np.zeros(size)
        block[: heard.size] += heard
        return block


class SimEmitter:
    """Software stand-in for the speaker."""

    def __init__(self, room: SimRoom, volume: float = 1.0) -> None:
        self._room = room
        self._volume = volume
        self.pulses = 0

    def open(self) -> None:
        _log_event("sim_emitter_opened", distance_m=self._room.distance_m)

    def emit(self, frequency_hz: float, duration_ms: float) -> None:
        self.pulses += 1
        self._room.play(
            tone_burst(frequency_hz, duration_ms, self._room.sample_rate, self._volume)
        )

    def close(self) -> None:
        _log_event("sim_emitter_closed", pulses=self.pulses)


class SimCapturer:
    """Software stand-in for the microphone.

    With ``realtime=True`` blocks are produced from a daemon thread at the
    audio rate; otherwise they are only delivered through :meth:`pump`.
    """

    def __init__(self, room: SimRoom, block_size: int, realtime: bool = True) -> None:
        self._room = room
        self._block_size = block_size
        self._realtime = realtime
        self._on_block: Optional[BlockCallback] = None
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def is_open(self) -> bool:
        return self._on_block is not None

    def open(self, on_block: BlockCallback) -> "Future[None]":
        ready: Future[None] = Future()
        self._on_block = on_block
        self._stop = threading.Event()
        if self._realtime:
            self._thread = threading.Thread(
                target=self._run, args=(self._stop,), name="sim-capture", daemon=True
            )
            self._thread.start()
        _log_event("sim_capturer_opened", block_size=self._block_size, realtime=self._realtime)
        ready.set_result(None)
        return ready

    def pump(self, count: int = 1) -> None:
        """Deliver ``count`` blocks synchronously on the calling thread."""
        for _ in range(count):
            on_block = self._on_block
            if on_block is None:
                raise RuntimeError("SimCapturer is not open")
            on_block(self._room.next_block(self._block_size))

    def close(self) -> None:
        if self._on_block is None:
            return
        self._on_block = None
        self._stop.set()
        self._thread = None
        _log_event("sim_capturer_closed")

    def _run(self, stop: threading.Event) -> None:
        period = self._block_size / self._room.sample_rate
        next_tick = time.monotonic()
        while not stop.is_set():
            on_block = self._on_block
            if on_block is None:
                return
            on_block(self._room.next_block(self._block_size))
            next_tick += period
            stop.wait(max(0.0, next_tick - time.monotonic()))


__all__ = [
    "Capturer",
    "Emitter",
    "SimCapturer",
    "SimEmitter",
    "SimRoom",
    "SoundDeviceCapturer",
    "SoundDeviceEmitter",
    "tone_burst",
]
