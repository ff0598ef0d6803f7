"""Command-line entry point: run a ranging session until interrupted."""

from __future__ import annotations

import argparse
import json
import logging
import signal
import sys
import threading
from dataclasses import replace
from pathlib import Path
from typing import Dict, Iterable, Optional, Tuple

from .audio import (
    Capturer,
    Emitter,
    SimCapturer,
    SimEmitter,
    SimRoom,
    SoundDeviceCapturer,
    SoundDeviceEmitter,
)
from .config import MODES, AppConfig, load_config, load_default_config
from .errors import WavetapeError
from .osc_sender import OscPublisher
from .session import MeasurementSession

LOGGER = logging.getLogger(__name__)


def _log_event(event: str, **fields: object) -> None:
    LOGGER.info(json.dumps({"event": event, **fields}))


def parse_args(argv: Optional[Iterable[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Acoustic pulse-echo range finder using a speaker and microphone."
    )
    parser.add_argument(
        "--config",
        type=Path,
        help="Path to configuration YAML (defaults to the bundled config.yaml).",
    )
    parser.add_argument(
        "--simulate",
        action="store_true",
        help="Use the simulated room instead of audio hardware.",
    )
    parser.add_argument(
        "--distance",
        type=float,
        help="Reflector distance in metres for --simulate.",
    )
    parser.add_argument("--mode", choices=MODES, help="Override the capture mode.")
    return parser.parse_args(list(argv) if argv is not None else None)


def apply_overrides(config: AppConfig, args: argparse.Namespace) -> AppConfig:
    """Fold command-line overrides into the loaded configuration."""
    simulator = config.simulator
    if args.simulate:
        simulator = replace(simulator, enabled=True)
    if args.distance is not None:
        simulator = replace(simulator, distance_m=args.distance)
    sonar = config.sonar
    if args.mode:
        sonar = replace(sonar, mode=args.mode)
    return replace(config, sonar=sonar, simulator=simulator)


def build_devices(config: AppConfig) -> Tuple[Emitter, Capturer]:
    sonar = config.sonar
    if config.simulator.enabled:
        sim = config.simulator
        room = SimRoom(
            sonar.sample_rate,
            distance_m=sim.distance_m,
            echo_gain=sim.echo_gain,
            noise=sim.noise,
            temperature_c=sonar.temperature_c,
            seed=sim.seed,
        )
        return SimEmitter(room, config.audio.volume), SimCapturer(room, sonar.block_size)
    emitter = SoundDeviceEmitter(
        sonar.sample_rate,
        device=config.audio.output_device,
        volume=config.audio.volume,
    )
    capturer = SoundDeviceCapturer(
        sonar.sample_rate,
        sonar.block_size,
        device=config.audio.input_device,
    )
    return emitter, capturer


def _install_signal_handlers(stop_event: threading.Event) -> None:
    def handler(signum: int, _frame: object) -> None:
        _log_event("signal_received", signal=signum)
        stop_event.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            signal.signal(sig, handler)
        except ValueError:  # pragma: no cover - not available on all platforms
            continue


def run(config: AppConfig, stop_event: Optional[threading.Event] = None) -> None:
    stop_event = stop_event or threading.Event()
    emitter, capturer = build_devices(config)
    session = MeasurementSession(config.sonar, emitter, capturer)
    osc = OscPublisher(config.osc.host, config.osc.port) if config.osc.enabled else None
    last: Dict[str, float] = {}

    def on_measurement(meters: float) -> None:
        last["distance_m"] = meters
        if config.print_dist:
            print(f"dist_m={meters:.3f}", flush=True)
        if osc is not None:
            osc.send_distance(meters)

    try:
        ready = session.start(on_measurement)
        ready.result()
        limits = session.get_valid_range()
        if osc is not None:
            osc.send_range(limits.min_m, limits.max_m)

        alive_seq = 0
        while not stop_event.wait(1.0):
            alive_seq += 1
            if osc is not None:
                osc.send_alive(alive_seq)
            LOGGER.debug("alive seq=%d last=%s", alive_seq, last.get("distance_m"))
    finally:
        session.stop()
        if osc is not None:
            osc.close()
        _log_event("wavetape_stopped", last_distance_m=last.get("distance_m"))


def main(argv: Optional[Iterable[str]] = None) -> None:
    args = parse_args(argv)
    config = load_config(args.config) if args.config else load_default_config()
    config = apply_overrides(config, args)

    logging_level = getattr(logging, config.logging.level.upper(), logging.INFO)
    logging.basicConfig(level=logging_level, format="%(message)s")

    stop_event = threading.Event()
    _install_signal_handlers(stop_event)
    try:
        run(config, stop_event)
    except KeyboardInterrupt:
        _log_event("keyboard_interrupt")
    except WavetapeError as exc:
        _log_event("fatal_error", error=str(exc))
        sys.exit(1)


if __name__ == "__main__":
    main(sys.argv[1:])
