"""Configuration loading and dataclasses for the ranging node."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from .errors import ConfigurationError

DEFAULT_CONFIG = Path(__file__).resolve().with_name("config.yaml")

MODES = ("snapshot", "continuous")


@dataclass(frozen=True)
class SonarConfig:
    """Pulse, capture and conditioning parameters for one session."""

    frequency_hz: float = 12000.0
    pulse_ms: float = 2.0
    period_s: float = 0.19
    window_s: float = 0.17
    kernel: int = 32
    downsample_factor: int = 8
    downsample_window: int = 0
    post_smooth_passes: int = 2
    onset_threshold: float = 0.1
    num_measurements: int = 5
    temperature_c: float = 20.0
    mode: str = "snapshot"
    snapshot_delay_s: float = 0.022
    sample_rate: float = 48000.0
    block_size: int = 256
    guard_samples: int = 0
    bandpass_q: float = 50.0
    silence_threshold: float = 0.0
    cutoff_ratio: float = 0.2

    @property
    def window_samples(self) -> int:
        return int(round(self.sample_rate * self.window_s))

    @property
    def record_samples(self) -> int:
        """Samples collected per cycle in continuous mode."""
        return self.window_samples - self.guard_samples

    @property
    def lead_in_samples(self) -> int:
        return self.kernel // 2

    @property
    def snapshot_delay_samples(self) -> int:
        return int(round(self.sample_rate * self.snapshot_delay_s))

    def validate(self) -> None:
        """Raise ``ConfigurationError`` for values the pipeline cannot run with."""
        positive = {
            "frequency_hz": self.frequency_hz,
            "pulse_ms": self.pulse_ms,
            "period_s": self.period_s,
            "window_s": self.window_s,
            "sample_rate": self.sample_rate,
            "block_size": self.block_size,
        }
        for key, value in positive.items():
            if value <= 0:
                raise ConfigurationError(f"{key} must be greater than zero (got {value})")
        if self.frequency_hz >= self.sample_rate / 2:
            raise ConfigurationError(
                f"frequency_hz ({self.frequency_hz}) must be below the Nyquist frequency"
            )
        if self.mode not in MODES:
            raise ConfigurationError(f"mode must be one of {', '.join(MODES)} (got {self.mode!r})")
        if self.downsample_factor <= 0:
            raise ConfigurationError(
                f"downsample_factor must be greater than zero (got {self.downsample_factor})"
            )
        if self.kernel < 0 or self.downsample_window < 0:
            raise ConfigurationError("kernel and downsample_window must not be negative")
        if self.post_smooth_passes < 0:
            raise ConfigurationError("post_smooth_passes must not be negative")
        if self.kernel >= self.window_samples / 2:
            raise ConfigurationError(
                f"kernel ({self.kernel}) must be smaller than half the capture window "
                f"({self.window_samples} samples)"
            )
        if self.downsample_factor > self.window_samples:
            raise ConfigurationError("downsample_factor exceeds the capture window length")
        if self.num_measurements < 1:
            raise ConfigurationError("num_measurements must be at least 1")
        if self.snapshot_delay_s < 0:
            raise ConfigurationError("snapshot_delay_s must not be negative")
        if self.mode == "snapshot" and self.snapshot_delay_samples >= self.window_samples:
            raise ConfigurationError(
                f"snapshot_delay_s ({self.snapshot_delay_s}) must be shorter than "
                f"window_s ({self.window_s}) or the pulse falls outside the window"
            )
        if not 0.0 <= self.cutoff_ratio < 1.0:
            raise ConfigurationError("cutoff_ratio must be within [0, 1)")
        if self.guard_samples < 0 or self.record_samples <= 0:
            raise ConfigurationError("guard_samples must leave a non-empty capture window")
        if self.onset_threshold < 0 or self.silence_threshold < 0:
            raise ConfigurationError("thresholds must not be negative")


@dataclass(frozen=True)
class OscConfig:
    enabled: bool = False
    host: str = "127.0.0.1"
    port: int = 9000


@dataclass(frozen=True)
class AudioConfig:
    input_device: Optional[str] = None
    output_device: Optional[str] = None
    volume: float = 1.0


@dataclass(frozen=True)
class SimulatorConfig:
    enabled: bool = False
    distance_m: float = 1.0
    echo_gain: float = 0.4
    noise: float = 0.002
    seed: Optional[int] = 0


@dataclass(frozen=True)
class LoggingConfig:
    level: str = "INFO"


@dataclass(frozen=True)
class AppConfig:
    sonar: SonarConfig = field(default_factory=SonarConfig)
    osc: OscConfig = field(default_factory=OscConfig)
    audio: AudioConfig = field(default_factory=AudioConfig)
    simulator: SimulatorConfig = field(default_factory=SimulatorConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    print_dist: bool = True


def _deep_update(base: Dict[str, Any], updates: Dict[str, Any]) -> Dict[str, Any]:
    for key, value in updates.items():
        if (
            isinstance(value, dict)
            and key in base
            and isinstance(base[key], dict)
        ):
            _deep_update(base[key], value)
        else:
            base[key] = value
    return base


def _with_defaults(raw: Dict[str, Any]) -> Dict[str, Any]:
    defaults: Dict[str, Any] = {
        "sonar": {},
        "osc": {},
        "audio": {},
        "simulator": {},
        "logging": {"level": "INFO"},
        "print_dist": True,
    }
    return _deep_update(defaults, raw)


def _section(raw: Dict[str, Any], name: str, cls: type) -> Any:
    section = raw.get(name) or {}
    if not isinstance(section, dict):
        raise ConfigurationError(f"'{name}' section must be a mapping")
    known = set(cls.__dataclass_fields__)
    unknown = sorted(set(section) - known)
    if unknown:
        raise ConfigurationError(f"Unknown key(s) in '{name}': {', '.join(unknown)}")
    defaults = cls()
    values = {}
    for key, value in section.items():
        values[key] = _coerce(f"{name}.{key}", getattr(defaults, key), value)
    return cls(**values)


def _coerce(key: str, default: Any, value: Any) -> Any:
    if value is None or default is None or isinstance(default, str):
        return value
    # bool is an int subclass, so it is checked first and never coerced.
    if isinstance(default, bool):
        if isinstance(value, bool):
            return value
        raise ConfigurationError(f"Invalid value for {key}: {value!r} (expected true or false)")
    if isinstance(value, bool):
        raise ConfigurationError(f"Invalid value for {key}: {value!r}")
    try:
        if isinstance(default, int):
            number = float(value) if isinstance(value, float) else int(value)
            if number != int(number):
                raise ValueError("not an integer")
            return int(number)
        return type(default)(value)
    except (OverflowError, TypeError, ValueError) as exc:
        raise ConfigurationError(f"Invalid value for {key}: {value!r}") from exc


def parse_config(raw: Dict[str, Any]) -> AppConfig:
    """Build an ``AppConfig`` from a (possibly partial) mapping."""
    merged = _with_defaults(dict(raw or {}))
    return AppConfig(
        sonar=_section(merged, "sonar", SonarConfig),
        osc=_section(merged, "osc", OscConfig),
        audio=_section(merged, "audio", AudioConfig),
        simulator=_section(merged, "simulator", SimulatorConfig),
        logging=LoggingConfig(level=str(merged["logging"].get("level", "INFO"))),
        print_dist=_coerce("print_dist", True, merged.get("print_dist", True)),
    )


def load_config(path: Path) -> AppConfig:
    """Load configuration from a YAML file."""
    with path.open("r", encoding="utf-8") as handle:
        raw = yaml.safe_load(handle) or {}
    if not isinstance(raw, dict):
        raise ConfigurationError(f"{path} does not contain a mapping")
    return parse_config(raw)


def load_default_config() -> AppConfig:
    """Load the default config.yaml shipped with the package."""
    return load_config(DEFAULT_CONFIG)


__all__ = [
    "AppConfig",
    "AudioConfig",
    "LoggingConfig",
    "OscConfig",
    "SimulatorConfig",
    "SonarConfig",
    "load_config",
    "load_default_config",
    "parse_config",
]
