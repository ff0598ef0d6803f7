"""Exception types raised by the ranging pipeline."""

from __future__ import annotations


class WavetapeError(Exception):
    """Base class for all errors raised by wavetape."""


class ConfigurationError(WavetapeError, ValueError):
    """Raised when a configuration value cannot be used."""


class DeviceUnavailableError(WavetapeError, RuntimeError):
    """Raised when the speaker or microphone cannot be opened."""


__all__ = ["ConfigurationError", "DeviceUnavailableError", "WavetapeError"]
