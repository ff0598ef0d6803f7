"""Peak picking on a volume envelope: separate the outgoing pulse from its echo."""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Tuple

import numpy as np

from .conditioner import Envelope

DEFAULT_CUTOFF_RATIO = 0.2


@dataclass(frozen=True)
class Peak:
    """Strict local maximum of an envelope."""

    index: int
    time: float
    amplitude: float


@dataclass(frozen=True)
class EchoReading:
    """Pulse and echo peaks picked from one capture window."""

    pulse: Peak
    echo: Peak
    others: Tuple[Peak, ...] = ()

    @property
    def delay_s(self) -> float:
        return self.echo.time - self.pulse.time


def find_peaks(envelope: Envelope) -> List[Peak]:
    """Return every interior index whose value beats both neighbours."""
    values = envelope.values
    if values.size < 3:
        return []
    middle = values[1:-1]
    mask = (values[:-2] < middle) & (values[2:] < middle)
    indices = np.flatnonzero(mask) + 1
    return [
        Peak(index=int(i), time=envelope.time_at(int(i)), amplitude=float(values[i]))
        for i in indices
    ]


def detect_echo(
    envelope: Envelope,
    cutoff_ratio: float = DEFAULT_CUTOFF_RATIO,
) -> Optional[EchoReading]:
    """Pick the pulse and its strongest echo, or ``None`` if there is no echo.

    Peaks at or below ``cutoff_ratio`` times the loudest peak are dropped.
    The earliest survivor is taken as the pulse itself; the loudest of the
    rest is the echo, with ties going to the earlier peak.
    """
    peaks = find_peaks(envelope)
    if len(peaks) < 2:
        return None

    cutoff = max(peak.amplitude for peak in peaks) * cutoff_ratio
    significant = [peak for peak in peaks if peak.amplitude > cutoff]
    if len(significant) < 2:
        return None

    pulse, candidates = significant[0], significant[1:]
    echo = candidates[0]
    for peak in candidates[1:]:
        if peak.amplitude > echo.amplitude:
            echo = peak
    others = tuple(peak for peak in candidates if peak is not echo)
    return EchoReading(pulse=pulse, echo=echo, others=others)


__all__ = ["DEFAULT_CUTOFF_RATIO", "EchoReading", "Peak", "detect_echo", "find_peaks"]
