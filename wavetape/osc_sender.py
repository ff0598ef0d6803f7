"""Publish ranging results as OSC messages over UDP."""

from __future__ import annotations

import json
import logging
import threading

from pythonosc.udp_client import SimpleUDPClient

LOGGER = logging.getLogger(__name__)

DISTANCE_ADDRESS = "/dist"
RANGE_ADDRESS = "/range"
ALIVE_ADDRESS = "/alive"


def _log_event(event: str, **fields: object) -> None:
    LOGGER.info(json.dumps({"event": event, **fields}))


class OscPublisher:
    """Sends ``/dist``, ``/range`` and ``/alive`` to one OSC listener.

    UDP sends do not block on the receiver, so messages go out on the
    calling thread. A failed send is counted and logged, never raised, so a
    missing listener cannot interrupt a measurement callback.
    """

    def __init__(self, host: str, port: int) -> None:
        self._client = SimpleUDPClient(host, port)
        self._lock = threading.Lock()
        self._closed = False
        self.failed_sends = 0
        _log_event("osc_publisher_opened", host=host, port=port)

    def send_distance(self, meters: float) -> bool:
        return self._send(DISTANCE_ADDRESS, float(meters))

    def send_range(self, min_m: float, max_m: float) -> bool:
        return self._send(RANGE_ADDRESS, float(min_m), float(max_m))

    def send_alive(self, seq: int) -> bool:
        return self._send(ALIVE_ADDRESS, int(seq))

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
        _log_event("osc_publisher_closed", failed_sends=self.failed_sends)

    def _send(self, address: str, *args: object) -> bool:
        with self._lock:
            if self._closed:
                return False
            try:
                self._client.send_message(address, list(args))
            except OSError as exc:
                self.failed_sends += 1
                _log_event("osc_send_failed", address=address, error=str(exc))
                return False
        return True


__all__ = ["ALIVE_ADDRESS", "DISTANCE_ADDRESS", "OscPublisher", "RANGE_ADDRESS"]
