"""In-memory pin backend for development machines and tests.

Inputs change only when something calls ``set_input`` (a test, the CLI,
or a keyboard shim in the kiosk UI); every write to an output is
recorded so tests can assert LED patterns.
"""

from __future__ import annotations

import threading

from capture_station.drivers.gpio.types import EdgeCallback
from capture_station.observability import get_logger

logger = get_logger(__name__)


class SimulatedPinBackend:
    """``PinBackend`` holding levels in dictionaries."""

    def __init__(self) -> None:
        self._levels: dict[int, bool] = {}
        self._watchers: dict[int, EdgeCallback] = {}
        self._outputs: set[int] = set()
        self.writes: list[tuple[int, bool]] = []
        self._lock = threading.Lock()

    def setup_input(self, pin: int, pull_up: bool, on_edge: EdgeCallback) -> None:
        with self._lock:
            self._levels.setdefault(pin, False)
            self._watchers[pin] = on_edge
            self._outputs.discard(pin)
        logger.debug("Simulated input ready", pin=pin, pull_up=pull_up)

    def setup_output(self, pin: int, initial: bool) -> None:
        with self._lock:
            self._watchers.pop(pin, None)
            self._outputs.add(pin)
            self._levels[pin] = initial
            self.writes.append((pin, initial))

    def read(self, pin: int) -> bool:
        with self._lock:
            return self._levels.get(pin, False)

    def write(self, pin: int, level: bool) -> None:
        with self._lock:
            if pin not in self._outputs:
                raise ValueError(f"Pin {pin} is not configured as output")
            self._levels[pin] = level
            self.writes.append((pin, level))

    def release(self, pin: int) -> None:
        with self._lock:
            self._watchers.pop(pin, None)
            self._outputs.discard(pin)
            self._levels.pop(pin, None)

    def close(self) -> None:
        with self._lock:
            self._watchers.clear()
            self._outputs.clear()
            self._levels.clear()

    def set_input(self, pin: int, level: bool) -> None:
        """Inject a raw transition on an input pin.

        Nothing is delivered when the level does not change.

        Raises:
            ValueError: If ``pin`` is not a watched input.
        """
        with self._lock:
            callback = self._watchers.get(pin)
            if callback is None:
                raise ValueError(f"Pin {pin} is not configured as input")
            if self._levels.get(pin) == level:
                return
            self._levels[pin] = level
        callback(pin, level)

