"""Real GPIO through ``gpiozero``.

Buttons become ``DigitalInputDevice`` objects (pull-up aware, so a
pressed button reads active) and LEDs ``DigitalOutputDevice`` objects.
gpiozero invokes edge handlers on its own thread; debouncing is left to
the Pin Controller so behavior is identical to the simulated backend.

A ``pin_factory`` can be injected; tests pass
``gpiozero.pins.mock.MockFactory()`` to run without hardware.
"""

from __future__ import annotations

import threading
from typing import Any

from gpiozero import DigitalInputDevice, DigitalOutputDevice

from capture_station.drivers.gpio.types import EdgeCallback
from capture_station.observability import get_logger

logger = get_logger(__name__)


class GpioZeroPinBackend:
    """``PinBackend`` over gpiozero devices."""

    def __init__(self, pin_factory: Any = None) -> None:
        """Create the backend.

        Args:
            pin_factory: gpiozero pin factory; gpiozero's default when None.
        """
        self._factory = pin_factory
        self._inputs: dict[int, DigitalInputDevice] = {}
        self._outputs: dict[int, DigitalOutputDevice] = {}
        self._lock = threading.Lock()

    def setup_input(self, pin: int, pull_up: bool, on_edge: EdgeCallback) -> None:
        self.release(pin)
        device = DigitalInputDevice(pin, pull_up=pull_up, pin_factory=self._factory)
        device.when_activated = lambda: on_edge(pin, True)
        device.when_deactivated = lambda: on_edge(pin, False)
        with self._lock:
            self._inputs[pin] = device
        logger.info("GPIO input ready", pin=pin, pull_up=pull_up)

    def setup_output(self, pin: int, initial: bool) -> None:
        self.release(pin)
        device = DigitalOutputDevice(pin, initial_value=initial, pin_factory=self._factory)
        with self._lock:
            self._outputs[pin] = device
        logger.info("GPIO output ready", pin=pin, initial=initial)

    def read(self, pin: int) -> bool:
        with self._lock:
            device = self._inputs.get(pin) or self._outputs.get(pin)
        if device is None:
            raise ValueError(f"Pin {pin} is not configured")
        return bool(device.is_active)

    def write(self, pin: int, level: bool) -> None:
        with self._lock:
            device = self._outputs.get(pin)
        if device is None:
            raise ValueError(f"Pin {pin} is not configured as output")
        if level:
            device.on()
        else:
            device.off()

    def release(self, pin: int) -> None:
        with self._lock:
            device = self._inputs.pop(pin, None) or self._outputs.pop(pin, None)
        if device is not None:
            device.close()

    def close(self) -> None:
        with self._lock:
            pins = list(self._inputs) + list(self._outputs)
        for pin in pins:
            self.release(pin)
