"""Digital line backends for buttons and LEDs."""

from capture_station.drivers.gpio.simulated import SimulatedPinBackend
from capture_station.drivers.gpio.types import (
    DEFAULT_DEBOUNCE,
    PinBackend,
    PinConfig,
    PinDirection,
)

__all__ = [
    "DEFAULT_DEBOUNCE",
    "PinBackend",
    "PinConfig",
    "PinDirection",
    "SimulatedPinBackend",
]
