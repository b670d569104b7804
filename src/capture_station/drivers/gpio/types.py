"""Pin configuration and the backend protocol for digital lines.

Levels are logical throughout: ``True`` means "active" (button pressed,
LED lit) regardless of how the line is wired. Backends translate pull-up
wiring, where a pressed button pulls the line low, into logical levels.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Protocol, runtime_checkable

#: Debounce window applied to buttons unless configured otherwise (seconds).
DEFAULT_DEBOUNCE = 0.05

EdgeCallback = Callable[[int, bool], None]


class PinDirection(Enum):
    """Direction of a digital line."""

    INPUT = "input"
    OUTPUT = "output"


@dataclass(frozen=True, slots=True)
class PinConfig:
    """Registration data for one named line.

    Attributes:
        name: Logical name (``"capture"``, ``"status"`` ...).
        pin: BCM pin number.
        direction: Input (button) or output (LED).
        debounce: Seconds a new input level must persist before delivery.
        pull_up: Inputs only; True for buttons wired to ground.
        default_level: Outputs only; level written at registration.
    """

    name: str
    pin: int
    direction: PinDirection = PinDirection.INPUT
    debounce: float = DEFAULT_DEBOUNCE
    pull_up: bool = True
    default_level: bool = False

    @classmethod
    def button(
        cls, name: str, pin: int, debounce: float = DEFAULT_DEBOUNCE, pull_up: bool = True
    ) -> PinConfig:
        """Input line configuration."""
        return cls(name, pin, PinDirection.INPUT, debounce=debounce, pull_up=pull_up)

    @classmethod
    def led(cls, name: str, pin: int, default_level: bool = False) -> PinConfig:
        """Output line configuration."""
        return cls(name, pin, PinDirection.OUTPUT, default_level=default_level)


@runtime_checkable
class PinBackend(Protocol):  # pragma: no cover
    """Raw access to digital lines, simulated or real.

    Business context: The Pin Controller adds naming, debouncing and
    blinking on top of this minimal surface, so the kiosk logic is the
    same on a Raspberry Pi and on a laptop without GPIO.
    """

    def setup_input(self, pin: int, pull_up: bool, on_edge: EdgeCallback) -> None:
        """Watch ``pin``; call ``on_edge(pin, level)`` on every raw change.

        ``on_edge`` may be invoked from a backend thread.
        """
        ...

    def setup_output(self, pin: int, initial: bool) -> None:
        """Configure ``pin`` as output and drive ``initial``."""
        ...

    def read(self, pin: int) -> bool:
        """Current logical level."""
        ...

    def write(self, pin: int, level: bool) -> None:
        """Drive an output pin."""
        ...

    def release(self, pin: int) -> None:
        """Stop watching/driving ``pin``. Unknown pins are ignored."""
        ...

    def close(self) -> None:
        """Release every pin."""
        ...
