"""Named digital lines with debounced edge detection and LED blinking.

The Pin Controller sits between a raw ``PinBackend`` and the rest of
the station:

* Inputs: every raw transition restarts the pin's debounce window; only
  a level that survives the whole window is delivered, and only when it
  differs from the last delivered level. Delivery publishes
  ``button.pressed`` / ``button.released`` with the logical name.
* Outputs: ``write``/``toggle``/``blink`` drive LEDs and publish
  ``led.changed`` on every level change. A new blink (or a manual write)
  supersedes a running blink on the same pin.

Referencing a name that was never registered raises
``ConfigurationError``.

Example:
    pins = PinController(SimulatedPinBackend(), ThreadingScheduler(), bus)
    pins.register_input(PinConfig.button("capture", 17))
    pins.register_output(PinConfig.led("status_led", 27))
    pins.blink("status_led", duration=1.0, interval=0.2)
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field

from capture_station.devices.events import EventBus, EventTopic
from capture_station.drivers.gpio import PinBackend, PinConfig, PinDirection
from capture_station.errors import ConfigurationError
from capture_station.observability import get_logger
from capture_station.scheduling import Scheduler, TimerHandle

logger = get_logger(__name__)


@dataclass
class _InputState:
    config: PinConfig
    delivered: bool
    pending: bool | None = None
    timer: TimerHandle | None = None
    generation: int = 0


@dataclass
class _OutputState:
    config: PinConfig
    level: bool
    blink_timers: list[TimerHandle] = field(default_factory=list)

    def cancel_blink(self) -> None:
        for timer in self.blink_timers:
            timer.cancel()
        self.blink_timers.clear()


class PinController:
    """Owner of every registered line and its timers."""

    def __init__(
        self,
        backend: PinBackend,
        scheduler: Scheduler,
        events: EventBus | None = None,
    ) -> None:
        """Create a controller with no registered pins.

        Args:
            backend: Raw line access (simulated or gpiozero).
            scheduler: Provides debounce and blink timers.
            events: Bus receiving button and LED events.
        """
        self.backend = backend
        self.events = events or EventBus()
        self._scheduler = scheduler
        self._inputs: dict[str, _InputState] = {}
        self._outputs: dict[str, _OutputState] = {}
        self._lock = threading.RLock()

    # -- registration --------------------------------------------------------

    @property
    def names(self) -> list[str]:
        """Registered names, inputs first."""
        with self._lock:
            return [*self._inputs, *self._outputs]

    def is_registered(self, name: str) -> bool:
        """True if ``name`` is a registered input or output."""
        with self._lock:
            return name in self._inputs or name in self._outputs

    def register_input(self, config: PinConfig) -> None:
        """Configure an input and start watching it; re-registration overwrites.

        Raises:
            ConfigurationError: If ``config`` is not an input.
        """
        if config.direction is not PinDirection.INPUT:
            raise ConfigurationError(f"{config.name} is not an input pin")
        self._forget(config.name)
        name = config.name
        self.backend.setup_input(
            config.pin, config.pull_up, lambda _pin, level: self._on_raw(name, level)
        )
        with self._lock:
            self._inputs[name] = _InputState(config, delivered=self.backend.read(config.pin))
        logger.info(
            "Input registered",
            pin_name=name,
            pin=config.pin,
            debounce_ms=int(config.debounce * 1000),
        )

    def register_output(self, config: PinConfig) -> None:
        """Configure an output and drive its default level; re-registration overwrites.

        Raises:
            ConfigurationError: If ``config`` is not an output.
        """
        if config.direction is not PinDirection.OUTPUT:
            raise ConfigurationError(f"{config.name} is not an output pin")
        self._forget(config.name)
        self.backend.setup_output(config.pin, config.default_level)
        with self._lock:
            self._outputs[config.name] = _OutputState(config, config.default_level)
        logger.info("Output registered", pin_name=config.name, pin=config.pin)

    # -- access ----------------------------------------------------------------

    def read(self, name: str) -> bool:
        """Current logical level of an input or output.

        Raises:
            ConfigurationError: If ``name`` is not registered.
        """
        with self._lock:
            state = self._inputs.get(name) or self._outputs.get(name)
        if state is None:
            raise ConfigurationError(f"Pin {name!r} is not registered")
        return self.backend.read(state.config.pin)

    def write(self, name: str, level: bool) -> None:
        """Drive an output, canceling any blink on it.

        Raises:
            ConfigurationError: If ``name`` is not a registered output.
        """
        state = self._output(name)
        with self._lock:
            state.cancel_blink()
        self._set_level(state, level)

    def toggle(self, name: str) -> bool:
        """Invert an output and return the new level."""
        state = self._output(name)
        with self._lock:
            state.cancel_blink()
            level = not state.level
        self._set_level(state, level)
        return level

    def blink(self, name: str, duration: float, interval: float) -> None:
        """Alternate an output every ``interval`` for ``duration``, then drive it low.

        Returns immediately; a running blink on the same pin is replaced.

        Raises:
            ConfigurationError: If ``name`` is not a registered output or
                the timings are not positive.
        """
        if duration <= 0 or interval <= 0:
            raise ConfigurationError("blink duration and interval must be positive")
        state = self._output(name)
        with self._lock:
            state.cancel_blink()
            ticker = self._scheduler.call_every(interval, lambda: self._blink_tick(state))
            finisher = self._scheduler.call_later(
                duration, lambda: self._blink_finish(state, ticker)
            )
            state.blink_timers.extend([ticker, finisher])
        self._set_level(state, not state.level)
        logger.debug(
            "Blink started",
            pin_name=name,
            duration_ms=int(duration * 1000),
            interval_ms=int(interval * 1000),
        )

    def is_blinking(self, name: str) -> bool:
        """True while a blink is running on ``name``."""
        state = self._output(name)
        with self._lock:
            return any(t.active for t in state.blink_timers)

    def cleanup(self) -> None:
        """Cancel all timers and release every pin. Idempotent."""
        with self._lock:
            inputs, self._inputs = self._inputs, {}
            outputs, self._outputs = self._outputs, {}
        for in_state in inputs.values():
            if in_state.timer is not None:
                in_state.timer.cancel()
            self.backend.release(in_state.config.pin)
        for out_state in outputs.values():
            out_state.cancel_blink()
            self.backend.release(out_state.config.pin)
        if inputs or outputs:
            self.backend.close()
            logger.info("Pins released", count=len(inputs) + len(outputs))

    # -- internals -------------------------------------------------------------

    def _output(self, name: str) -> _OutputState:
        with self._lock:
            state = self._outputs.get(name)
        if state is None:
            kind = "an input" if name in self._inputs else "not registered"
            raise ConfigurationError(f"Output {name!r} is {kind}")
        return state

    def _forget(self, name: str) -> None:
        with self._lock:
            in_state = self._inputs.pop(name, None)
            out_state = self._outputs.pop(name, None)
        if in_state is not None:
            if in_state.timer is not None:
                in_state.timer.cancel()
            self.backend.release(in_state.config.pin)
        if out_state is not None:
            out_state.cancel_blink()
            self.backend.release(out_state.config.pin)

    def _set_level(self, state: _OutputState, level: bool) -> None:
        with self._lock:
            if self._outputs.get(state.config.name) is not state:
                return
            changed = state.level != level
            state.level = level
            self.backend.write(state.config.pin, level)
        if changed:
            self.events.publish(EventTopic.LED_CHANGED, name=state.config.name, level=level)

    def _blink_tick(self, state: _OutputState) -> None:
        self._set_level(state, not state.level)

    def _blink_finish(self, state: _OutputState, ticker: TimerHandle) -> None:
        ticker.cancel()
        with self._lock:
            state.blink_timers.clear()
        self._set_level(state, False)

    def _on_raw(self, name: str, level: bool) -> None:
        with self._lock:
            state = self._inputs.get(name)
            if state is None:
                return
            if state.timer is not None:
                state.timer.cancel()
            state.pending = level
            state.generation += 1
            generation = state.generation
            if state.config.debounce <= 0:
                state.timer = None
            else:
                state.timer = self._scheduler.call_later(
                    state.config.debounce, lambda: self._settle(name, generation)
                )
                return
        self._settle(name, generation)

    def _settle(self, name: str, generation: int) -> None:
        with self._lock:
            state = self._inputs.get(name)
            if state is None or state.generation != generation or state.pending is None:
                return
            level = state.pending
            state.pending = None
            state.timer = None
            if level == state.delivered:
                return
            state.delivered = level
        topic = EventTopic.BUTTON_PRESSED if level else EventTopic.BUTTON_RELEASED
        logger.debug("Input edge", pin_name=name, pressed=level)
        self.events.publish(topic, name=name)
