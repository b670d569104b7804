"""Short/long press classification and action routing for kiosk buttons.

The dispatcher listens to ``button.pressed`` / ``button.released`` on the
event bus. A press arms a long-press timer; a release before it fires
runs the button's short action, while a timer that fires with the
button still held runs the long action and marks the press consumed so
the release does nothing more.

Which action runs is decided by ``ActionRegistry.resolve(button, mode,
long_press)``. The dispatcher carries an explicit ``ButtonMode`` (for
example RECORDING while a button-started video runs); entries
registered for the current mode win and NORMAL entries are the
fallback. Handlers are never swapped out behind the registry's back.

A handler that raises is logged and turned into an error-LED blink; the
exception never reaches the timer or GPIO thread that delivered the
edge.

Example:
    registry = ActionRegistry()
    registry.register("capture", short=take_photo, long=start_video)
    registry.register("capture", short=stop_video, mode=ButtonMode.RECORDING)
    dispatcher = ButtonDispatcher(bus, scheduler, registry, pins=pins)
    dispatcher.start()
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from concurrent.futures import Executor
from dataclasses import dataclass
from enum import Enum

from capture_station.devices.events import Event, EventBus, EventTopic
from capture_station.devices.pins import PinController
from capture_station.errors import StationError
from capture_station.observability import get_logger
from capture_station.scheduling import Scheduler, TimerHandle

logger = get_logger(__name__)

ButtonAction = Callable[[], None]

DEFAULT_LONG_PRESS_THRESHOLD = 2.0
ERROR_BLINK = (3.0, 0.2)


class ButtonMode(Enum):
    """Dispatcher mode consulted when resolving actions."""

    NORMAL = "normal"
    RECORDING = "recording"


@dataclass
class ButtonPressState:
    """Press tracking for one logical button.

    Attributes:
        held: Button is currently down.
        long_press_consumed: The long-press timer fired during this hold.
        timer: Pending long-press timer, if armed.
        generation: Bumped on every press so stale timers are ignored.
    """

    held: bool = False
    long_press_consumed: bool = False
    timer: TimerHandle | None = None
    generation: int = 0


class ActionRegistry:
    """Mutable map of (button, mode) to short and long actions."""

    def __init__(self) -> None:
        self._short: dict[tuple[str, ButtonMode], ButtonAction] = {}
        self._long: dict[tuple[str, ButtonMode], ButtonAction] = {}
        self._lock = threading.Lock()

    def register(
        self,
        button: str,
        short: ButtonAction | None = None,
        long: ButtonAction | None = None,
        mode: ButtonMode = ButtonMode.NORMAL,
    ) -> None:
        """Set the short and/or long action of ``button`` in ``mode``.

        Only the actions passed are replaced; the other one is kept.
        """
        with self._lock:
            if short is not None:
                self._short[(button, mode)] = short
            if long is not None:
                self._long[(button, mode)] = long
        logger.debug(
            "Button action registered",
            button=button,
            mode=mode.value,
            short=short is not None,
            long=long is not None,
        )

    def unregister(self, button: str, mode: ButtonMode | None = None) -> None:
        """Drop the actions of ``button`` for one mode, or for every mode."""
        with self._lock:
            for table in (self._short, self._long):
                for key in [k for k in table if k[0] == button]:
                    if mode is None or key[1] is mode:
                        del table[key]

    def resolve(
        self, button: str, mode: ButtonMode, long_press: bool = False
    ) -> ButtonAction | None:
        """Action for ``button`` in ``mode``, falling back to NORMAL."""
        table = self._long if long_press else self._short
        with self._lock:
            action = table.get((button, mode))
            if action is None and mode is not ButtonMode.NORMAL:
                action = table.get((button, ButtonMode.NORMAL))
        return action

    @property
    def buttons(self) -> set[str]:
        """Every button with at least one action."""
        with self._lock:
            return {k[0] for k in (*self._short, *self._long)}


class ButtonDispatcher:
    """Turns debounced button edges into short and long press actions."""

    def __init__(
        self,
        events: EventBus,
        scheduler: Scheduler,
        registry: ActionRegistry | None = None,
        *,
        pins: PinController | None = None,
        long_press_threshold: float = DEFAULT_LONG_PRESS_THRESHOLD,
        executor: Executor | None = None,
        status_led: str = "status_led",
        error_led: str = "error_led",
    ) -> None:
        """Create a dispatcher (not yet subscribed; call ``start``).

        Args:
            events: Bus carrying ``button.*`` events.
            scheduler: Provides the long-press timers.
            registry: Action table; a new empty one when None.
            pins: LED access for the status and error indicators.
            long_press_threshold: Hold time in seconds for a long press.
            executor: Runs actions off the delivering thread when given;
                actions run inline otherwise.
            status_led: Output lit while any button is held.
            error_led: Output blinked when an action fails.
        """
        if long_press_threshold <= 0:
            raise ValueError("long_press_threshold must be > 0")
        self.events = events
        self.registry = registry or ActionRegistry()
        self.pins = pins
        self.long_press_threshold = long_press_threshold
        self.status_led = status_led
        self.error_led = error_led
        self._scheduler = scheduler
        self._executor = executor
        self._mode = ButtonMode.NORMAL
        self._states: dict[str, ButtonPressState] = {}
        self._unsubscribers: list[Callable[[], None]] = []
        self._lock = threading.RLock()

    @property
    def mode(self) -> ButtonMode:
        """Mode used for action resolution."""
        return self._mode

    @mode.setter
    def mode(self, value: ButtonMode) -> None:
        if value is not self._mode:
            logger.info("Button mode changed", previous=self._mode.value, mode=value.value)
        self._mode = value

    def press_state(self, button: str) -> ButtonPressState:
        """Tracking record of ``button`` (a fresh one if never pressed)."""
        with self._lock:
            return self._states.setdefault(button, ButtonPressState())

    def start(self) -> None:
        """Subscribe to button events; calling twice is a no-op."""
        if self._unsubscribers:
            return
        self._unsubscribers = [
            self.events.subscribe(EventTopic.BUTTON_PRESSED, self._on_event),
            self.events.subscribe(EventTopic.BUTTON_RELEASED, self._on_event),
        ]

    def stop(self) -> None:
        """Unsubscribe and cancel every pending long-press timer."""
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers = []
        with self._lock:
            for state in self._states.values():
                if state.timer is not None:
                    state.timer.cancel()
                state.timer = None
                state.held = False

    def _on_event(self, event: Event) -> None:
        name = event.payload["name"]
        if event.topic is EventTopic.BUTTON_PRESSED:
            self.handle_press(name)
        else:
            self.handle_release(name)

    def handle_press(self, button: str) -> None:
        """Mark ``button`` held and arm its long-press timer."""
        with self._lock:
            state = self._states.setdefault(button, ButtonPressState())
            if state.held:
                return
            if state.timer is not None:
                state.timer.cancel()
            state.held = True
            state.long_press_consumed = False
            state.generation += 1
            generation = state.generation
            state.timer = self._scheduler.call_later(
                self.long_press_threshold,
                lambda: self._on_long_press(button, generation),
            )
        logger.info("Button pressed", button=button)
        self._set_indicator(self.status_led, True)

    def handle_release(self, button: str) -> None:
        """Run the short action unless the hold already became a long press."""
        with self._lock:
            state = self._states.get(button)
            if state is None or not state.held:
                return
            state.held = False
            if state.timer is not None:
                state.timer.cancel()
                state.timer = None
            consumed = state.long_press_consumed
            state.long_press_consumed = False
            mode = self._mode
            any_held = any(other.held for other in self._states.values())
        logger.info("Button released", button=button, long_press=consumed)
        if not any_held:
            self._set_indicator(self.status_led, False)
        if consumed:
            return
        action = self.registry.resolve(button, mode)
        if action is None:
            logger.warning("No action registered for button", button=button, mode=mode.value)
            return
        self.run_action(button, "short", action)

    def _on_long_press(self, button: str, generation: int) -> None:
        with self._lock:
            state = self._states.get(button)
            if state is None or not state.held or state.generation != generation:
                return
            state.long_press_consumed = True
            state.timer = None
            mode = self._mode
        action = self.registry.resolve(button, mode, long_press=True)
        if action is None:
            logger.debug("No long-press action for button", button=button, mode=mode.value)
            return
        self.run_action(button, "long", action)

    def run_action(self, button: str, press: str, action: ButtonAction) -> None:
        """Run ``action`` on the executor (or inline), reporting failures."""

        def invoke() -> None:
            try:
                action()
            except Exception as exc:
                logger.exception(
                    "Button action failed",
                    button=button,
                    press=press,
                    error_type=type(exc).__name__,
                )
                self.indicate_error()

        if self._executor is None:
            invoke()
        else:
            self._executor.submit(invoke)

    def indicate_error(self, duration: float = ERROR_BLINK[0], interval: float = ERROR_BLINK[1]) -> None:
        """Blink the error LED; silently skipped when no such LED exists."""
        self._blink(self.error_led, duration, interval)

    def _blink(self, led: str, duration: float, interval: float) -> None:
        if self.pins is None or not self.pins.is_registered(led):
            return
        try:
            self.pins.blink(led, duration, interval)
        except StationError as exc:
            logger.warning("Indicator blink failed", led=led, error=str(exc))

    def _set_indicator(self, led: str, level: bool) -> None:
        if self.pins is None or not self.pins.is_registered(led):
            return
        try:
            self.pins.write(led, level)
        except StationError as exc:
            logger.warning("Indicator update failed", led=led, error=str(exc))
