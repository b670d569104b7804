"""CaptureStation: the single control surface handed to collaborators.

Wires one ``CaptureController``, one ``PinController``, one
``ButtonDispatcher`` with the default kiosk actions, and one
``EventBus`` out of a ``StationConfig``. REST layers, UI broadcasters
and persistence talk to the station and subscribe to ``station.events``;
nothing outside reaches into strategies or pins directly.

Example:
    config = StationConfig(strategy=StrategyType.SIMULATED)
    with CaptureStation(config) as station:
        station.events.subscribe("capture", print)
        station.capture(CaptureOptions(countdown=3))
"""

from __future__ import annotations

from concurrent.futures import Executor
from typing import Any

from capture_station.devices.actions import KioskActions
from capture_station.devices.buttons import ButtonDispatcher
from capture_station.devices.capture_controller import (
    CaptureController,
    CaptureOptions,
    ConnectionState,
)
from capture_station.devices.events import EventBus
from capture_station.devices.pins import PinController
from capture_station.drivers.cameras import (
    Capabilities,
    CaptureResult,
    CaptureSettings,
    LiveViewStream,
    StrategyType,
)
from capture_station.drivers.config import DriverFactory, StationConfig
from capture_station.drivers.gpio import PinBackend, PinConfig
from capture_station.errors import DeviceUnavailableError
from capture_station.observability import CaptureStats, get_logger

logger = get_logger(__name__)


class CaptureStation:
    """Facade over capture, pins, buttons and events."""

    def __init__(
        self,
        config: StationConfig | None = None,
        *,
        factory: DriverFactory | None = None,
        events: EventBus | None = None,
        pin_backend: PinBackend | None = None,
        executor: Executor | None = None,
        default_actions: bool = True,
    ) -> None:
        """Assemble the station; nothing touches hardware until ``start``.

        Args:
            config: Station configuration (the factory's when None).
            factory: Driver factory; built from ``config`` when None.
            events: Event bus; a new one when None.
            pin_backend: Line backend; chosen by the factory when None.
            executor: Runs button actions off the delivering thread.
            default_actions: Install the kiosk button actions.
        """
        if factory is None:
            factory = DriverFactory(config)
        self.config = config or factory.config
        self.factory = factory
        self.events = events or EventBus()
        self.stats = CaptureStats()

        strategy_type = self.config.strategy or factory.detect_strategy_type()
        self.controller = CaptureController(
            factory.create_strategy,
            strategy_type,
            events=self.events,
            scheduler=factory.scheduler,
            clock=factory.clock,
            stats=self.stats,
            reconnect_attempts=self.config.reconnect_attempts,
            reconnect_delay=self.config.reconnect_delay,
            default_settings=self.config.default_settings,
        )
        self.pins = PinController(
            pin_backend or factory.create_pin_backend(), factory.scheduler, self.events
        )
        self.dispatcher = ButtonDispatcher(
            self.events,
            factory.scheduler,
            pins=self.pins,
            long_press_threshold=self.config.long_press_threshold,
            executor=executor,
        )
        self.actions = KioskActions(
            self.controller,
            self.pins,
            self.dispatcher,
            factory.scheduler,
            countdown=self.config.countdown,
            video_max_duration=self.config.video_max_duration,
        )
        if default_actions:
            self.actions.install()
        self._started = False

    def __enter__(self) -> CaptureStation:
        self.start()
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    # -- lifecycle ---------------------------------------------------------------

    def start(self) -> CaptureStation:
        """Register configured pins, start button dispatch, auto-connect.

        A backend that is not reachable yet does not fail the start; the
        controller keeps retrying in the background.
        """
        if self._started:
            return self
        for button in self.config.buttons:
            self.pins.register_input(button)
        for led in self.config.leds:
            self.pins.register_output(led)
        self.dispatcher.start()
        self._started = True
        logger.info(
            "Capture station started",
            strategy=self.controller.strategy.name,
            buttons=len(self.config.buttons),
            leds=len(self.config.leds),
        )
        if self.config.auto_connect:
            try:
                self.controller.initialize()
            except DeviceUnavailableError as exc:
                logger.warning(
                    "Capture backend not ready at start",
                    strategy=self.controller.strategy.name,
                    state=self.controller.state.value,
                    error=str(exc),
                )
        return self

    def close(self) -> None:
        """Stop dispatch, release the backend and every pin. Idempotent."""
        self.dispatcher.stop()
        self.actions.close()
        self.controller.close()
        self.pins.cleanup()
        if self._started:
            logger.info("Capture station closed")
        self._started = False

    @property
    def state(self) -> ConnectionState:
        """Connection state of the active backend."""
        return self.controller.state

    def status(self) -> dict[str, Any]:
        """Snapshot of backend, recording and statistics state."""
        return {
            "strategy": self.controller.strategy.name,
            "strategy_type": self.controller.strategy_type.value,
            "state": self.controller.state.value,
            "recording": self.controller.is_recording,
            "live_view": self.controller.live_view is not None,
            "capabilities": self.controller.capabilities().to_dict(),
            "stats": self.stats.to_dict(),
        }

    # -- capture -----------------------------------------------------------------

    def capture(self, options: CaptureOptions | None = None) -> CaptureResult:
        return self.controller.capture(options)

    def capture_multiple(
        self, count: int, interval: float, options: CaptureOptions | None = None
    ) -> list[CaptureResult]:
        return self.controller.capture_multiple(count, interval, options)

    def start_video(self) -> None:
        self.controller.start_video()

    def stop_video(self) -> CaptureResult:
        return self.controller.stop_video()

    def start_live_view(self) -> LiveViewStream:
        return self.controller.start_live_view()

    def stop_live_view(self) -> None:
        self.controller.stop_live_view()

    def get_settings(self) -> CaptureSettings:
        return self.controller.get_settings()

    def update_settings(self, partial: CaptureSettings | dict[str, Any]) -> CaptureSettings:
        return self.controller.update_settings(partial)

    def switch_strategy(self, strategy_type: StrategyType | str) -> None:
        self.controller.switch_strategy(strategy_type)

    def test_connection(self, capture: bool = False) -> bool:
        return self.controller.test_connection(capture)

    def capabilities(self) -> Capabilities:
        return self.controller.capabilities()

    # -- pins --------------------------------------------------------------------

    def register_button(self, config: PinConfig) -> None:
        self.pins.register_input(config)

    def register_led(self, config: PinConfig) -> None:
        self.pins.register_output(config)

    def set_led(self, name: str, level: bool) -> None:
        self.pins.write(name, level)

    def toggle_led(self, name: str) -> bool:
        return self.pins.toggle(name)

    def blink_led(self, name: str, duration: float, interval: float) -> None:
        self.pins.blink(name, duration, interval)

    def read_button(self, name: str) -> bool:
        return self.pins.read(name)
