"""Tests for the CaptureStation facade.

The station is assembled from the shared fixtures: simulated capture
backend on virtual time, simulated pins and the fake command runner.
End-to-end tests drive raw pin levels and check what ends up on disk
and on the event bus.
"""

from __future__ import annotations

import pytest

from capture_station.devices import CaptureStation, ConnectionState
from capture_station.devices.buttons import ButtonMode
from capture_station.devices.events import EventTopic
from capture_station.drivers.cameras import StrategyType
from capture_station.drivers.config import (
    DEFAULT_BUTTON_PINS,
    DEFAULT_LED_PINS,
    DriverFactory,
    PinBackendType,
    StationConfig,
)
from capture_station.drivers.gpio import PinConfig
from tests.helpers import FakeRunner

CAPTURE_PIN = DEFAULT_BUTTON_PINS["capture"]


@pytest.fixture
def station(station_config, factory, bus, pin_backend):
    """Started station; closed at teardown."""
    station = CaptureStation(station_config, factory=factory, events=bus, pin_backend=pin_backend)
    station.start()
    yield station
    station.close()


def press(pin_backend, scheduler, pin: int, hold: float = 0.1) -> None:
    """Raw press and release of ``pin``, letting debounce settle after each edge."""
    pin_backend.set_input(pin, True)
    scheduler.advance(hold)
    pin_backend.set_input(pin, False)
    scheduler.advance(0.1)


# =============================================================================
# Lifecycle
# =============================================================================


class TestLifecycle:
    """Start, close and connection state."""

    def test_start_registers_pins_and_connects(self, station) -> None:
        """Verifies start wires every configured line and the backend.

        Assertion Strategy:
        - Every default button and LED is registered by name.
        - The simulated backend is READY.
        """
        expected = set(DEFAULT_BUTTON_PINS) | {f"{name}_led" for name in DEFAULT_LED_PINS}

        assert set(station.pins.names) == expected
        assert station.state is ConnectionState.READY

    def test_start_twice_is_noop(self, station) -> None:
        station.start()
        assert station.state is ConnectionState.READY

    def test_close_releases_everything(self, station, pin_backend, scheduler) -> None:
        station.close()
        station.close()

        assert station.pins.names == []
        assert station.state is ConnectionState.UNINITIALIZED
        with pytest.raises(ValueError):
            pin_backend.set_input(CAPTURE_PIN, True)
        assert scheduler.pending == 0

    def test_context_manager(self, station_config, factory) -> None:
        with CaptureStation(station_config, factory=factory) as station:
            assert station.state is ConnectionState.READY
        assert station.state is ConnectionState.UNINITIALIZED

    def test_auto_connect_disabled(self, station_config, factory) -> None:
        station_config.auto_connect = False

        with CaptureStation(station_config, factory=factory) as station:
            assert station.state is ConnectionState.UNINITIALIZED

    def test_missing_camera_does_not_fail_start(
        self, station_config, factory, scheduler, recorder, bus
    ) -> None:
        """Verifies a kiosk boots even when the DSLR is not plugged in yet.

        Arrangement:
        1. Tethered backend configured; gphoto2 installed but auto-detect
           lists no camera.

        Action:
        Start the station, then let both reconnect retries elapse.

        Assertion Strategy:
        - start() returns; the controller is RECONNECTING.
        - After the retries the controller is FAILED and
          connection.lost was published once.

        Business context:
        The kiosk is often powered on before the camera; the station must
        come up and keep the buttons alive.
        """
        station_config.strategy = StrategyType.TETHERED_CLI

        station = CaptureStation(station_config, factory=factory, events=bus)
        station.start()
        try:
            assert station.state is ConnectionState.RECONNECTING

            scheduler.advance(2.5)

            assert station.state is ConnectionState.FAILED
            assert recorder.count(EventTopic.CONNECTION_LOST) == 1
        finally:
            station.close()

    def test_strategy_auto_detected(self, output_dir, scheduler) -> None:
        config = StationConfig(
            output_dir=output_dir,
            reconnect_attempts=0,
            pin_backend=PinBackendType.SIMULATED,
        )
        factory = DriverFactory(
            config, runner=FakeRunner(available=()), scheduler=scheduler, clock=scheduler
        )

        station = CaptureStation(config, factory=factory, default_actions=False)

        assert station.controller.strategy_type is StrategyType.SIMULATED


class TestStatus:
    def test_status_snapshot(self, station) -> None:
        station.capture()

        status = station.status()

        assert status["strategy"] == "mock"
        assert status["strategy_type"] == StrategyType.SIMULATED.value
        assert status["state"] == "ready"
        assert status["recording"] is False
        assert status["live_view"] is False
        assert status["capabilities"]["can_record_video"] is True
        assert status["stats"]["mock"]["total_captures"] == 1


# =============================================================================
# Buttons end to end
# =============================================================================


class TestKioskFlow:
    """Raw pin levels through debounce, dispatch, actions and capture."""

    def test_capture_button_takes_photo(
        self, station, pin_backend, scheduler, recorder, output_dir
    ) -> None:
        """Verifies a button tap produces a photo on disk.

        Arrangement:
        1. Started station with default kiosk actions and a 3 s countdown.

        Action:
        Raw press and release of the capture pin.

        Assertion Strategy:
        - button.pressed and button.released were published.
        - Three countdown ticks, then capture.completed and gallery.add.
        - The reported file exists in the output directory.
        """
        press(pin_backend, scheduler, CAPTURE_PIN)

        assert recorder.count(EventTopic.BUTTON_PRESSED) == 1
        assert recorder.count(EventTopic.BUTTON_RELEASED) == 1
        assert recorder.count(EventTopic.COUNTDOWN_TICK) == 3
        (completed,) = recorder.payloads(EventTopic.CAPTURE_COMPLETED)
        assert completed["result"].path.exists()
        assert completed["result"].path.parent == output_dir
        assert recorder.count(EventTopic.GALLERY_ADD) == 1

    def test_hold_records_video_and_tap_stops(
        self, station, pin_backend, scheduler, recorder
    ) -> None:
        press(pin_backend, scheduler, CAPTURE_PIN, hold=2.2)

        assert station.controller.is_recording
        assert station.dispatcher.mode is ButtonMode.RECORDING
        assert station.pins.read("recording_led") is True

        scheduler.advance(1.0)
        press(pin_backend, scheduler, CAPTURE_PIN)

        assert not station.controller.is_recording
        (stopped,) = recorder.payloads(EventTopic.VIDEO_STOPPED)
        assert stopped["result"].path.exists()
        assert stopped["result"].metadata.duration_s > 1.0
        assert station.pins.read("recording_led") is False

    def test_mode_button_switches_strategy(
        self, station, pin_backend, scheduler
    ) -> None:
        press(pin_backend, scheduler, DEFAULT_BUTTON_PINS["mode"])

        assert station.controller.strategy_type is StrategyType.EXTERNAL_PROCESS

    def test_without_default_actions(
        self, station_config, factory, pin_backend, scheduler, bus, recorder
    ) -> None:
        with CaptureStation(
            station_config,
            factory=factory,
            events=bus,
            pin_backend=pin_backend,
            default_actions=False,
        ):
            press(pin_backend, scheduler, CAPTURE_PIN)

        assert recorder.count(EventTopic.BUTTON_PRESSED) == 1
        assert recorder.count(EventTopic.CAPTURE_STARTED) == 0


# =============================================================================
# Delegation
# =============================================================================


class TestDelegation:
    def test_capture_operations(self, station) -> None:
        results = station.capture_multiple(2, 0.5)
        assert len(results) == 2

        station.start_video()
        video = station.stop_video()
        assert video.metadata.format == "mp4"

    def test_live_view(self, station, scheduler) -> None:
        stream = station.start_live_view()
        scheduler.advance(0.5)

        assert stream.get_frame(timeout=0).startswith(b"\xff\xd8")
        assert station.status()["live_view"] is True

        station.stop_live_view()
        assert station.status()["live_view"] is False

    def test_settings(self, station) -> None:
        assert station.update_settings({"iso": "800"}).iso == "800"
        assert station.get_settings().iso == "800"
        assert station.capabilities().can_adjust_settings

    def test_leds_and_buttons(self, station, pin_backend) -> None:
        station.set_led("status_led", True)
        assert station.pins.read("status_led") is True
        assert station.toggle_led("status_led") is False

        station.blink_led("error_led", 1.0, 0.2)
        assert station.pins.is_blinking("error_led")

        pin_backend.set_input(CAPTURE_PIN, True)
        assert station.read_button("capture") is True

    def test_register_extra_lines(self, station) -> None:
        station.register_button(PinConfig.button("coin", 16))
        station.register_led(PinConfig.led("coin_led", 20))

        assert station.pins.is_registered("coin")
        assert station.pins.is_registered("coin_led")

    def test_connection_check(self, station) -> None:
        assert station.test_connection(capture=True) is True
