"""Tests for the Pin Controller: debounced inputs and LED outputs."""

from __future__ import annotations

import pytest

from capture_station.devices.events import EventTopic
from capture_station.drivers.gpio import PinConfig
from capture_station.errors import ConfigurationError

BUTTON_PIN = 17
LED_PIN = 27


@pytest.fixture
def button(pins):
    pins.register_input(PinConfig.button("capture", BUTTON_PIN))
    return "capture"


@pytest.fixture
def led(pins):
    pins.register_output(PinConfig.led("status_led", LED_PIN))
    return "status_led"


# =============================================================================
# Registration
# =============================================================================


class TestRegistration:
    def test_names_inputs_first(self, pins, led, button) -> None:
        assert pins.names == ["capture", "status_led"]
        assert pins.is_registered("capture")
        assert not pins.is_registered("print")

    def test_direction_checked(self, pins) -> None:
        with pytest.raises(ConfigurationError):
            pins.register_input(PinConfig.led("status_led", LED_PIN))
        with pytest.raises(ConfigurationError):
            pins.register_output(PinConfig.button("capture", BUTTON_PIN))

    def test_output_driven_to_default(self, pins, pin_backend) -> None:
        pins.register_output(PinConfig.led("status_led", LED_PIN, default_level=True))
        assert pin_backend.read(LED_PIN) is True

    def test_re_registration_overwrites(self, pins, pin_backend, led) -> None:
        pins.register_output(PinConfig.led("status_led", 12))

        pins.write("status_led", True)

        assert pin_backend.read(12) is True
        assert pin_backend.read(LED_PIN) is False

    def test_unknown_names_rejected(self, pins, button) -> None:
        with pytest.raises(ConfigurationError, match="not registered"):
            pins.read("nope")
        with pytest.raises(ConfigurationError, match="not registered"):
            pins.write("nope", True)
        with pytest.raises(ConfigurationError, match="an input"):
            pins.write("capture", True)

    def test_cleanup_is_idempotent(self, pins, pin_backend, button, led) -> None:
        pins.cleanup()
        pins.cleanup()

        assert pins.names == []
        with pytest.raises(ValueError):
            pin_backend.set_input(BUTTON_PIN, True)


# =============================================================================
# Debounce
# =============================================================================


class TestDebounce:
    """Raw transitions collapse into clean press/release events."""

    def test_bouncy_press_delivers_single_event(
        self, pins, pin_backend, scheduler, recorder, button
    ) -> None:
        """Verifies contact bounce inside the window yields one press.

        Arrangement:
        1. Capture button with the 50 ms default debounce window.

        Action:
        Raw levels high, low, high 20 ms apart, then wait out the window.

        Assertion Strategy:
        - Nothing delivered while bouncing.
        - Exactly one button.pressed with name "capture" afterwards.

        Testing Principle:
        Mechanical switches chatter for a few milliseconds; each chatter
        must not become a separate photo.
        """
        pin_backend.set_input(BUTTON_PIN, True)
        scheduler.advance(0.02)
        pin_backend.set_input(BUTTON_PIN, False)
        scheduler.advance(0.02)
        pin_backend.set_input(BUTTON_PIN, True)
        scheduler.advance(0.02)
        assert recorder.events == []

        scheduler.advance(0.05)

        assert recorder.topics == [EventTopic.BUTTON_PRESSED]
        assert recorder.payloads(EventTopic.BUTTON_PRESSED) == [{"name": "capture"}]

    def test_release_after_press(self, pin_backend, scheduler, recorder, button) -> None:
        pin_backend.set_input(BUTTON_PIN, True)
        scheduler.advance(0.1)
        pin_backend.set_input(BUTTON_PIN, False)
        scheduler.advance(0.1)

        assert recorder.topics == [EventTopic.BUTTON_PRESSED, EventTopic.BUTTON_RELEASED]

    def test_glitch_back_to_idle_is_ignored(
        self, pin_backend, scheduler, recorder, button
    ) -> None:
        pin_backend.set_input(BUTTON_PIN, True)
        scheduler.advance(0.01)
        pin_backend.set_input(BUTTON_PIN, False)
        scheduler.advance(0.2)

        assert recorder.events == []

    def test_zero_debounce_delivers_immediately(
        self, pins, pin_backend, recorder
    ) -> None:
        pins.register_input(PinConfig.button("mode", 25, debounce=0))

        pin_backend.set_input(25, True)

        assert recorder.payloads(EventTopic.BUTTON_PRESSED) == [{"name": "mode"}]

    def test_read_reflects_raw_level(self, pins, pin_backend, button) -> None:
        pin_backend.set_input(BUTTON_PIN, True)
        assert pins.read("capture") is True


# =============================================================================
# Outputs
# =============================================================================


class TestOutputs:
    def test_write_publishes_only_changes(self, pins, recorder, led) -> None:
        pins.write(led, True)
        pins.write(led, True)
        pins.write(led, False)

        assert recorder.payloads(EventTopic.LED_CHANGED) == [
            {"name": "status_led", "level": True},
            {"name": "status_led", "level": False},
        ]

    def test_toggle(self, pins, led) -> None:
        assert pins.toggle(led) is True
        assert pins.toggle(led) is False
        assert pins.read(led) is False

    def test_blink_pattern(self, pins, pin_backend, scheduler, led) -> None:
        """Verifies blink toggles at once, alternates each interval, ends low.

        Arrangement:
        1. Status LED registered low.

        Action:
        blink(duration=1.0, interval=0.2); advance 0.9 s, then past the
        end of the blink.

        Assertion Strategy:
        - Writes after registration alternate starting high: high, low,
          high, low, high by 0.9 s.
        - After the duration the LED is low and no longer blinking.
        """
        pin_backend.writes.clear()

        pins.blink(led, duration=1.0, interval=0.2)
        assert pins.is_blinking(led)
        scheduler.advance(0.9)

        assert [level for _, level in pin_backend.writes] == [True, False, True, False, True]

        scheduler.advance(0.2)

        assert pin_backend.read(LED_PIN) is False
        assert not pins.is_blinking(led)
        assert scheduler.pending == 0

    def test_new_blink_replaces_running_one(self, pins, scheduler, led) -> None:
        pins.blink(led, duration=5.0, interval=0.5)
        pins.blink(led, duration=1.0, interval=0.1)

        scheduler.advance(1.05)

        assert not pins.is_blinking(led)
        assert pins.read(led) is False
        assert scheduler.pending == 0

    def test_write_cancels_blink(self, pins, scheduler, led) -> None:
        pins.blink(led, duration=3.0, interval=0.2)

        pins.write(led, True)
        scheduler.advance(5.0)

        assert pins.read(led) is True
        assert not pins.is_blinking(led)

    @pytest.mark.parametrize("duration, interval", [(0, 0.1), (1.0, 0)])
    def test_blink_timings_validated(self, pins, led, duration, interval) -> None:
        with pytest.raises(ConfigurationError):
            pins.blink(led, duration=duration, interval=interval)

    def test_blink_on_input_rejected(self, pins, button) -> None:
        with pytest.raises(ConfigurationError):
            pins.blink(button, duration=1.0, interval=0.1)
