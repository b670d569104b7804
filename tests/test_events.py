"""Tests for the typed event channels."""

import pytest

from capture_station.devices.events import (
    CATEGORIES,
    Event,
    EventBus,
    EventChannel,
    EventTopic,
)


class TestEventTopic:
    def test_category_is_prefix(self):
        assert EventTopic.COUNTDOWN_TICK.category == "countdown"
        assert EventTopic.CONNECTION_LOST.category == "connection"

    def test_every_category_has_a_channel(self):
        assert set(CATEGORIES) == {
            "capture",
            "video",
            "settings",
            "connection",
            "countdown",
            "button",
            "led",
            "cue",
            "gallery",
        }


class TestEventChannel:
    """Delivery rules of a single channel."""

    def test_unknown_category_rejected(self):
        with pytest.raises(ValueError, match="Unknown event category"):
            EventChannel("telemetry")

    def test_delivery_is_synchronous_and_ordered(self):
        """Verifies subscribers run in registration order before publish returns.

        Arrangement:
        1. Capture channel with two subscribers appending to one list.

        Action:
        Publish capture.started then capture.completed.

        Assertion Strategy:
        - The list holds (subscriber, topic) pairs in emission order, each
          event seen by the first subscriber before the second.

        Testing Principle:
        UI broadcasters rely on seeing started before completed.
        """
        channel = EventChannel("capture")
        seen = []
        channel.subscribe(lambda e: seen.append(("a", e.topic)))
        channel.subscribe(lambda e: seen.append(("b", e.topic)))

        channel.publish(EventTopic.CAPTURE_STARTED)
        channel.publish(EventTopic.CAPTURE_COMPLETED)

        assert seen == [
            ("a", EventTopic.CAPTURE_STARTED),
            ("b", EventTopic.CAPTURE_STARTED),
            ("a", EventTopic.CAPTURE_COMPLETED),
            ("b", EventTopic.CAPTURE_COMPLETED),
        ]

    def test_late_subscriber_gets_no_replay(self):
        channel = EventChannel("countdown")
        channel.publish(EventTopic.COUNTDOWN_TICK, remaining=3)

        seen = []
        channel.subscribe(seen.append)
        channel.publish(EventTopic.COUNTDOWN_TICK, remaining=2)

        assert [e.payload["remaining"] for e in seen] == [2]

    def test_topic_filter(self):
        channel = EventChannel("button")
        pressed = []
        channel.subscribe(pressed.append, EventTopic.BUTTON_PRESSED)

        channel.publish(EventTopic.BUTTON_RELEASED, name="capture")
        channel.publish(EventTopic.BUTTON_PRESSED, name="capture")

        assert [e.topic for e in pressed] == [EventTopic.BUTTON_PRESSED]

    def test_failing_subscriber_is_isolated(self):
        """Verifies a raising subscriber does not stop delivery or reach the publisher."""
        channel = EventChannel("led")
        after = []

        def broken(event):
            raise RuntimeError("subscriber bug")

        channel.subscribe(broken)
        channel.subscribe(after.append)

        event = channel.publish(EventTopic.LED_CHANGED, name="status_led", level=True)

        assert after == [event]

    def test_unsubscribe_is_idempotent(self):
        channel = EventChannel("video")
        seen = []
        unsubscribe = channel.subscribe(seen.append)

        unsubscribe()
        unsubscribe()
        channel.publish(EventTopic.VIDEO_STARTED)

        assert seen == []
        assert channel.subscriber_count == 0

    def test_wrong_category_rejected(self):
        channel = EventChannel("video")
        with pytest.raises(ValueError):
            channel.publish(EventTopic.CAPTURE_STARTED)
        with pytest.raises(ValueError):
            channel.subscribe(lambda e: None, EventTopic.LED_CHANGED)

    def test_subscriber_may_unsubscribe_during_delivery(self):
        channel = EventChannel("capture")
        seen = []
        holder = {}

        def once(event):
            seen.append(event)
            holder["unsubscribe"]()

        holder["unsubscribe"] = channel.subscribe(once)
        channel.publish(EventTopic.CAPTURE_STARTED)
        channel.publish(EventTopic.CAPTURE_STARTED)

        assert len(seen) == 1


class TestEventBus:
    def test_routes_by_topic(self, bus):
        seen = []
        bus.subscribe(EventTopic.CONNECTION_LOST, seen.append)

        event = bus.publish(EventTopic.CONNECTION_LOST, strategy="gphoto2", attempts=3)

        assert seen == [event]
        assert isinstance(event, Event)
        assert event.payload == {"strategy": "gphoto2", "attempts": 3}
        assert event.timestamp.tzinfo is not None

    def test_category_subscription_sees_every_topic(self, bus):
        seen = []
        bus.subscribe("capture", seen.append)

        bus.publish(EventTopic.CAPTURE_STARTED)
        bus.publish(EventTopic.CAPTURE_FAILED, error="boom")
        bus.publish(EventTopic.VIDEO_STARTED)

        assert [e.topic for e in seen] == [
            EventTopic.CAPTURE_STARTED,
            EventTopic.CAPTURE_FAILED,
        ]

    def test_channels_exposed_as_attributes(self, bus):
        assert bus.countdown is bus.channel("countdown")
        with pytest.raises(AttributeError):
            bus.telemetry

    def test_unknown_category_subscription_fails(self, bus):
        with pytest.raises(KeyError):
            bus.subscribe("telemetry", lambda e: None)
