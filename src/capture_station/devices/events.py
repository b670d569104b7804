"""Typed publish/subscribe channels for station events.

Each event category (capture, video, settings, connection, countdown,
button, led, cue, gallery) gets its own ``EventChannel``; the
``EventBus`` groups them and routes ``publish(topic, ...)`` to the right
one. Collaborators outside the device core (UI broadcaster, audio cue
player, gallery persistence) subscribe here instead of reaching into
controllers.

Delivery rules:
    - Synchronous: ``publish`` returns after every subscriber ran.
    - Ordered: subscribers see events in the order one thread published
      them; subscribers run in registration order.
    - No replay: a subscriber registered after an event was published
      never sees that event.
    - Isolated: a subscriber that raises is logged and skipped; the
      remaining subscribers still receive the event and the publisher
      never sees the error.

Example:
    bus = EventBus()
    bus.subscribe(EventTopic.COUNTDOWN_TICK, lambda e: print(e.payload["remaining"]))
    bus.publish(EventTopic.COUNTDOWN_TICK, remaining=3)
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from capture_station.observability import get_logger

logger = get_logger(__name__)


class EventTopic(Enum):
    """Every topic the station publishes, named ``<category>.<event>``."""

    CAPTURE_STARTED = "capture.started"
    CAPTURE_COMPLETED = "capture.completed"
    CAPTURE_FAILED = "capture.failed"
    VIDEO_STARTED = "video.started"
    VIDEO_STOPPED = "video.stopped"
    SETTINGS_CHANGED = "settings.changed"
    CONNECTION_LOST = "connection.lost"
    CONNECTION_RESTORED = "connection.restored"
    COUNTDOWN_TICK = "countdown.tick"
    BUTTON_PRESSED = "button.pressed"
    BUTTON_RELEASED = "button.released"
    LED_CHANGED = "led.changed"
    CUE_SOUND = "cue.sound"
    CUE_FLASH = "cue.flash"
    GALLERY_ADD = "gallery.add"

    @property
    def category(self) -> str:
        """Channel name, the part before the dot."""
        return self.value.split(".", 1)[0]


#: Channel names in the order the bus creates them.
CATEGORIES: tuple[str, ...] = tuple(dict.fromkeys(t.category for t in EventTopic))


@dataclass(frozen=True, slots=True)
class Event:
    """One published event.

    Attributes:
        topic: What happened.
        payload: Topic-specific data, e.g. ``{"remaining": 2}`` for a
            countdown tick or ``{"name": "capture"}`` for a button press.
        timestamp: UTC time of publication.
    """

    topic: EventTopic
    payload: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))


Subscriber = Callable[[Event], None]


class EventChannel:
    """Fire-and-forget channel for the topics of one category."""

    def __init__(self, category: str) -> None:
        """Create an empty channel.

        Args:
            category: Category name; only topics of this category may be
                published here.

        Raises:
            ValueError: If no topic belongs to ``category``.
        """
        if category not in CATEGORIES:
            raise ValueError(f"Unknown event category: {category}")
        self.category = category
        self._subscribers: list[tuple[EventTopic | None, Subscriber]] = []
        self._lock = threading.Lock()

    def subscribe(
        self, callback: Subscriber, topic: EventTopic | None = None
    ) -> Callable[[], None]:
        """Register ``callback`` for one topic or the whole category.

        Args:
            callback: Called with each matching ``Event``.
            topic: Restrict delivery to this topic; None means every
                topic of the channel.

        Returns:
            A zero-argument function that removes the subscription.
            Calling it twice is harmless.

        Raises:
            ValueError: If ``topic`` belongs to another category.
        """
        if topic is not None and topic.category != self.category:
            raise ValueError(f"{topic.value} is not a {self.category} topic")
        entry = (topic, callback)
        with self._lock:
            self._subscribers.append(entry)

        def unsubscribe() -> None:
            with self._lock:
                if entry in self._subscribers:
                    self._subscribers.remove(entry)

        return unsubscribe

    def publish(self, topic: EventTopic, **payload: Any) -> Event:
        """Deliver an event to current subscribers and return it.

        Raises:
            ValueError: If ``topic`` belongs to another category.
        """
        if topic.category != self.category:
            raise ValueError(f"{topic.value} is not a {self.category} topic")
        event = Event(topic=topic, payload=payload)
        with self._lock:
            targets = [cb for t, cb in self._subscribers if t is None or t is topic]
        for callback in targets:
            try:
                callback(event)
            except Exception:
                logger.exception(
                    "Event subscriber failed",
                    topic=topic.value,
                    subscriber=repr(callback),
                )
        return event

    @property
    def subscriber_count(self) -> int:
        """Number of registered subscriptions."""
        with self._lock:
            return len(self._subscribers)


class EventBus:
    """All station channels, addressable by category or by topic.

    Channels are also exposed as attributes (``bus.capture``,
    ``bus.button`` ...) for collaborators that only care about one.
    """

    def __init__(self) -> None:
        """Create one channel per category."""
        self._channels = {name: EventChannel(name) for name in CATEGORIES}

    def __getattr__(self, name: str) -> EventChannel:
        channels = self.__dict__.get("_channels", {})
        if name in channels:
            return channels[name]
        raise AttributeError(name)

    def channel(self, category: str) -> EventChannel:
        """Return the channel for ``category``.

        Raises:
            KeyError: If the category does not exist.
        """
        return self._channels[category]

    def subscribe(
        self, topic: EventTopic | str, callback: Subscriber
    ) -> Callable[[], None]:
        """Subscribe to one topic, or to a whole category by name.

        Args:
            topic: An ``EventTopic`` or a category name such as ``"led"``.
            callback: Receives each matching ``Event``.

        Returns:
            Unsubscribe function.
        """
        if isinstance(topic, EventTopic):
            return self._channels[topic.category].subscribe(callback, topic)
        return self._channels[topic].subscribe(callback)

    def publish(self, topic: EventTopic, **payload: Any) -> Event:
        """Publish on the channel owning ``topic``."""
        return self._channels[topic.category].publish(topic, **payload)
