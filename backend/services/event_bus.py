"""In-process publish/subscribe for live status, log and change events.

Delivery is fire-and-forget and at-most-once: events are handed to the
subscribers registered at publish time, a failing subscriber is logged and
skipped, and nothing is buffered for subscribers that attach later.
"""

import logging
import threading
from datetime import datetime, timezone
from typing import Any, Callable, Protocol

logger = logging.getLogger(__name__)

TOPIC_SYNC_STATUS = "sync-status"
TOPIC_LOGS = "logs"
TOPIC_CHANGES = "changes"

TOPICS = frozenset({TOPIC_SYNC_STATUS, TOPIC_LOGS, TOPIC_CHANGES})

Subscriber = Callable[[str, dict[str, Any]], None]


class EventSink(Protocol):
    """Outbound channel for events. Best-effort; never raises to the caller."""

    def publish(self, topic: str, event: dict[str, Any]) -> None:
        ...


class NullEventSink:
    """Sink that drops every event."""

    def publish(self, topic: str, event: dict[str, Any]) -> None:
        pass


class EventBus:
    """Thread-safe topic broadcaster."""

    def __init__(self):
        self._subscribers: dict[str, list[Subscriber]] = {}
        self._lock = threading.Lock()

    def subscribe(self, topic: str, callback: Subscriber) -> Callable[[], None]:
        """Register ``callback`` for ``topic``.

        Returns:
            A function that removes the subscription.
        """
        if topic not in TOPICS:
            raise ValueError(f"Unknown topic: {topic}")
        with self._lock:
            self._subscribers.setdefault(topic, []).append(callback)

        def unsubscribe() -> None:
            with self._lock:
                callbacks = self._subscribers.get(topic, [])
                if callback in callbacks:
                    callbacks.remove(callback)

        return unsubscribe

    def subscriber_count(self, topic: str) -> int:
        with self._lock:
            return len(self._subscribers.get(topic, []))

    def publish(self, topic: str, event: dict[str, Any]) -> None:
        with self._lock:
            callbacks = list(self._subscribers.get(topic, []))
        for callback in callbacks:
            try:
                callback(topic, event)
            except Exception:
                logger.warning("Event subscriber failed on topic %s", topic, exc_info=True)


def log_event(level: str, message: str, context: dict[str, Any] | None = None) -> dict[str, Any]:
    """Build a structured ``logs`` topic event."""
    return {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "level": level,
        "message": message,
        "context": context or {},
    }


_event_bus: EventBus | None = None


def get_event_bus() -> EventBus:
    """Return the process-wide event bus."""
    global _event_bus
    if _event_bus is None:
        _event_bus = EventBus()
    return _event_bus
