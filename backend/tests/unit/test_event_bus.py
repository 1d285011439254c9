"""Tests for the in-process event bus."""

import pytest

from services.event_bus import (
    TOPIC_CHANGES,
    TOPIC_LOGS,
    TOPIC_SYNC_STATUS,
    EventBus,
    NullEventSink,
    log_event,
)


class TestEventBus:
    def test_delivers_to_topic_subscribers(self):
        bus = EventBus()
        received = []
        bus.subscribe(TOPIC_LOGS, lambda topic, event: received.append((topic, event)))

        bus.publish(TOPIC_LOGS, {"message": "hello"})
        bus.publish(TOPIC_CHANGES, {"summary": {}})

        assert received == [(TOPIC_LOGS, {"message": "hello"})]

    def test_unknown_topic_rejected(self):
        with pytest.raises(ValueError, match="Unknown topic"):
            EventBus().subscribe("metrics", lambda topic, event: None)

    def test_unsubscribe(self):
        bus = EventBus()
        received = []
        unsubscribe = bus.subscribe(TOPIC_SYNC_STATUS, lambda topic, event: received.append(event))

        unsubscribe()
        bus.publish(TOPIC_SYNC_STATUS, {"status": "idle"})

        assert received == []
        assert bus.subscriber_count(TOPIC_SYNC_STATUS) == 0

    def test_failing_subscriber_does_not_block_others(self):
        bus = EventBus()
        received = []

        def broken(topic, event):
            raise RuntimeError("socket closed")

        bus.subscribe(TOPIC_LOGS, broken)
        bus.subscribe(TOPIC_LOGS, lambda topic, event: received.append(event))

        bus.publish(TOPIC_LOGS, {"message": "x"})

        assert received == [{"message": "x"}]

    def test_publish_without_subscribers(self):
        EventBus().publish(TOPIC_CHANGES, {"summary": {}})

    def test_null_sink_drops_events(self):
        NullEventSink().publish(TOPIC_LOGS, {"message": "x"})


def test_log_event_shape():
    event = log_event("warning", "Failed user_created for alice", {"entity_id": "alice"})

    assert event["level"] == "warning"
    assert event["message"] == "Failed user_created for alice"
    assert event["context"] == {"entity_id": "alice"}
    assert "timestamp" in event
    assert log_event("info", "x")["context"] == {}
