"""Unit tests for the in-process workflow event bus.

These tests do NOT require a database; they exercise the EventBus class directly.
"""

from __future__ import annotations

import uuid

from freecore.services.event_bus import EventBus, WorkflowEventType

# ---------------------------------------------------------------------------
# Publish / subscribe
# ---------------------------------------------------------------------------


class TestPublish:
    async def test_publish_reaches_all_subscribers(self):
        bus = EventBus()
        _, q1 = bus.subscribe()
        _, q2 = bus.subscribe()

        await bus.publish(WorkflowEventType.STARTED, "submittal", "42", {"template": "x"})

        for q in (q1, q2):
            msg = q.get_nowait()
            assert msg["type"] == "workflow.started"
            assert msg["entity_type"] == "submittal"
            assert msg["payload"] == {"template": "x"}
            assert "created_at" in msg

    async def test_ids_are_stringified(self):
        bus = EventBus()
        user_id = uuid.uuid4()

        event = await bus.publish(WorkflowEventType.COMPLETED, "rfi", 7, {}, user_id=user_id)

        assert event["entity_id"] == "7"
        assert event["user_id"] == str(user_id)

    async def test_unsubscribe(self):
        bus = EventBus()
        sub_id, q = bus.subscribe()
        bus.unsubscribe(sub_id)

        await bus.publish(WorkflowEventType.CANCELLED, "rfi", "1", {})
        assert q.empty()

    async def test_full_queue_drops_subscriber(self):
        bus = EventBus()
        _, q = bus.subscribe(maxsize=1)

        await bus.publish(WorkflowEventType.TRANSITIONED, "rfi", "1", {"n": 1})
        await bus.publish(WorkflowEventType.TRANSITIONED, "rfi", "1", {"n": 2})
        await bus.publish(WorkflowEventType.TRANSITIONED, "rfi", "1", {"n": 3})

        assert q.qsize() == 1
        assert q.get_nowait()["payload"] == {"n": 1}
        assert bus._subscribers == {}


# ---------------------------------------------------------------------------
# Handlers
# ---------------------------------------------------------------------------


class TestHandlers:
    async def test_handler_receives_matching_events_only(self):
        bus = EventBus()
        seen = []

        async def handler(event):
            seen.append(event["type"])

        bus.register_handler(WorkflowEventType.COMPLETED, handler)
        await bus.publish(WorkflowEventType.STARTED, "rfi", "1", {})
        await bus.publish(WorkflowEventType.COMPLETED, "rfi", "1", {})

        assert seen == ["workflow.completed"]

    async def test_failing_handler_does_not_break_publish(self, caplog):
        bus = EventBus()
        seen = []

        async def broken(event):
            raise RuntimeError("notifier down")

        async def healthy(event):
            seen.append(event["id"])

        bus.register_handler(WorkflowEventType.STARTED, broken)
        bus.register_handler(WorkflowEventType.STARTED, healthy)

        event = await bus.publish(WorkflowEventType.STARTED, "rfi", "1", {})

        assert seen == [event["id"]]
        assert "Event handler error" in caplog.text
