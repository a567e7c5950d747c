import asyncio
import enum
import logging
import uuid
from datetime import datetime, timezone

logger = logging.getLogger(__name__)


class WorkflowEventType(str, enum.Enum):
    STARTED = "workflow.started"
    TRANSITIONED = "workflow.transitioned"
    COMPLETED = "workflow.completed"
    CANCELLED = "workflow.cancelled"


class EventBus:
    """In-process async event bus.

    The engine publishes one event per committed history entry; subscribers
    (e.g. the notification subsystem) either register a handler coroutine or
    drain a queue of their own.
    """

    def __init__(self) -> None:
        self._subscribers: dict[str, asyncio.Queue] = {}
        self._handlers: dict[WorkflowEventType, list] = {}

    def register_handler(self, event_type: WorkflowEventType, handler) -> None:
        if event_type not in self._handlers:
            self._handlers[event_type] = []
        self._handlers[event_type].append(handler)

    async def publish(
        self,
        event_type: WorkflowEventType,
        entity_type: str,
        entity_id: str,
        payload: dict,
        user_id: uuid.UUID | None = None,
    ) -> dict:
        event = {
            "id": str(uuid.uuid4()),
            "type": event_type.value,
            "entity_type": entity_type,
            "entity_id": str(entity_id),
            "user_id": str(user_id) if user_id else None,
            "payload": payload,
            "created_at": datetime.now(timezone.utc).isoformat(),
        }

        dead_subscribers = []
        for sub_id, queue in self._subscribers.items():
            try:
                queue.put_nowait(event)
            except asyncio.QueueFull:
                dead_subscribers.append(sub_id)
                logger.warning("Dropping events for slow subscriber %s", sub_id)

        for sub_id in dead_subscribers:
            self._subscribers.pop(sub_id, None)

        # Dispatch to registered handlers
        for handler in self._handlers.get(event_type, []):
            try:
                await handler(event)
            except Exception:
                logger.exception("Event handler error for %s", event_type)

        return event

    def subscribe(self, maxsize: int = 256) -> tuple[str, asyncio.Queue]:
        sub_id = str(uuid.uuid4())
        queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self._subscribers[sub_id] = queue
        return sub_id, queue

    def unsubscribe(self, sub_id: str) -> None:
        self._subscribers.pop(sub_id, None)


# Global singleton
event_bus = EventBus()
