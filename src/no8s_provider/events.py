"""
Lifecycle Events - In-memory pub/sub for resource lifecycle transitions.

The lifecycle controller publishes an event every time a resource is
created, updated, replaced, deleted, found to have drifted, or fails.
Subscribers receive them through async iterators.
"""

import asyncio
import json
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, AsyncIterator, Callable, Dict, Optional, Tuple

logger = logging.getLogger(__name__)


def _json_default(obj: Any) -> Any:
    """JSON serializer for values SDKs commonly return."""
    if isinstance(obj, datetime):
        return obj.isoformat()
    if isinstance(obj, Decimal):
        return float(obj)
    if isinstance(obj, (set, frozenset)):
        return sorted(obj)
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


class EventType(Enum):
    """Types of lifecycle events."""

    CREATED = "CREATED"
    UPDATED = "UPDATED"
    REPLACED = "REPLACED"
    DELETED = "DELETED"
    DRIFTED = "DRIFTED"
    FAILED = "FAILED"


@dataclass
class ResourceEvent:
    """Event emitted when a resource changes lifecycle state."""

    event_type: EventType
    resource_type: str
    identifier: Optional[str]
    state: str
    attributes: Dict[str, Any] = field(default_factory=dict)
    message: str = ""
    timestamp: str = field(
        default_factory=lambda: datetime.now(timezone.utc)
        .isoformat()
        .replace("+00:00", "Z")
    )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event_type": self.event_type.value,
            "resource_type": self.resource_type,
            "identifier": self.identifier,
            "state": self.state,
            "attributes": self.attributes,
            "message": self.message,
            "timestamp": self.timestamp,
        }

    def to_json(self) -> str:
        """Serialize the event as a single JSON line."""
        return json.dumps(self.to_dict(), default=_json_default)


class EventSubscription:
    """
    Async iterator for consuming events from a subscription.

    A ``None`` sentinel value stops iteration.
    """

    def __init__(
        self,
        queue: asyncio.Queue,
        filter_fn: Optional[Callable[[ResourceEvent], bool]] = None,
    ):
        self._queue = queue
        self._filter_fn = filter_fn

    def __aiter__(self) -> AsyncIterator[ResourceEvent]:
        return self

    async def __anext__(self) -> ResourceEvent:
        while True:
            event = await self._queue.get()

            if event is None:
                raise StopAsyncIteration

            if self._filter_fn is None or self._filter_fn(event):
                return event


class EventBus:
    """
    In-memory pub/sub event bus for lifecycle events.

    Each subscriber gets a bounded ``asyncio.Queue``. Publishing never
    blocks: events for a subscriber whose queue is full are dropped.
    """

    def __init__(self, queue_size: int = 256):
        self._queue_size = queue_size
        self._subscribers: Dict[str, asyncio.Queue] = {}

    async def publish(self, event: ResourceEvent) -> None:
        """
        Publish an event to all subscribers.

        Args:
            event: The event to publish.
        """
        for subscriber_id, queue in list(self._subscribers.items()):
            try:
                queue.put_nowait(event)
            except asyncio.QueueFull:
                logger.warning(
                    f"Dropped {event.event_type.value} event for subscriber "
                    f"{subscriber_id}: queue full"
                )

    def subscribe(
        self,
        filter_fn: Optional[Callable[[ResourceEvent], bool]] = None,
    ) -> Tuple[str, EventSubscription]:
        """
        Subscribe to events.

        Args:
            filter_fn: Optional predicate; only matching events are yielded.

        Returns:
            A tuple of ``(subscriber_id, EventSubscription)``.
        """
        subscriber_id = str(uuid.uuid4())
        queue: asyncio.Queue = asyncio.Queue(maxsize=self._queue_size)
        self._subscribers[subscriber_id] = queue

        logger.debug(f"New event subscriber: {subscriber_id}")
        return subscriber_id, EventSubscription(queue, filter_fn)

    def unsubscribe(self, subscriber_id: str) -> None:
        """
        Remove a subscriber and end its iterator.

        Args:
            subscriber_id: The ID returned by :meth:`subscribe`.
        """
        queue = self._subscribers.pop(subscriber_id, None)

        if queue is not None:
            try:
                queue.put_nowait(None)
            except asyncio.QueueFull:
                logger.warning(f"Subscriber {subscriber_id} queue full at unsubscribe")
            logger.debug(f"Unsubscribed: {subscriber_id}")

    def subscriber_count(self) -> int:
        """Return the current number of subscribers."""
        return len(self._subscribers)
