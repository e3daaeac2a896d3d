"""
Step Events - In-memory pub/sub for plan progress.

The reconciler publishes an event when a step starts and when it resolves;
the CLI subscribes to render progress while a plan runs.
"""

import asyncio
import json
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import AsyncIterator, Callable, Dict, Optional, Tuple

from models import ResourceSpec, StepOutcome, StepResult

logger = logging.getLogger(__name__)


class EventType(Enum):
    """Types of step events."""

    STARTED = "STARTED"
    ALREADY_EXISTS = "ALREADY_EXISTS"
    CREATED = "CREATED"
    WOULD_CREATE = "WOULD_CREATE"
    FAILED = "FAILED"


_OUTCOME_EVENTS = {
    StepOutcome.ALREADY_EXISTS: EventType.ALREADY_EXISTS,
    StepOutcome.CREATED: EventType.CREATED,
    StepOutcome.WOULD_CREATE: EventType.WOULD_CREATE,
    StepOutcome.FAILED: EventType.FAILED,
}


def _now() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


@dataclass
class StepEvent:
    """Event emitted as a plan step progresses."""

    event_type: EventType
    step: int
    total: int
    kind: str
    name: str
    detail: str
    timestamp: str

    def to_json(self) -> str:
        """Format the event as a single JSON line."""
        return json.dumps(
            {
                "event_type": self.event_type.value,
                "step": self.step,
                "total": self.total,
                "kind": self.kind,
                "name": self.name,
                "detail": self.detail,
                "timestamp": self.timestamp,
            }
        )

    @classmethod
    def started(cls, spec: ResourceSpec, step: int, total: int) -> "StepEvent":
        return cls(
            event_type=EventType.STARTED,
            step=step,
            total=total,
            kind=spec.kind.value,
            name=spec.name,
            detail="",
            timestamp=_now(),
        )

    @classmethod
    def from_result(cls, result: StepResult, step: int, total: int) -> "StepEvent":
        """
        Create an event from a resolved step.

        Args:
            result: The step result.
            step: One-based position of the step in the plan.
            total: Number of steps in the plan.

        Returns:
            A new StepEvent instance.
        """
        return cls(
            event_type=_OUTCOME_EVENTS[result.outcome],
            step=step,
            total=total,
            kind=result.spec.kind.value,
            name=result.spec.name,
            detail=result.error or "",
            timestamp=_now(),
        )


class EventSubscription:
    """
    Async iterator for consuming events from a subscription.

    A ``None`` sentinel value stops iteration.
    """

    def __init__(
        self,
        queue: asyncio.Queue,
        filter_fn: Optional[Callable[[StepEvent], bool]] = None,
    ):
        self._queue = queue
        self._filter_fn = filter_fn

    def __aiter__(self) -> AsyncIterator[StepEvent]:
        return self

    async def __anext__(self) -> StepEvent:
        while True:
            event = await self._queue.get()

            if event is None:
                raise StopAsyncIteration

            if self._filter_fn is None or self._filter_fn(event):
                return event


class EventBus:
    """
    In-memory pub/sub event bus for step events.

    Each subscriber gets its own bounded queue. Publishing never blocks the
    reconciler: events for a subscriber whose queue is full are dropped.
    """

    def __init__(self, queue_size: int = 256):
        self._queue_size = queue_size
        self._subscribers: Dict[str, asyncio.Queue] = {}

    async def publish(self, event: StepEvent) -> None:
        """Publish an event to all subscribers."""
        for subscriber_id, queue in list(self._subscribers.items()):
            try:
                queue.put_nowait(event)
            except asyncio.QueueFull:
                logger.warning(
                    f"Dropped event for subscriber {subscriber_id}: queue full"
                )

    def subscribe(
        self,
        filter_fn: Optional[Callable[[StepEvent], bool]] = None,
    ) -> Tuple[str, EventSubscription]:
        """
        Subscribe to events.

        Args:
            filter_fn: Optional predicate; only events for which it returns
                ``True`` are yielded.

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
        Remove a subscriber.

        Queues a ``None`` sentinel so the subscription's iterator ends after
        the events already delivered to it.
        """
        queue = self._subscribers.pop(subscriber_id, None)
        if queue is None:
            return

        try:
            queue.put_nowait(None)
        except asyncio.QueueFull:
            # Make room for the sentinel; the oldest event is lost
            queue.get_nowait()
            queue.put_nowait(None)
        logger.debug(f"Unsubscribed: {subscriber_id}")

    def subscriber_count(self) -> int:
        """Return the current number of subscribers."""
        return len(self._subscribers)
