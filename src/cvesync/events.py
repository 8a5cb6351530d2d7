"""Typed publish/subscribe channel for sync lifecycle events.

Subscribers are plain or async callables. A failing subscriber is logged
and never affects the publisher or other subscribers.
"""

import asyncio
import inspect
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any, ClassVar

from loguru import logger
from pydantic import Field

from cvesync.models.base import CamelModel
from cvesync.models.kev import KEVEntry
from cvesync.models.sync import SyncResult


class EventType(StrEnum):
    """Event names as they appear on the event stream."""

    START = "start"
    FETCHED = "fetched"
    PROGRESS = "progress"
    COMPLETE = "complete"
    ERROR = "error"
    ABORT = "abort"
    KEV_ADDITIONS = "kev_additions"


class Event(CamelModel):
    """Base event."""

    event_type: ClassVar[EventType]

    sync_id: int | None = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))

    def to_sse(self) -> str:
        """Render as a Server-Sent-Events frame."""
        payload = self.model_dump_json(by_alias=True)
        return f"event: {self.event_type}\ndata: {payload}\n\n"


class SyncStartEvent(Event):
    event_type: ClassVar[EventType] = EventType.START

    window_start: datetime
    window_end: datetime
    resumed: bool = False
    options: dict[str, Any] = Field(default_factory=dict)


class FetchedEvent(Event):
    event_type: ClassVar[EventType] = EventType.FETCHED

    total: int


class ProgressEvent(Event):
    event_type: ClassVar[EventType] = EventType.PROGRESS

    phase: str
    total: int
    processed: int
    successful: int = 0
    failed: int = 0
    skipped: int = 0
    percentage: float
    rate: float = Field(description="Records per second")
    estimated_time_remaining: str | None = None


class CompleteEvent(Event):
    event_type: ClassVar[EventType] = EventType.COMPLETE

    result: SyncResult


class ErrorEvent(Event):
    event_type: ClassVar[EventType] = EventType.ERROR

    message: str


class AbortEvent(Event):
    event_type: ClassVar[EventType] = EventType.ABORT


class KEVAdditionsEvent(Event):
    event_type: ClassVar[EventType] = EventType.KEV_ADDITIONS

    entries: list[KEVEntry]

    @property
    def cve_ids(self) -> list[str]:
        return [entry.cve_id for entry in self.entries]


Handler = Callable[[Event], Awaitable[None] | None]


class EventBus:
    """In-process event dispatcher."""

    def __init__(self) -> None:
        self._subscribers: list[tuple[type[Event], Handler]] = []
        self._queues: dict[asyncio.Queue[Event], Handler] = {}

    def subscribe(self, handler: Handler, event_type: type[Event] = Event) -> None:
        """Register a handler for ``event_type`` and its subclasses."""
        self._subscribers.append((event_type, handler))

    def unsubscribe(self, handler: Handler, event_type: type[Event] | None = None) -> bool:
        """Remove a handler.

        Returns:
            True if at least one registration was removed.
        """
        before = len(self._subscribers)
        self._subscribers = [
            (kind, h)
            for kind, h in self._subscribers
            if not (h == handler and (event_type is None or kind is event_type))
        ]
        return len(self._subscribers) < before

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    async def publish(self, event: Event) -> None:
        """Deliver an event to every matching subscriber in registration order."""
        for kind, handler in list(self._subscribers):
            if not isinstance(event, kind):
                continue
            try:
                result = handler(event)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception(f"Event subscriber failed on {event.event_type} event")

    def open_queue(self, maxsize: int = 1000) -> asyncio.Queue[Event]:
        """Subscribe a queue that receives every event, for streaming consumers.

        Events are dropped with a warning when the queue is full.
        """
        queue: asyncio.Queue[Event] = asyncio.Queue(maxsize=maxsize)

        def enqueue(event: Event) -> None:
            try:
                queue.put_nowait(event)
            except asyncio.QueueFull:
                logger.warning(f"Event queue full, dropping {event.event_type} event")

        self._queues[queue] = enqueue
        self.subscribe(enqueue)
        return queue

    def close_queue(self, queue: asyncio.Queue[Event]) -> None:
        """Detach a queue opened with :meth:`open_queue`."""
        handler = self._queues.pop(queue, None)
        if handler is not None:
            self.unsubscribe(handler)
