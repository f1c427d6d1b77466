"""
Outbound Event Channel.

The relay publishes boundary events on one in-process bus; transports
(the SSE endpoint, tests, an embedding application) subscribe to it.

Events:
    enqueued          - item accepted into the queue
    playback-ready    - audio synthesized, payload carries base64 audio
    playback-started  - sink should start playing the item
    playback-ended    - item finished (signalled or estimated)
    playback-error    - every engine failed for an item
    queue-cleared     - pending items dropped
    queue-skipped     - in-flight item aborted

Each subscriber owns a bounded asyncio.Queue. A slow subscriber loses
its oldest events rather than blocking the publisher.
"""
from __future__ import annotations

import asyncio
import threading
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Deque, Dict, List, Optional

from tts_relay.core.logging import debug, get_logger, warn

_LOG = get_logger("tts-relay.events")

ENQUEUED = "enqueued"
PLAYBACK_READY = "playback-ready"
PLAYBACK_STARTED = "playback-started"
PLAYBACK_ENDED = "playback-ended"
PLAYBACK_ERROR = "playback-error"
QUEUE_CLEARED = "queue-cleared"
QUEUE_SKIPPED = "queue-skipped"

EVENT_TYPES = (
    ENQUEUED,
    PLAYBACK_READY,
    PLAYBACK_STARTED,
    PLAYBACK_ENDED,
    PLAYBACK_ERROR,
    QUEUE_CLEARED,
    QUEUE_SKIPPED,
)


@dataclass
class Event:
    type: str
    payload: Dict[str, Any]
    ts: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type, "ts": self.ts, **self.payload}


class Subscription:
    """Async iterator over events delivered to one subscriber."""

    def __init__(self, bus: "EventBus", maxsize: int):
        self._bus = bus
        self.queue: asyncio.Queue[Event] = asyncio.Queue(maxsize=maxsize)
        self.dropped = 0

    def deliver(self, event: Event) -> None:
        if self.queue.full():
            self.queue.get_nowait()
            self.dropped += 1
        self.queue.put_nowait(event)

    async def get(self, timeout: Optional[float] = None) -> Optional[Event]:
        """Next event, or None after timeout seconds."""
        try:
            return await asyncio.wait_for(self.queue.get(), timeout)
        except asyncio.TimeoutError:
            return None

    def close(self) -> None:
        self._bus.unsubscribe(self)

    def __aiter__(self) -> "Subscription":
        return self

    async def __anext__(self) -> Event:
        return await self.queue.get()


class EventBus:
    """
    Fan-out of relay events to subscribers.

    Args:
        history: Number of recent events kept for recent().
        subscriber_queue_size: Per-subscriber buffer.
    """

    def __init__(self, history: int = 100, subscriber_queue_size: int = 256):
        self._subscribers: List[Subscription] = []
        self._history: Deque[Event] = deque(maxlen=history)
        self._queue_size = subscriber_queue_size
        self._lock = threading.Lock()

    def subscribe(self) -> Subscription:
        sub = Subscription(self, self._queue_size)
        with self._lock:
            self._subscribers.append(sub)
        debug(_LOG, "subscribed", subscribers=len(self._subscribers))
        return sub

    def unsubscribe(self, sub: Subscription) -> None:
        with self._lock:
            if sub in self._subscribers:
                self._subscribers.remove(sub)
        if sub.dropped:
            warn(_LOG, "subscriber_dropped_events", dropped=sub.dropped)

    def publish(self, event_type: str, payload: Optional[Dict[str, Any]] = None) -> Event:
        """Publish an event. Must be called on the event loop thread."""
        if event_type not in EVENT_TYPES:
            raise ValueError(f"unknown event type: {event_type!r}")
        event = Event(type=event_type, payload=dict(payload or {}))
        with self._lock:
            self._history.append(event)
            subscribers = list(self._subscribers)
        for sub in subscribers:
            sub.deliver(event)
        debug(_LOG, "published", event=event_type, subscribers=len(subscribers))
        return event

    def recent(self, event_type: Optional[str] = None) -> List[Event]:
        with self._lock:
            events = list(self._history)
        if event_type is not None:
            events = [e for e in events if e.type == event_type]
        return events

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)
