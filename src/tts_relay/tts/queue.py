"""
Priority Queue Manager.

Orders speech requests and drives strictly one-at-a-time processing.

Priority (fixed at enqueue time, unless the request carries one):
    team_level * 10
    + 5  if subscriber
    + 20 if source == "gift"
    + 50 if source == "manual"

Ordering is descending priority with FIFO among equal priorities (a
heap keyed by (-priority, sequence)). Capacity counts pending items;
an enqueue at capacity is rejected with QueueFullError.

Wait estimate:
    estimated_wait_ms = position * rolling average item duration
    (synthesis + playback over the last 20 items, 5000 ms before any)

Processing:
    A single asyncio worker dequeues the best item and awaits the
    processor coroutine for it. skip() cancels the in-flight processor
    task; clear() drops pending items and leaves the in-flight one
    alone. A failing processor never stops the worker.
"""
from __future__ import annotations

import asyncio
import heapq
import itertools
import threading
import time
import uuid
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Deque, Dict, List, Optional, Set

from tts_relay.core.config import Defaults
from tts_relay.core.errors import QueueFullError
from tts_relay.core.logging import error, get_logger, info, set_request_id, verbose, warn
from tts_relay.core.metrics import RelayMetrics, metrics as default_metrics

_LOG = get_logger("tts-relay.queue")

TEAM_LEVEL_WEIGHT = 10
SUBSCRIBER_BONUS = 5
GIFT_BONUS = 20
MANUAL_BONUS = 50


def compute_priority(
    team_level: int = 0,
    is_subscriber: bool = False,
    source: str = "chat",
    explicit: Optional[int] = None,
) -> int:
    """Queue priority for a request; an explicit value wins."""
    if explicit is not None:
        return int(explicit)
    priority = int(team_level) * TEAM_LEVEL_WEIGHT
    if is_subscriber:
        priority += SUBSCRIBER_BONUS
    if source == "gift":
        priority += GIFT_BONUS
    if source == "manual":
        priority += MANUAL_BONUS
    return priority


@dataclass
class SynthesisRequest:
    """A validated, resolved request waiting to be spoken."""
    text: str
    requester_id: str
    requester_name: str
    desired_voice_id: Optional[str] = None
    desired_engine_id: Optional[str] = None
    assigned_engine_id: Optional[str] = None
    speed: float = Defaults.SPEED
    volume: float = Defaults.VOLUME
    source: str = "chat"
    team_level: int = 0
    is_subscriber: bool = False
    priority: Optional[int] = None
    id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    created_at: float = field(default_factory=time.time)


@dataclass
class QueueItem:
    request: SynthesisRequest
    priority: int
    seq: int
    enqueued_at: float = field(default_factory=time.time)
    position: int = 0
    estimated_wait_ms: int = 0

    @property
    def id(self) -> str:
        return self.request.id

    def summary(self) -> Dict[str, Any]:
        r = self.request
        return {
            "id": r.id,
            "user_id": r.requester_id,
            "username": r.requester_name,
            "text": r.text,
            "voice": r.desired_voice_id,
            "engine": r.desired_engine_id,
            "source": r.source,
            "priority": self.priority,
            "enqueued_at": self.enqueued_at,
        }


@dataclass(frozen=True)
class EnqueueResult:
    item_id: str
    position: int
    queue_size: int
    estimated_wait_ms: int
    priority: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "item_id": self.item_id,
            "position": self.position,
            "queue_size": self.queue_size,
            "estimated_wait_ms": self.estimated_wait_ms,
            "priority": self.priority,
        }


Processor = Callable[[QueueItem], Awaitable[bool]]


class PriorityQueueManager:
    """
    Bounded priority queue with a single processing worker.

    Args:
        max_size: Maximum pending items.
        processor: Coroutine run for each dequeued item; returns True
            when the item was played.
        default_item_duration_ms: Wait estimate basis before any sample.
        duration_samples: Rolling average window.
    """

    def __init__(
        self,
        max_size: int = Defaults.MAX_QUEUE_SIZE,
        processor: Optional[Processor] = None,
        default_item_duration_ms: int = Defaults.DEFAULT_ITEM_DURATION_MS,
        duration_samples: int = Defaults.DURATION_SAMPLES,
        metrics: RelayMetrics = default_metrics,
    ):
        self.max_size = int(max_size)
        self._processor = processor
        self._default_duration_ms = int(default_item_duration_ms)
        self._durations: Deque[int] = deque(maxlen=duration_samples)
        self._metrics = metrics

        self._heap: List[tuple] = []
        self._seq = itertools.count()
        self._lock = threading.Lock()

        self._current: Optional[QueueItem] = None
        self._current_task: Optional[asyncio.Task] = None
        self._skipped: Set[str] = set()

        self._worker: Optional[asyncio.Task] = None
        self._wakeup: Optional[asyncio.Event] = None

        self._stats = {"queued": 0, "played": 0, "failed": 0, "skipped": 0, "dropped": 0, "rejected": 0}

    # ─────────────────────────────────────────────────────────────────────────
    # Queue operations
    # ─────────────────────────────────────────────────────────────────────────

    def set_max_size(self, max_size: int) -> None:
        """
        Change the capacity.

        Raises:
            ValueError: When more items than max_size are already pending.
        """
        with self._lock:
            if int(max_size) < len(self._heap):
                raise ValueError(
                    f"max_queue_size {max_size} is below the {len(self._heap)} pending items"
                )
            self.max_size = int(max_size)

    def average_duration_ms(self) -> int:
        with self._lock:
            if not self._durations:
                return self._default_duration_ms
            return int(sum(self._durations) / len(self._durations))

    def record_duration(self, duration_ms: int) -> None:
        with self._lock:
            self._durations.append(max(0, int(duration_ms)))

    def enqueue(self, request: SynthesisRequest) -> EnqueueResult:
        """
        Add a request.

        Raises:
            QueueFullError: When max_size items are already pending.
        """
        priority = compute_priority(request.team_level, request.is_subscriber, request.source, request.priority)
        average = self.average_duration_ms()

        with self._lock:
            if len(self._heap) >= self.max_size:
                self._stats["rejected"] += 1
                size = len(self._heap)
                rejected = True
            else:
                rejected = False
                item = QueueItem(request=request, priority=priority, seq=next(self._seq))
                heapq.heappush(self._heap, (-priority, item.seq, item))
                # Items ahead: higher priority, or equal priority enqueued earlier
                position = 1 + sum(1 for p, s, _ in self._heap if (p, s) < (-priority, item.seq))
                size = len(self._heap)
                item.position = position
                item.estimated_wait_ms = position * average
                self._stats["queued"] += 1

        if rejected:
            self._metrics.record_queue_event("rejected")
            warn(_LOG, "queue_full", queue_size=size, max_size=self.max_size, user=request.requester_id)
            raise QueueFullError(
                f"Queue is full ({size}/{self.max_size})",
                {"queue_size": size, "max_queue_size": self.max_size},
            )

        self._metrics.set_queue_depth(size)
        info(_LOG, "enqueued", item=item.id, user=request.requester_id, priority=priority,
             position=position, queue_size=size)
        if self._wakeup is not None:
            self._wakeup.set()

        return EnqueueResult(
            item_id=item.id,
            position=position,
            queue_size=size,
            estimated_wait_ms=item.estimated_wait_ms,
            priority=priority,
        )

    def dequeue(self) -> Optional[QueueItem]:
        """Pop the highest-priority pending item (None when empty)."""
        with self._lock:
            if not self._heap:
                return None
            _, _, item = heapq.heappop(self._heap)
            size = len(self._heap)
        self._metrics.set_queue_depth(size)
        return item

    def pending(self) -> List[QueueItem]:
        """Pending items in processing order."""
        with self._lock:
            ordered = sorted(self._heap, key=lambda entry: (entry[0], entry[1]))
        return [entry[2] for entry in ordered]

    def __len__(self) -> int:
        with self._lock:
            return len(self._heap)

    @property
    def current(self) -> Optional[QueueItem]:
        return self._current

    def clear(self) -> int:
        """Drop all pending items. The in-flight item keeps playing."""
        with self._lock:
            count = len(self._heap)
            self._heap.clear()
            self._stats["dropped"] += count
        self._metrics.set_queue_depth(0)
        self._metrics.record_queue_event("dropped", count)
        info(_LOG, "queue_cleared", dropped=count)
        return count

    def skip(self) -> Optional[QueueItem]:
        """Abort the in-flight item. Returns it, or None if idle."""
        item = self._current
        task = self._current_task
        if item is None or task is None or task.done():
            return None
        self._skipped.add(item.id)
        task.cancel()
        info(_LOG, "skip_requested", item=item.id)
        return item

    # ─────────────────────────────────────────────────────────────────────────
    # Worker
    # ─────────────────────────────────────────────────────────────────────────

    @property
    def is_running(self) -> bool:
        return self._worker is not None and not self._worker.done()

    def start(self) -> None:
        """Start the worker on the running event loop."""
        if self.is_running:
            return
        if self._processor is None:
            raise RuntimeError("queue processor is not set")
        self._wakeup = asyncio.Event()
        if len(self):
            self._wakeup.set()
        self._worker = asyncio.get_running_loop().create_task(self._run(self._wakeup), name="tts-relay-queue")
        info(_LOG, "worker_started", max_size=self.max_size)

    async def stop(self) -> None:
        worker = self._worker
        if worker is None:
            return
        worker.cancel()
        try:
            await worker
        except asyncio.CancelledError:
            pass
        self._worker = None
        self._wakeup = None
        info(_LOG, "worker_stopped", pending=len(self))

    async def _run(self, wakeup: asyncio.Event) -> None:
        while True:
            item = self.dequeue()
            if item is None:
                wakeup.clear()
                await wakeup.wait()
                continue
            await self.process(item)

    async def process(self, item: QueueItem) -> str:
        """
        Run the processor for one item and book the outcome.

        Returns:
            "played", "failed" or "skipped".
        """
        if self._processor is None:
            raise RuntimeError("queue processor is not set")
        set_request_id(item.id)
        self._current = item
        started = time.perf_counter()
        self._current_task = asyncio.ensure_future(self._processor(item))
        try:
            played = await self._current_task
            outcome = "played" if played else "failed"
        except asyncio.CancelledError:
            if item.id not in self._skipped:
                raise
            outcome = "skipped"
        except Exception as exc:
            error(_LOG, "processor_error", item=item.id, error=str(exc), type=type(exc).__name__)
            outcome = "failed"
        finally:
            self._skipped.discard(item.id)
            self._current = None
            self._current_task = None
            set_request_id("-")

        duration_ms = int((time.perf_counter() - started) * 1000)
        if outcome == "played":
            self.record_duration(duration_ms)
        with self._lock:
            self._stats[outcome] += 1
        self._metrics.record_queue_event(outcome)
        verbose(_LOG, "item_done", item=item.id, outcome=outcome, ms=duration_ms)
        return outcome

    # ─────────────────────────────────────────────────────────────────────────
    # Status
    # ─────────────────────────────────────────────────────────────────────────

    def stats(self) -> Dict[str, int]:
        with self._lock:
            return dict(self._stats)

    def status(self) -> Dict[str, Any]:
        pending = self.pending()
        current = self._current
        return {
            "size": len(pending),
            "max_size": self.max_size,
            "is_processing": current is not None,
            "is_running": self.is_running,
            "current": current.summary() if current else None,
            "pending": [
                {**item.summary(), "position": i + 1} for i, item in enumerate(pending)
            ],
            "average_duration_ms": self.average_duration_ms(),
            "stats": self.stats(),
        }
