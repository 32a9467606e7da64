from __future__ import annotations

import logging
import threading
from collections import deque
from dataclasses import dataclass
from typing import Sequence

from pilot_telemetry.events import Event

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class QueueStats:
    length: int
    capacity: int
    enqueued: int
    evicted: int
    requeued: int
    # Evictions that removed events previously handed back via requeue_front.
    requeue_evictions: int


class EventQueue:
    """Bounded FIFO of pending events, shared by producers and the uploader.

    Contract:
      - `enqueue` appends at the tail and evicts the oldest entries beyond capacity.
      - `drain_batch` removes up to N events from the head.
      - `requeue_front` puts a failed batch back at the head, same eviction rule.

    One lock guards the deque and counters; it is never held across I/O.
    """

    def __init__(self, capacity: int = 100) -> None:
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        self._capacity = capacity
        self._items: deque[Event] = deque()
        self._lock = threading.Lock()

        # Number of events at the head that came from requeue_front and have
        # not been drained or evicted yet.
        self._requeued_at_head = 0

        self._enqueued = 0
        self._evicted = 0
        self._requeued = 0
        self._requeue_evictions = 0

    @property
    def capacity(self) -> int:
        return self._capacity

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)

    def enqueue(self, event: Event) -> None:
        with self._lock:
            self._items.append(event)
            self._enqueued += 1
            dropped, from_requeue = self._evict_overflow_locked()

        if dropped:
            logger.warning("Analytics queue overflow, removed %d old events", dropped)
        if from_requeue:
            logger.warning("Eviction removed %d re-queued events awaiting retry", from_requeue)

    def drain_batch(self, max_size: int) -> list[Event]:
        if max_size < 1:
            return []
        with self._lock:
            n = min(max_size, len(self._items))
            batch = [self._items.popleft() for _ in range(n)]
            self._requeued_at_head = max(0, self._requeued_at_head - n)
        return batch

    def requeue_front(self, events: Sequence[Event]) -> None:
        if not events:
            return
        with self._lock:
            # extendleft reverses its input; feed it reversed to keep order.
            self._items.extendleft(reversed(events))
            self._requeued_at_head += len(events)
            self._requeued += len(events)
            dropped, from_requeue = self._evict_overflow_locked()

        if dropped:
            logger.warning("Analytics queue overflow on requeue, removed %d old events", dropped)
        if from_requeue:
            logger.warning("Eviction removed %d re-queued events awaiting retry", from_requeue)

    def clear(self) -> None:
        with self._lock:
            self._items.clear()
            self._requeued_at_head = 0

    def snapshot(self) -> tuple[Event, ...]:
        with self._lock:
            return tuple(self._items)

    def stats(self) -> QueueStats:
        with self._lock:
            return QueueStats(
                length=len(self._items),
                capacity=self._capacity,
                enqueued=self._enqueued,
                evicted=self._evicted,
                requeued=self._requeued,
                requeue_evictions=self._requeue_evictions,
            )

    def _evict_overflow_locked(self) -> tuple[int, int]:
        overflow = len(self._items) - self._capacity
        if overflow <= 0:
            return 0, 0

        for _ in range(overflow):
            self._items.popleft()

        from_requeue = min(overflow, self._requeued_at_head)
        self._requeued_at_head -= from_requeue
        self._evicted += overflow
        self._requeue_evictions += from_requeue
        return overflow, from_requeue
