from __future__ import annotations

import asyncio
import functools
import logging
import threading
from concurrent.futures import Future
from dataclasses import dataclass
from enum import StrEnum

from pilot_telemetry.event_queue import EventQueue
from pilot_telemetry.events import Event
from pilot_telemetry.transport import Transport

logger = logging.getLogger(__name__)


class DeliveryOutcome(StrEnum):
    sent = "sent"
    requeued = "requeued"


@dataclass(frozen=True, slots=True)
class UploaderStats:
    drains_started: int
    coalesced: int
    batches_sent: int
    batches_failed: int
    events_sent: int
    in_flight: bool


class BatchUploader:
    """Drains batches from an EventQueue and ships them through a Transport.

    - At most one drain-and-send is in flight; overlapping triggers are coalesced.
    - The batch leaves the queue when it is formed. On transport failure it is
      put back at the head before the in-flight slot is released, so the retry
      is the next thing any later drain sees.
    - The send runs on `loop` (usually an UploadWorker's), never on the caller.
    """

    def __init__(
        self,
        transport: Transport,
        *,
        batch_size: int = 10,
        loop: asyncio.AbstractEventLoop | None = None,
    ) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        self._transport = transport
        self._batch_size = batch_size
        self._loop = loop

        self._in_flight = threading.Lock()
        self._idle = threading.Event()
        self._idle.set()

        self._stats_lock = threading.Lock()
        self._drains_started = 0
        self._coalesced = 0
        self._batches_sent = 0
        self._batches_failed = 0
        self._events_sent = 0

    @property
    def batch_size(self) -> int:
        return self._batch_size

    @property
    def ready(self) -> bool:
        return self._loop is not None

    def bind_loop(self, loop: asyncio.AbstractEventLoop) -> None:
        self._loop = loop

    def unbind_loop(self) -> None:
        self._loop = None

    def drain_and_send(self, queue: EventQueue, *, min_size: int = 1) -> Future[DeliveryOutcome] | None:
        """Form one batch and dispatch it without waiting for delivery.

        Returns the delivery future, or None when nothing was dispatched
        (another drain in flight, or fewer than `min_size` events queued).
        """

        if self._loop is None:
            raise RuntimeError("BatchUploader has no event loop. Call bind_loop() first.")

        if not self._in_flight.acquire(blocking=False):
            with self._stats_lock:
                self._coalesced += 1
            logger.debug("Drain already in flight; trigger coalesced")
            return None
        self._idle.clear()

        batch: list[Event] = []
        try:
            # clear() may still empty the queue after this check; an empty
            # drain below is treated as nothing to send.
            if len(queue) < min_size:
                self._finish()
                return None

            batch = queue.drain_batch(self._batch_size)
            if not batch:
                self._finish()
                return None

            with self._stats_lock:
                self._drains_started += 1
            started = threading.Event()
            fut = asyncio.run_coroutine_threadsafe(self._deliver(queue, batch, started), self._loop)
            fut.add_done_callback(functools.partial(self._settle_unstarted, queue, batch, started))
            return fut
        except Exception:
            if batch:
                queue.requeue_front(batch)
            self._finish()
            raise

    async def _deliver(self, queue: EventQueue, batch: list[Event], started: threading.Event) -> DeliveryOutcome:
        started.set()
        try:
            await self._transport.send(batch)
        except asyncio.CancelledError:
            logger.warning("Send of %d analytics events cancelled; re-queued", len(batch))
            queue.requeue_front(batch)
            raise
        except Exception:
            logger.exception("Failed to send %d analytics events; re-queued", len(batch))
            queue.requeue_front(batch)
            with self._stats_lock:
                self._batches_failed += 1
            return DeliveryOutcome.requeued
        else:
            with self._stats_lock:
                self._batches_sent += 1
                self._events_sent += len(batch)
            logger.info("Successfully sent %d analytics events", len(batch))
            return DeliveryOutcome.sent
        finally:
            self._finish()

    def _settle_unstarted(
        self,
        queue: EventQueue,
        batch: list[Event],
        started: threading.Event,
        fut: Future[DeliveryOutcome],
    ) -> None:
        # Cancelled before its first step, so _deliver never ran its own cleanup.
        if fut.cancelled() and not started.is_set():
            logger.warning("Send of %d analytics events cancelled before start; re-queued", len(batch))
            queue.requeue_front(batch)
            self._finish()

    def _finish(self) -> None:
        # Mark idle before releasing so a new acquirer's clear() is never undone.
        self._idle.set()
        self._in_flight.release()

    def wait_idle(self, timeout: float | None = None) -> bool:
        return self._idle.wait(timeout)

    def stats(self) -> UploaderStats:
        with self._stats_lock:
            return UploaderStats(
                drains_started=self._drains_started,
                coalesced=self._coalesced,
                batches_sent=self._batches_sent,
                batches_failed=self._batches_failed,
                events_sent=self._events_sent,
                in_flight=self._in_flight.locked(),
            )
