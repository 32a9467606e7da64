from __future__ import annotations

import asyncio
import json
import logging
from typing import Protocol, Sequence, cast

import redis

from pilot_telemetry.events import Event

logger = logging.getLogger(__name__)


class DeliveryError(RuntimeError):
    """A batch could not be delivered; the uploader re-queues it."""


class Transport(Protocol):
    """Uploads one batch. Returning means delivered; raising means failed.

    Timeouts are the transport's business: the pipeline never cancels a send.
    """

    async def send(self, batch: Sequence[Event]) -> None:  # pragma: no cover
        ...


def event_to_stream_fields(event: Event) -> dict[str, str]:
    return {
        "name": event.name,
        "ts": event.timestamp.isoformat(),
        "attributes": json.dumps(dict(event.attributes), sort_keys=True),
    }


class RedisStreamTransport:
    """Append each event of a batch to a Redis stream.

    redis-py is synchronous, so the XADDs run in a worker thread to keep the
    upload loop free. A pipeline wraps the batch so it lands all-or-nothing.
    """

    def __init__(self, r: redis.Redis, *, stream_key: str = "analytics:events", maxlen: int | None = None) -> None:
        self._r = r
        self._stream_key = stream_key
        self._maxlen = maxlen

    @property
    def stream_key(self) -> str:
        return self._stream_key

    def _publish(self, batch: Sequence[Event]) -> list[str]:
        pipe = self._r.pipeline(transaction=True)
        for event in batch:
            pipe.xadd(self._stream_key, event_to_stream_fields(event), maxlen=self._maxlen, approximate=True)
        return cast(list[str], pipe.execute())

    async def send(self, batch: Sequence[Event]) -> None:
        try:
            ids = await asyncio.to_thread(self._publish, batch)
        except redis.RedisError as e:
            raise DeliveryError(f"Failed to publish {len(batch)} events to {self._stream_key}") from e
        logger.info("Published %d analytics events to %s", len(ids), self._stream_key)


class LoggingTransport:
    """Log batches instead of uploading them (local runs without a backend)."""

    async def send(self, batch: Sequence[Event]) -> None:
        logger.info("Processing %d analytics events", len(batch))
        for event in batch:
            logger.debug("Analytics event: %s - %s", event.name, dict(event.attributes))
