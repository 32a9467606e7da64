from __future__ import annotations

import asyncio
import threading
from collections.abc import Callable, Generator, Sequence
from datetime import UTC, datetime, timedelta

import fakeredis
import pytest

from pilot_telemetry.consent import ConsentStore
from pilot_telemetry.events import Event
from pilot_telemetry.kv_store import RedisKeyValueStore
from pilot_telemetry.pipeline import AnalyticsPipeline
from pilot_telemetry.settings import PipelineSettings
from pilot_telemetry.transport import DeliveryError


class ManualClock:
    """Deterministic clock; tests move time with `advance`."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2025, 7, 15, 12, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, delta: timedelta) -> None:
        self.now = self.now + delta


class RecordingTransport:
    """In-memory transport.

    - `fail=True` makes every send raise DeliveryError.
    - `gate` (threading.Event) holds sends in flight until set.
    """

    def __init__(self) -> None:
        self.batches: list[list[Event]] = []
        self.attempts = 0
        self.fail = False
        self.gate: threading.Event | None = None

    async def send(self, batch: Sequence[Event]) -> None:
        self.attempts += 1
        if self.gate is not None:
            await asyncio.to_thread(self.gate.wait, 5)
        if self.fail:
            raise DeliveryError("upload failed")
        self.batches.append(list(batch))

    @property
    def sent_names(self) -> list[str]:
        return [e.name for b in self.batches for e in b]


@pytest.fixture()
def r() -> fakeredis.FakeRedis:
    return fakeredis.FakeRedis(decode_responses=True)


@pytest.fixture()
def kv(r: fakeredis.FakeRedis) -> RedisKeyValueStore:
    return RedisKeyValueStore(r)


@pytest.fixture()
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture()
def consent(kv: RedisKeyValueStore, clock: ManualClock) -> ConsentStore:
    return ConsentStore(kv, clock=clock)


@pytest.fixture()
def transport() -> RecordingTransport:
    return RecordingTransport()


@pytest.fixture()
def make_pipeline(
    consent: ConsentStore,
    kv: RedisKeyValueStore,
    transport: RecordingTransport,
) -> Generator[Callable[..., AnalyticsPipeline], None, None]:
    """Build pipelines running their own upload worker; all are closed at teardown."""

    created: list[AnalyticsPipeline] = []

    def _make(**overrides: object) -> AnalyticsPipeline:
        settings = overrides.pop("settings", None) or PipelineSettings()
        kwargs: dict[str, object] = {"consent": consent, "transport": transport, "settings": settings, "kv": kv}
        kwargs.update(overrides)
        pipeline = AnalyticsPipeline(**kwargs)  # type: ignore[arg-type]
        if kwargs.get("loop") is None:
            pipeline.start()
        created.append(pipeline)
        return pipeline

    yield _make

    for p in created:
        p.close()
