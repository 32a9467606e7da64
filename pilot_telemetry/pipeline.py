from __future__ import annotations

import asyncio
import json
import logging
import threading
from concurrent.futures import Future
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any, Callable, Mapping

from pilot_telemetry.catalog import PerformanceMetric, validate_event
from pilot_telemetry.consent import ConsentState, ConsentStatus, ConsentStore
from pilot_telemetry.consent_prompt import ConsentPrompt
from pilot_telemetry.event_queue import EventQueue, QueueStats
from pilot_telemetry.events import DomainEvent, Value, normalize
from pilot_telemetry.fsm import PipelineFSM, PipelinePhase
from pilot_telemetry.kv_store import KeyValueStore
from pilot_telemetry.settings import PipelineSettings
from pilot_telemetry.transport import Transport
from pilot_telemetry.uploader import BatchUploader, DeliveryOutcome, UploaderStats
from pilot_telemetry.worker import UploadWorker

logger = logging.getLogger(__name__)


USER_PROPERTIES_KEY = "analytics_user_properties"


@dataclass(frozen=True, slots=True)
class PipelineStats:
    phase: PipelinePhase
    enabled: bool
    consent: ConsentState
    queue: QueueStats
    uploader: UploaderStats


def _utcnow() -> datetime:
    return datetime.now(tz=UTC)


class AnalyticsPipeline:
    """Entry point for game code reporting analytics.

    Construct once at startup with its collaborators and pass it around; the
    `analytics_enabled` flag is read from settings here and nowhere else.

    `record` is fire-and-forget: it never raises, never waits on the network,
    and silently drops events while consent is missing or analytics is off.
    """

    def __init__(
        self,
        *,
        consent: ConsentStore,
        transport: Transport,
        settings: PipelineSettings | None = None,
        kv: KeyValueStore | None = None,
        prompt: ConsentPrompt | None = None,
        loop: asyncio.AbstractEventLoop | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._settings = settings or PipelineSettings()
        self._consent = consent
        self._kv = kv
        self._prompt = prompt
        self._clock = clock

        self._queue = EventQueue(capacity=self._settings.queue_capacity)
        self._uploader = BatchUploader(transport, batch_size=self._settings.batch_size, loop=loop)
        # Without an injected loop, uploads run on a worker thread we own.
        self._worker = UploadWorker() if loop is None else None

        self._fsm = PipelineFSM()
        self._fsm_lock = threading.Lock()
        self._props_lock = threading.Lock()
        self._enabled = self._settings.analytics_enabled
        self._load_configuration()

    # ---- lifecycle ----

    def _load_configuration(self) -> None:
        with self._fsm_lock:
            if not self._enabled:
                self._fsm.disable()
            elif self._consent.has_valid_consent():
                self._fsm.activate()

        logger.info(
            "Analytics pipeline initialized - enabled: %s, consent: %s, phase: %s",
            self._enabled,
            self._consent.get_status().state.value,
            self.phase.value,
        )

    def start(self) -> None:
        if self._worker is not None:
            self._uploader.bind_loop(self._worker.start())

    def close(self) -> None:
        """Stop the upload worker. A batch still in flight goes back to the queue."""

        if self._worker is not None:
            self._worker.stop()
            self._uploader.unbind_loop()

    @property
    def phase(self) -> PipelinePhase:
        return self._fsm.phase

    @property
    def enabled(self) -> bool:
        return self._enabled

    @property
    def queue(self) -> EventQueue:
        return self._queue

    @property
    def uploader(self) -> BatchUploader:
        return self._uploader

    @property
    def consent(self) -> ConsentStore:
        return self._consent

    def _gate_open(self) -> bool:
        if not self._enabled:
            return False
        if not self._consent.has_valid_consent():
            return False
        self._activate_if_uninitialized()
        return self.phase == PipelinePhase.active

    def _activate_if_uninitialized(self) -> None:
        with self._fsm_lock:
            if self._enabled and self._fsm.phase == PipelinePhase.uninitialized:
                self._fsm.activate()
                logger.info("Analytics pipeline active")

    # ---- recording ----

    def record(self, event: DomainEvent) -> None:
        try:
            self._record(event)
        except Exception:
            logger.exception("Analytics event '%s' dropped after an internal error", event.name)

    def _record(self, event: DomainEvent) -> None:
        if not self._gate_open():
            logger.debug("Analytics event skipped - no consent or disabled: %s", event.name)
            return

        try:
            validate_event(event)
        except ValueError as exc:
            logger.warning("Analytics event recorded with incomplete attributes: %s", exc)
        normalized = normalize(event, now=self._clock())
        self._queue.enqueue(normalized)
        logger.debug("Analytics event tracked: %s", normalized.name)

        if len(self._queue) >= self._settings.batch_size:
            self._trigger_drain(min_size=self._settings.batch_size)

    def track(self, name: str, **attributes: Any) -> None:
        self.record(DomainEvent(name=name, attributes=attributes))

    def track_error(self, message: str, category: str, error: BaseException | None = None) -> None:
        self.track(
            "error_occurred",
            message=message,
            category=category,
            error_description=str(error) if error is not None else "Unknown",
            timestamp=self._clock(),
        )

    def track_performance(self, metric: PerformanceMetric) -> None:
        self.record(metric.to_domain_event())

    def track_screen_view(self, screen_name: str, parameters: Mapping[str, Any] | None = None) -> None:
        attrs: dict[str, Any] = {"screen_name": screen_name, "timestamp": self._clock()}
        if parameters:
            attrs.update(parameters)
        self.record(DomainEvent(name="screen_view", attributes=attrs))

    # ---- uploading ----

    def _trigger_drain(self, *, min_size: int) -> Future[DeliveryOutcome] | None:
        if not self._uploader.ready:
            logger.debug("Upload worker not started; %d events stay queued", len(self._queue))
            return None
        try:
            return self._uploader.drain_and_send(self._queue, min_size=min_size)
        except Exception:
            logger.exception("Failed to dispatch analytics batch")
            return None

    def set_enabled(self, enabled: bool) -> None:
        with self._fsm_lock:
            was_enabled = self._enabled
            self._enabled = enabled
            phase = self._fsm.phase
            if enabled and phase == PipelinePhase.disabled:
                self._fsm.enable()
            elif enabled and phase == PipelinePhase.uninitialized and self._consent.has_valid_consent():
                self._fsm.activate()
            elif not enabled and phase != PipelinePhase.disabled:
                self._fsm.disable()

        logger.info("Analytics enabled: %s", enabled)

        # An in-flight send is left alone when disabling.
        if enabled and not was_enabled and self._consent.has_valid_consent():
            self._trigger_drain(min_size=1)

    async def flush(self) -> bool:
        """Send queued batches until the queue is empty.

        Stops early (returns False) when a send fails or the gate is closed.
        """

        if not self._enabled or not self._consent.has_valid_consent():
            return False

        while len(self._queue) > 0:
            future = self._trigger_drain(min_size=1)
            if future is None:
                if not self._uploader.ready:
                    return False
                # Someone else's batch is in flight; wait for it to settle.
                await asyncio.to_thread(self._uploader.wait_idle)
                continue
            outcome = await asyncio.wrap_future(future)
            if outcome == DeliveryOutcome.requeued:
                return False
        return True

    def reset(self) -> None:
        self._queue.clear()

    # ---- consent ----

    @property
    def prompt(self) -> ConsentPrompt | None:
        return self._prompt

    async def request_consent(self) -> bool:
        """Ask the player and persist the answer.

        Suspends only the caller; recording and uploading carry on meanwhile.
        """

        if self._prompt is None:
            raise RuntimeError("No consent prompt configured")

        try:
            granted = bool(await self._prompt.request())
        except Exception:
            logger.exception("Consent prompt failed; treating as denied")
            granted = False

        self.set_consent(granted)
        return granted

    def set_consent(self, granted: bool) -> ConsentStatus:
        status = self._consent.set_status(ConsentState.granted if granted else ConsentState.denied)
        if granted:
            self._activate_if_uninitialized()
        return status

    def consent_status(self) -> ConsentStatus:
        return self._consent.get_status()

    def revoke_consent(self) -> None:
        """Withdraw consent and discard everything collected under it."""

        self._consent.revoke()
        self._queue.clear()
        if self._kv is not None:
            self._kv.delete(USER_PROPERTIES_KEY)

    # ---- user properties ----

    def set_user_property(self, key: str, value: Value) -> None:
        if self._kv is None or not self._consent.has_valid_consent():
            return
        try:
            with self._props_lock:
                props = self.user_properties()
                props[key] = value
                self._kv.set(USER_PROPERTIES_KEY, json.dumps(props, sort_keys=True))
            logger.debug("User property set: %s", key)
        except Exception:
            logger.exception("Failed to store user property '%s'", key)

    def user_properties(self) -> dict[str, Value]:
        if self._kv is None:
            return {}
        raw = self._kv.get(USER_PROPERTIES_KEY)
        if not raw:
            return {}
        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Corrupt user properties; ignoring stored value")
            return {}
        return data if isinstance(data, dict) else {}

    def stats(self) -> PipelineStats:
        return PipelineStats(
            phase=self.phase,
            enabled=self._enabled,
            consent=self._consent.get_status().state,
            queue=self._queue.stats(),
            uploader=self._uploader.stats(),
        )
