from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from enum import StrEnum
from typing import Callable

from pilot_telemetry.kv_store import KeyValueStore

logger = logging.getLogger(__name__)


CONSENT_STATUS_KEY = "analytics_consent_status"
CONSENT_DATE_KEY = "analytics_consent_date"

DEFAULT_CONSENT_TTL = timedelta(days=365)


class ConsentState(StrEnum):
    not_requested = "not_requested"
    granted = "granted"
    denied = "denied"
    expired = "expired"


@dataclass(frozen=True, slots=True)
class ConsentStatus:
    state: ConsentState
    # Set for granted/denied/expired decisions; None when nothing was stored.
    decided_at: datetime | None = None


_NOT_REQUESTED = ConsentStatus(state=ConsentState.not_requested)


def _utcnow() -> datetime:
    return datetime.now(tz=UTC)


class ConsentStore:
    """Consent decision persisted in a key-value store.

    Only `granted` and `denied` are ever written. `expired` is derived on every
    read from the stored grant date, so a long-running process never acts on a
    stale grant.
    """

    def __init__(
        self,
        kv: KeyValueStore,
        *,
        ttl: timedelta = DEFAULT_CONSENT_TTL,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._kv = kv
        self._ttl = ttl
        self._clock = clock

    def get_status(self) -> ConsentStatus:
        try:
            raw_state = self._kv.get(CONSENT_STATUS_KEY)
            raw_date = self._kv.get(CONSENT_DATE_KEY)
        except Exception:
            logger.warning("Consent store unreadable; treating as not requested", exc_info=True)
            return _NOT_REQUESTED

        if raw_state is None:
            return _NOT_REQUESTED

        try:
            state = ConsentState(raw_state)
        except ValueError:
            logger.warning("Corrupt consent status %r; treating as not requested", raw_state)
            return _NOT_REQUESTED

        if state not in (ConsentState.granted, ConsentState.denied):
            logger.warning("Unexpected stored consent status %r; treating as not requested", raw_state)
            return _NOT_REQUESTED

        decided_at = _parse_date(raw_date)
        if decided_at is None:
            if state == ConsentState.granted:
                # A grant without a readable date cannot be checked for expiry.
                logger.warning("Consent grant has no readable date %r; treating as not requested", raw_date)
                return _NOT_REQUESTED
            return ConsentStatus(state=state)

        if state == ConsentState.granted and self._clock() - decided_at > self._ttl:
            return ConsentStatus(state=ConsentState.expired, decided_at=decided_at)

        return ConsentStatus(state=state, decided_at=decided_at)

    def set_status(self, decision: ConsentState | str) -> ConsentStatus:
        state = ConsentState(decision)
        if state not in (ConsentState.granted, ConsentState.denied):
            raise ValueError(f"Consent decision must be granted or denied, got '{state.value}'")

        now = self._clock()
        self._kv.set(CONSENT_STATUS_KEY, state.value)
        self._kv.set(CONSENT_DATE_KEY, now.isoformat())
        logger.info("Analytics consent status updated: %s", state.value)
        return ConsentStatus(state=state, decided_at=now)

    def has_valid_consent(self) -> bool:
        return self.get_status().state == ConsentState.granted

    def revoke(self) -> None:
        self._kv.delete(CONSENT_STATUS_KEY)
        self._kv.delete(CONSENT_DATE_KEY)
        logger.info("Analytics consent revoked")


def _parse_date(raw: str | None) -> datetime | None:
    if not raw:
        return None
    try:
        parsed = datetime.fromisoformat(raw)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed
