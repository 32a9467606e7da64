from __future__ import annotations

import os
from dataclasses import dataclass
from datetime import timedelta

_TRUTHY = {"1", "true", "yes", "on"}
_FALSY = {"0", "false", "no", "off"}


@dataclass(frozen=True, slots=True)
class PipelineSettings:
    analytics_enabled: bool = True
    queue_capacity: int = 100
    batch_size: int = 10
    consent_ttl_days: int = 365
    stream_key: str = "analytics:events"

    def __post_init__(self) -> None:
        if self.queue_capacity < 1:
            raise ValueError("queue_capacity must be >= 1")
        if self.batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        if self.batch_size > self.queue_capacity:
            raise ValueError("batch_size must not exceed queue_capacity")
        if self.consent_ttl_days < 1:
            raise ValueError("consent_ttl_days must be >= 1")

    @property
    def consent_ttl(self) -> timedelta:
        return timedelta(days=self.consent_ttl_days)


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    value = raw.strip().casefold()
    if value in _TRUTHY:
        return True
    if value in _FALSY:
        return False
    raise ValueError(f"{name} must be a boolean, got {raw!r}")


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from e


def settings_from_env() -> PipelineSettings:
    """Read pipeline settings once at startup.

    Feature flag: ANALYTICS_ENABLED. Tuning: ANALYTICS_QUEUE_CAPACITY,
    ANALYTICS_BATCH_SIZE, ANALYTICS_CONSENT_TTL_DAYS, ANALYTICS_STREAM_KEY.
    """

    return PipelineSettings(
        analytics_enabled=_env_bool("ANALYTICS_ENABLED", True),
        queue_capacity=_env_int("ANALYTICS_QUEUE_CAPACITY", 100),
        batch_size=_env_int("ANALYTICS_BATCH_SIZE", 10),
        consent_ttl_days=_env_int("ANALYTICS_CONSENT_TTL_DAYS", 365),
        stream_key=os.environ.get("ANALYTICS_STREAM_KEY", "analytics:events"),
    )
