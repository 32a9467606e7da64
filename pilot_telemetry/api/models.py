from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

from pilot_telemetry.consent import ConsentState
from pilot_telemetry.fsm import PipelinePhase


class TrackRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=128)
    # Scalars only; bool listed first so JSON true/false is not read as 1/0.
    attributes: dict[str, bool | int | float | str] = Field(default_factory=dict)


class TrackResponse(BaseModel):
    # Consent-gated drops are silent, so "accepted" only means the call was taken.
    accepted: bool = True
    phase: PipelinePhase


class ConsentDecisionRequest(BaseModel):
    granted: bool


class ConsentResponse(BaseModel):
    state: ConsentState
    decided_at: datetime | None = None
    valid: bool


class ConsentRequestResponse(BaseModel):
    pending: bool


class EnabledRequest(BaseModel):
    enabled: bool


class QueueStatsModel(BaseModel):
    length: int
    capacity: int
    enqueued: int
    evicted: int
    requeued: int
    requeue_evictions: int


class UploaderStatsModel(BaseModel):
    drains_started: int
    coalesced: int
    batches_sent: int
    batches_failed: int
    events_sent: int
    in_flight: bool


class PipelineStatusResponse(BaseModel):
    phase: PipelinePhase
    enabled: bool
    consent: ConsentState
    queue: QueueStatsModel
    uploader: UploaderStatsModel


class FlushResponse(BaseModel):
    flushed: bool
    remaining: int
