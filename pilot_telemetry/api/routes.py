from __future__ import annotations

import asyncio
import dataclasses

from fastapi import APIRouter, Depends, HTTPException, Request, status

from pilot_telemetry.api.deps import get_deferred_prompt, get_pipeline
from pilot_telemetry.api.models import (
    ConsentDecisionRequest,
    ConsentRequestResponse,
    ConsentResponse,
    EnabledRequest,
    FlushResponse,
    PipelineStatusResponse,
    TrackRequest,
    TrackResponse,
)
from pilot_telemetry.consent import ConsentState, ConsentStatus
from pilot_telemetry.consent_prompt import DeferredConsentPrompt
from pilot_telemetry.events import DomainEvent
from pilot_telemetry.pipeline import AnalyticsPipeline

router = APIRouter()


def _consent_response(status_: ConsentStatus) -> ConsentResponse:
    return ConsentResponse(
        state=status_.state,
        decided_at=status_.decided_at,
        valid=status_.state == ConsentState.granted,
    )


def _status_response(pipeline: AnalyticsPipeline) -> PipelineStatusResponse:
    return PipelineStatusResponse.model_validate(dataclasses.asdict(pipeline.stats()))


@router.get("/healthcheck")
async def healthcheck() -> dict[str, str]:
    return {"status": "ok"}


@router.post("/events", response_model=TrackResponse, status_code=status.HTTP_202_ACCEPTED)
async def track_event_route(payload: TrackRequest, pipeline: AnalyticsPipeline = Depends(get_pipeline)) -> TrackResponse:
    pipeline.record(DomainEvent(name=payload.name, attributes=payload.attributes))
    return TrackResponse(phase=pipeline.phase)


@router.get("/consent", response_model=ConsentResponse)
async def get_consent_route(pipeline: AnalyticsPipeline = Depends(get_pipeline)) -> ConsentResponse:
    return _consent_response(pipeline.consent_status())


@router.post("/consent", response_model=ConsentResponse)
async def set_consent_route(
    payload: ConsentDecisionRequest,
    pipeline: AnalyticsPipeline = Depends(get_pipeline),
) -> ConsentResponse:
    return _consent_response(pipeline.set_consent(payload.granted))


@router.post("/consent/revoke", response_model=ConsentResponse)
async def revoke_consent_route(pipeline: AnalyticsPipeline = Depends(get_pipeline)) -> ConsentResponse:
    pipeline.revoke_consent()
    return _consent_response(pipeline.consent_status())


@router.post("/consent/request", response_model=ConsentRequestResponse, status_code=status.HTTP_202_ACCEPTED)
async def request_consent_route(
    request: Request,
    pipeline: AnalyticsPipeline = Depends(get_pipeline),
    prompt: DeferredConsentPrompt = Depends(get_deferred_prompt),
) -> ConsentRequestResponse:
    # Open the prompt before scheduling so a quick /consent/resolve always finds it.
    prompt.open()
    task = getattr(request.app.state, "consent_task", None)
    if task is None or task.done():
        request.app.state.consent_task = asyncio.create_task(pipeline.request_consent())
    return ConsentRequestResponse(pending=True)


@router.post("/consent/resolve", response_model=ConsentResponse)
async def resolve_consent_route(
    payload: ConsentDecisionRequest,
    request: Request,
    pipeline: AnalyticsPipeline = Depends(get_pipeline),
    prompt: DeferredConsentPrompt = Depends(get_deferred_prompt),
) -> ConsentResponse:
    if not prompt.resolve(payload.granted):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="No consent request pending")

    task = getattr(request.app.state, "consent_task", None)
    if task is not None:
        # Wait for the decision to be persisted before reporting it.
        await task
        request.app.state.consent_task = None
    return _consent_response(pipeline.consent_status())


@router.put("/enabled", response_model=PipelineStatusResponse)
async def set_enabled_route(
    payload: EnabledRequest,
    pipeline: AnalyticsPipeline = Depends(get_pipeline),
) -> PipelineStatusResponse:
    pipeline.set_enabled(payload.enabled)
    return _status_response(pipeline)


@router.get("/stats", response_model=PipelineStatusResponse)
async def stats_route(pipeline: AnalyticsPipeline = Depends(get_pipeline)) -> PipelineStatusResponse:
    return _status_response(pipeline)


@router.post("/flush", response_model=FlushResponse)
async def flush_route(pipeline: AnalyticsPipeline = Depends(get_pipeline)) -> FlushResponse:
    flushed = await pipeline.flush()
    return FlushResponse(flushed=flushed, remaining=len(pipeline.queue))
