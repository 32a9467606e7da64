from __future__ import annotations

from fastapi import HTTPException, Request, status

from pilot_telemetry.consent_prompt import DeferredConsentPrompt
from pilot_telemetry.pipeline import AnalyticsPipeline


def get_pipeline(request: Request) -> AnalyticsPipeline:
    pipeline = getattr(request.app.state, "pipeline", None)
    if pipeline is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Analytics pipeline not initialized")
    return pipeline


def get_deferred_prompt(request: Request) -> DeferredConsentPrompt:
    pipeline = get_pipeline(request)
    prompt = pipeline.prompt
    if not isinstance(prompt, DeferredConsentPrompt):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Consent is not requested over HTTP")
    return prompt
