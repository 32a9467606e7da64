import logging

from dotenv import load_dotenv
from fastapi import FastAPI

from pilot_telemetry.api.routes import router
from pilot_telemetry.consent import ConsentStore
from pilot_telemetry.consent_prompt import DeferredConsentPrompt
from pilot_telemetry.infra.redis_client import close_redis, create_redis
from pilot_telemetry.kv_store import RedisKeyValueStore
from pilot_telemetry.pipeline import AnalyticsPipeline
from pilot_telemetry.settings import settings_from_env
from pilot_telemetry.transport import RedisStreamTransport

app = FastAPI(title="pilot-telemetry", version="0.1.0")
app.include_router(router)
# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def build_default_pipeline() -> AnalyticsPipeline:
    """Wire the pipeline from environment: Redis for consent and the event stream."""

    load_dotenv(override=False)
    settings = settings_from_env()
    r = create_redis()
    app.state.redis = r

    kv = RedisKeyValueStore(r)
    return AnalyticsPipeline(
        consent=ConsentStore(kv, ttl=settings.consent_ttl),
        transport=RedisStreamTransport(r, stream_key=settings.stream_key),
        settings=settings,
        kv=kv,
        prompt=DeferredConsentPrompt(),
    )


@app.on_event("startup")
async def _startup() -> None:
    # Tests (and embedding hosts) may install their own pipeline before startup.
    if getattr(app.state, "pipeline", None) is None:
        app.state.pipeline = build_default_pipeline()
        app.state.owns_pipeline = True
    app.state.pipeline.start()


@app.on_event("shutdown")
async def _shutdown() -> None:
    if getattr(app.state, "owns_pipeline", False):
        pipeline: AnalyticsPipeline = app.state.pipeline
        await pipeline.flush()
        pipeline.close()
        close_redis(app.state.redis)
        app.state.pipeline = None
        app.state.owns_pipeline = False


@app.get("/info")
async def info() -> dict[str, str]:
    return {"name": "pilot-telemetry", "version": "0.1.0"}
