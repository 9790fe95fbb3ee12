import os
import time
import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI

from . import config, metrics
from .config import Settings
from .pipeline.routes import compositing_router, get_service, pattern_router, scene_router
from .provider_factory import AVAILABLE_IMAGE_PROVIDERS, AVAILABLE_VIDEO_PROVIDERS

logging.basicConfig(level=config.LOG_LEVEL)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    logger.info("Scene engine starting up...")
    metrics.set_gauge("start_time", time.time())
    service = get_service()
    logger.info(f"Store: {type(service.store).__name__}, public root: {service.storage.public_root}")
    yield
    logger.info("Scene engine shutting down...")
    await service.shutdown()


app = FastAPI(title="Scene Engine", lifespan=lifespan)
app.include_router(scene_router)
app.include_router(compositing_router)
app.include_router(pattern_router)


@app.get("/health")
def health_check():
    """Verify the engine is running and credentials are configured."""
    settings = Settings(get_service().store)
    gemini_key = settings.gemini_api_key
    return {
        "status": "ok",
        "gemini_api_key_set": bool(gemini_key),
        "gemini_key_prefix": gemini_key[:8] + "..." if gemini_key else "MISSING",
        "kie_api_key_set": bool(settings.kie_api_key),
        "image_provider": settings.image_provider,
        "video_provider": settings.video_provider,
    }


@app.get("/providers")
def list_providers():
    return {"image": AVAILABLE_IMAGE_PROVIDERS, "video": AVAILABLE_VIDEO_PROVIDERS}


@app.get("/metrics")
def metrics_endpoint():
    """Return a snapshot of all engine metrics."""
    metrics.set_gauge("active_video_jobs", get_service().active_jobs)
    return metrics.get_snapshot()


if __name__ == "__main__":
    port = int(os.environ.get("PORT", 8080))
    uvicorn.run("scene_engine.main:app", host="0.0.0.0", port=port, reload=True)
