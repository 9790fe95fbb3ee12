"""
FastAPI routes for the scene engine.

Scene Endpoints:
  POST /scenes/{id}/image          - Generate (or refine) the scene image
  POST /scenes/{id}/verify         - Score the scene image against its materials
  POST /scenes/{id}/video          - Accept a video job (returns immediately)
  GET  /scenes/{id}/video/status   - Scene video fields + latest video job
  GET  /scenes/jobs/{job_id}       - A single generation job by id

Compositing Endpoints:
  POST /compositing/compose        - Paste motifs into layout slots
  POST /compositing/classify       - Template vs stretched display mode

Pattern Endpoints:
  POST /patterns/verification      - Record a verification score
  GET  /patterns/problematic       - Categories averaging below a score
  GET  /patterns/stats             - Pattern counts / average score per category
  POST /patterns/cleanup           - Delete rarely used, lower scoring patterns
  GET  /patterns/{category}        - Best patterns for a category
"""

import logging
from typing import Optional

from fastapi import APIRouter, HTTPException, Query

from ..errors import AppError
from .models import (
    ClassifyRequest,
    ClassifyResponse,
    CompositeRequest,
    CompositeResponse,
    GenerationJob,
    SceneImageRequest,
    SceneImageResponse,
    SuccessfulPattern,
    VerificationRecordRequest,
    VerificationResult,
    VerifySceneRequest,
    VideoGenerateRequest,
    VideoJobAccepted,
    VideoStatusResponse,
)
from .orchestrator import VideoGenerationService

logger = logging.getLogger(__name__)

# Singleton service instance, created on first use so the store is resolved lazily
_service: Optional[VideoGenerationService] = None


def get_service() -> VideoGenerationService:
    global _service
    if _service is None:
        _service = VideoGenerationService()
    return _service


def set_service(service: Optional[VideoGenerationService]):
    global _service
    _service = service


def _http_error(e: Exception, action: str) -> HTTPException:
    if isinstance(e, AppError):
        if e.status_code >= 500:
            logger.error(f"{action} failed: {e.message}", exc_info=True)
        return HTTPException(status_code=e.status_code, detail=e.message)
    logger.error(f"{action} failed: {e}", exc_info=True)
    return HTTPException(status_code=500, detail=str(e))


# ═════════════════════════════════════════════════════════════════════════════
# Scene Router
# ═════════════════════════════════════════════════════════════════════════════

scene_router = APIRouter(prefix="/scenes", tags=["scenes"])


@scene_router.post("/{scene_id}/image", response_model=SceneImageResponse)
async def generate_image(scene_id: str, request: SceneImageRequest):
    """Generate the scene image (awaited; no job record)."""
    try:
        return await get_service().generate_scene_image(scene_id, request)
    except Exception as e:
        raise _http_error(e, "Scene image generation")


@scene_router.post("/{scene_id}/verify", response_model=VerificationResult)
async def verify_scene(scene_id: str, request: VerifySceneRequest):
    try:
        return await get_service().verify_scene(scene_id, request.scene_description)
    except Exception as e:
        raise _http_error(e, "Scene verification")


@scene_router.post("/{scene_id}/video", response_model=VideoJobAccepted)
async def generate_video(scene_id: str, request: VideoGenerateRequest):
    """
    Start video generation from the scene image.

    Errors:
      - 400: Bad style/duration, or the scene has no finished image
      - 404: Scene not found
    """
    try:
        return await get_service().accept_video_job(
            scene_id,
            style=request.video_style,
            user_prompt=request.video_prompt,
            duration_seconds=request.duration_seconds,
        )
    except Exception as e:
        raise _http_error(e, "Video job submission")


@scene_router.get("/{scene_id}/video/status", response_model=VideoStatusResponse)
async def get_video_status(scene_id: str):
    try:
        return get_service().video_status(scene_id)
    except Exception as e:
        raise _http_error(e, "Video status query")


@scene_router.get("/jobs/{job_id}", response_model=GenerationJob)
async def get_job(job_id: str):
    try:
        return get_service().get_job(job_id)
    except Exception as e:
        raise _http_error(e, "Job lookup")


# ═════════════════════════════════════════════════════════════════════════════
# Compositing Router
# ═════════════════════════════════════════════════════════════════════════════

compositing_router = APIRouter(prefix="/compositing", tags=["compositing"])


@compositing_router.post("/compose", response_model=CompositeResponse)
async def compose(request: CompositeRequest):
    try:
        return await get_service().composite(
            request.background_path,
            request.motif_paths,
            layout=request.layout,
            edge_blend=request.edge_blend,
            output_path=request.output_path,
        )
    except Exception as e:
        raise _http_error(e, "Compositing")


@compositing_router.post("/classify", response_model=ClassifyResponse)
async def classify(request: ClassifyRequest):
    mode = await get_service().classify_display_mode(request.motif_paths)
    return ClassifyResponse(mode=mode)


# ═════════════════════════════════════════════════════════════════════════════
# Pattern Router
# ═════════════════════════════════════════════════════════════════════════════

pattern_router = APIRouter(prefix="/patterns", tags=["patterns"])


@pattern_router.post("/verification")
async def record_verification(request: VerificationRecordRequest):
    try:
        get_service().record_verification(request.category, request.prompt, request.score, request.scene_id)
        return {"status": "ok"}
    except Exception as e:
        raise _http_error(e, "Recording verification")


@pattern_router.get("/problematic")
async def problematic_categories(min_score: int = Query(70, ge=0, le=100)):
    return get_service().patterns.problematic_categories(min_score)


@pattern_router.get("/stats")
async def pattern_statistics():
    return get_service().patterns.statistics()


@pattern_router.post("/cleanup")
async def cleanup_patterns(
    min_usage_count: int = Query(2, ge=0),
    min_score: int = Query(85, ge=0, le=100),
):
    deleted = get_service().patterns.cleanup(min_usage_count, min_score)
    return {"deleted": deleted}


@pattern_router.get("/{category}", response_model=list[SuccessfulPattern])
async def best_patterns(category: str, limit: int = Query(3, ge=1, le=50)):
    return get_service().best_patterns(category, limit)
