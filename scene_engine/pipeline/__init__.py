"""
Scene generation pipeline

  Scene image:  Prompt composer + learned patterns → image backend → motif compositing
  Video:        Accept → background submit → bounded polling → download
  Quality:      Verification pass → pattern memory
"""

from .orchestrator import VideoGenerationService
from .routes import compositing_router, pattern_router, scene_router
from .models import JobStatus, MediaStatus

__all__ = [
    "VideoGenerationService",
    "scene_router",
    "compositing_router",
    "pattern_router",
    "JobStatus",
    "MediaStatus",
]
