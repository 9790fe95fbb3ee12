"""
VideoGenerationService: the engine's boundary.

Video jobs are accepted synchronously and finished in a background task:

  accept ──► processing ──► generating ──► completed
                  │              │
                  └──────────────┴────────► failed

  processing  job row created, prompt built, submission in flight
  generating  backend handle stored on the job, polling
  completed   video downloaded to /renders/<scene>_video.mp4
  failed      error message on both job and scene

The job row is the only place a background failure surfaces. Compositing,
display-mode classification and pattern memory are exposed here as well so
routes talk to a single service.
"""

import time
import uuid
import asyncio
import logging
from typing import Awaitable, Callable, Optional

from .. import config, metrics
from ..config import Settings
from ..errors import NotFoundError, ValidationError, error_message
from ..provider_factory import ProviderFactory
from ..providers.base import ImageInput, VideoGenerationRequest
from .animate import poll_until_done
from .compositing import compose_motifs_onto_background
from .models import (
    ALLOWED_VIDEO_DURATIONS,
    DEFAULT_VIDEO_DURATION,
    CompositeResponse,
    GenerationJob,
    JobKind,
    JobStatus,
    MediaStatus,
    MotifDisplayMode,
    NormalizedSlot,
    SceneImageRequest,
    SceneImageResponse,
    SuccessfulPattern,
    VerificationResult,
    VideoJobAccepted,
    VideoStatusResponse,
    VideoStyle,
    estimate_video_cost,
)
from .motif_classifier import detect_display_mode_from_paths
from .pattern_memory import PatternMemory
from .prompt_builder import VIDEO_OPTIMIZER_SYSTEM_PROMPT, build_video_prompt
from .scene_gen import generate_scene_image
from .storage import LocalFileStorage, guess_mime, video_artifact_path
from .store import SceneStore, get_store, now_iso
from .verification import record_verification, verify_scene_image

logger = logging.getLogger(__name__)

DEFAULT_VIDEO_STYLE = VideoStyle.CINEMATIC


def _parse_style(style: Optional[str]) -> VideoStyle:
    if not style:
        return DEFAULT_VIDEO_STYLE
    try:
        return VideoStyle(style)
    except ValueError:
        allowed = ", ".join(s.value for s in VideoStyle)
        raise ValidationError(f"videoStyle must be one of: {allowed}", {"video_style": style}) from None


def _parse_duration(duration_seconds: Optional[int]) -> int:
    if duration_seconds is None:
        return DEFAULT_VIDEO_DURATION
    if duration_seconds not in ALLOWED_VIDEO_DURATIONS:
        allowed = ", ".join(str(d) for d in ALLOWED_VIDEO_DURATIONS)
        raise ValidationError(f"durationSeconds must be one of: {allowed}", {"duration_seconds": duration_seconds})
    return duration_seconds


class VideoGenerationService:
    """
    Usage:
        service = VideoGenerationService()

        ack = await service.accept_video_job(scene_id, "cinematic", "slow push in", 8)
        job = service.query_job_status(scene_id)
    """

    def __init__(
        self,
        store: Optional[SceneStore] = None,
        storage: Optional[LocalFileStorage] = None,
        factory=ProviderFactory,
        poll_timeout: Optional[float] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.store = store or get_store()
        self.storage = storage or LocalFileStorage(config.PUBLIC_ROOT, config.PUBLIC_BASE_URL)
        self.settings = Settings(self.store)
        self.patterns = PatternMemory(self.store)
        self._factory = factory
        self._poll_timeout = poll_timeout if poll_timeout is not None else config.VIDEO_POLL_TIMEOUT_SECONDS
        self._sleep = sleep
        self._clock = clock
        self._tasks: set[asyncio.Task] = set()

    # ── Video jobs ───────────────────────────────────────────────────────

    async def accept_video_job(
        self,
        scene_id: str,
        style: Optional[str] = None,
        user_prompt: Optional[str] = None,
        duration_seconds: Optional[int] = None,
    ) -> VideoJobAccepted:
        """Validate, record the job, start the background run and return at once."""
        video_style = _parse_style(style)
        duration = _parse_duration(duration_seconds)

        scene = self.store.get_scene(scene_id)
        if not scene:
            raise NotFoundError("scene", scene_id)
        if scene.get("image_status") != MediaStatus.DONE.value or not scene.get("image_path"):
            raise ValidationError("Scene must have a generated image before creating a video")

        self.store.update_scene(scene_id, {
            "video_prompt": user_prompt or None,
            "video_style": video_style.value,
            "video_duration": duration,
            "video_status": MediaStatus.GENERATING.value,
        })

        cost = estimate_video_cost(duration)
        job = self.store.create_job(GenerationJob(
            id=str(uuid.uuid4()),
            scene_id=scene_id,
            job_type=JobKind.VIDEO,
            status=JobStatus.PROCESSING,
            cost_estimate=cost,
            started_at=now_iso(),
        ))
        metrics.job_transition("video", "accepted")
        logger.info(f"[{job.id}] Video job accepted for scene {scene_id}: {video_style.value}, {duration}s")

        self._spawn(self._run_video_job(scene, job.id, video_style, user_prompt, duration))

        return VideoJobAccepted(id=scene_id, job_id=job.id, cost_estimate=cost)

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _run_video_job(
        self,
        scene: dict,
        job_id: str,
        style: VideoStyle,
        user_prompt: Optional[str],
        duration: int,
    ):
        scene_id = scene["id"]
        started = time.monotonic()
        try:
            provider = self._factory.get_video_provider(self.settings)

            image_path = scene["image_path"]
            image_bytes = await asyncio.to_thread(self.storage.read_bytes, image_path)
            materials = self.store.get_scene_materials(scene_id)

            combined = build_video_prompt(style, user_prompt, materials)
            optimized = await provider.enrich_prompt(VIDEO_OPTIMIZER_SYSTEM_PROMPT, combined)
            logger.info(f"[{job_id}] Video prompt optimized ({len(optimized)} chars)")

            handle = await provider.generate_video_from_image(VideoGenerationRequest(
                prompt=optimized,
                source_image=ImageInput(data=image_bytes, mime_type=guess_mime(image_path)),
                source_image_url=self.storage.public_url(image_path),
                duration_seconds=duration,
                style=style.value,
            ))
            self.store.update_job(job_id, {"operation_name": handle, "status": JobStatus.GENERATING})
            logger.info(f"[{job_id}] {provider.name} operation started: {handle}")

            operation = await poll_until_done(
                provider, handle, self._poll_timeout,
                sleep=self._sleep, clock=self._clock, job_id=job_id,
            )

            video_path = video_artifact_path(scene_id)
            await provider.download_video(operation, self.storage.resolve(video_path))

            self.store.update_scene(scene_id, {
                "video_path": video_path,
                "video_status": MediaStatus.DONE.value,
            })
            self.store.update_job(job_id, {
                "status": JobStatus.COMPLETED,
                "completed_at": now_iso(),
                "cost_estimate": estimate_video_cost(duration),
            })
            metrics.job_transition("video", "completed")
            metrics.observe("video_job", (time.monotonic() - started) * 1000)
            logger.info(f"[{job_id}] Video generated for scene {scene_id}: {video_path}")

        except asyncio.CancelledError:
            self._mark_failed(scene_id, job_id, "Video generation cancelled")
            raise

        except Exception as e:
            logger.error(f"[{job_id}] Video generation failed for scene {scene_id}: {e}", exc_info=True)
            self._mark_failed(scene_id, job_id, error_message(e))

    def _mark_failed(self, scene_id: str, job_id: str, message: str):
        metrics.job_transition("video", "failed")
        metrics.record_failure("video_job", "VIDEO_JOB_FAILED", message, job_id)
        try:
            self.store.update_scene(scene_id, {"video_status": MediaStatus.FAILED.value})
            self.store.update_job(job_id, {
                "status": JobStatus.FAILED,
                "error_message": message,
                "completed_at": now_iso(),
            })
        except Exception as e:
            logger.error(f"[{job_id}] Could not persist failure state: {e}", exc_info=True)

    def get_job(self, job_id: str) -> GenerationJob:
        job = self.store.get_job(job_id)
        if job is None:
            raise NotFoundError("job", job_id)
        return job

    def query_job_status(self, scene_id: str) -> Optional[GenerationJob]:
        return self.store.latest_job(scene_id, JobKind.VIDEO.value)

    def video_status(self, scene_id: str) -> VideoStatusResponse:
        scene = self.store.get_scene(scene_id)
        if not scene:
            raise NotFoundError("scene", scene_id)
        return VideoStatusResponse(
            video_status=scene.get("video_status") or MediaStatus.NONE.value,
            video_path=scene.get("video_path"),
            video_style=scene.get("video_style"),
            video_duration=scene.get("video_duration"),
            job=self.query_job_status(scene_id),
        )

    @property
    def active_jobs(self) -> int:
        return len(self._tasks)

    async def wait_idle(self):
        """Wait for every running background job to settle."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def shutdown(self):
        for task in list(self._tasks):
            task.cancel()
        await self.wait_idle()

    # ── Scene images ─────────────────────────────────────────────────────

    async def generate_scene_image(self, scene_id: str, request: SceneImageRequest) -> SceneImageResponse:
        provider = self._factory.get_image_provider(self.settings)
        return await generate_scene_image(self.store, self.storage, provider, self.patterns, scene_id, request)

    async def verify_scene(self, scene_id: str, scene_description: Optional[str] = None) -> VerificationResult:
        scene = self.store.get_scene(scene_id)
        if not scene:
            raise NotFoundError("scene", scene_id)
        if not scene.get("image_path"):
            raise ValidationError("Scene has no generated image to verify")

        image_path = scene["image_path"]
        image = ImageInput(
            data=await asyncio.to_thread(self.storage.read_bytes, image_path),
            mime_type=guess_mime(image_path),
        )
        provider = self._factory.get_image_provider(self.settings)
        return await verify_scene_image(
            self.store, provider, scene_id, image,
            self.store.get_scene_materials(scene_id),
            scene_description or scene.get("description"),
            scene.get("enriched_prompt"),
        )

    # ── Compositing / classification ─────────────────────────────────────

    async def composite(
        self,
        background_path: str,
        motif_paths: list[str],
        layout: Optional[list[NormalizedSlot]] = None,
        edge_blend: bool = False,
        output_path: Optional[str] = None,
    ) -> CompositeResponse:
        background = await asyncio.to_thread(self.storage.read_bytes, background_path)
        result = await asyncio.to_thread(
            compose_motifs_onto_background,
            background, motif_paths, self.storage.read_bytes, layout, edge_blend,
        )
        target = output_path or f"/renders/composite_{uuid.uuid4().hex[:12]}.png"
        await asyncio.to_thread(self.storage.write_bytes, target, result.image_bytes)
        return CompositeResponse(image_path=target, mime_type=result.mime_type, used_motifs=result.used_motifs)

    async def classify_display_mode(self, motif_paths: list[str]) -> MotifDisplayMode:
        return await asyncio.to_thread(detect_display_mode_from_paths, motif_paths, self.storage.read_bytes)

    # ── Pattern memory ───────────────────────────────────────────────────

    def record_verification(self, category: str, prompt: str, score: int, scene_id: Optional[str] = None) -> None:
        record_verification(self.store, category, prompt, score, scene_id or "")

    def best_patterns(self, category: str, limit: int = 3) -> list[SuccessfulPattern]:
        return self.patterns.best_for(category, limit)
