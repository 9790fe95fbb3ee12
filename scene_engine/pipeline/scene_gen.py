"""
Scene image generation, awaited by the caller, no job record.

Material reference images and uploaded motifs are loaded from storage and
passed as references (motifs last, flagged for verbatim reproduction). The
user's description is first expanded into a full scene prompt by the text
model, learned patterns for the scene's material categories are appended,
and the motif display mode steers how the canvas is presented.
"""

import asyncio
import logging
from typing import Optional

from .. import metrics
from ..errors import FileError, NotFoundError, error_message, is_policy_block
from ..providers.base import MAX_REFERENCE_IMAGES, AIProvider, ImageGenerationRequest, ImageInput
from .compositing import compose_motifs_onto_background
from .models import (
    MediaStatus,
    Material,
    MotifDisplayMode,
    SceneImageRequest,
    SceneImageResponse,
    VerificationResult,
)
from .motif_classifier import detect_display_mode_from_paths
from .pattern_memory import PatternMemory
from .prompt_builder import (
    SCENE_SYSTEM_PROMPT,
    build_image_generation_prompt,
    build_refinement_request,
    build_scene_intelligence_prompt,
)
from .storage import LocalFileStorage, guess_mime, image_artifact_path
from .store import SceneStore
from .verification import needs_refinement, verify_scene_image

logger = logging.getLogger(__name__)

MAX_IMAGES_PER_MATERIAL = 3
MAX_VERIFICATION_ATTEMPTS = 3
FALLBACK_SCENE_PROMPT = "A professional product photography scene showcasing the materials"


def _load_images(storage: LocalFileStorage, paths: list[str]) -> list[ImageInput]:
    images = []
    for path in paths:
        try:
            images.append(ImageInput(data=storage.read_bytes(path), mime_type=guess_mime(path)))
        except FileError as e:
            logger.warning(f"Skipping reference image {path}: {e.message}")
    return images


def collect_reference_images(
    storage: LocalFileStorage,
    materials: list[Material],
    motif_paths: list[str],
) -> tuple[list[ImageInput], int]:
    """Material references first, motifs last; motifs always survive the cap."""
    motifs = _load_images(storage, motif_paths)[:MAX_REFERENCE_IMAGES]
    material_paths = [p for m in materials for p in m.image_paths[:MAX_IMAGES_PER_MATERIAL]]
    refs = _load_images(storage, material_paths)[:MAX_REFERENCE_IMAGES - len(motifs)]
    return refs + motifs, len(motifs)


async def _write_scene_prompt(
    provider: AIProvider,
    request: SceneImageRequest,
    materials: list[Material],
    motif_mode: Optional[MotifDisplayMode],
) -> str:
    user_prompt = build_scene_intelligence_prompt(request.prompt, materials, motif_mode)
    scene_prompt = (await provider.enrich_prompt(SCENE_SYSTEM_PROMPT, user_prompt) or "").strip()
    if not scene_prompt:
        logger.warning("Scene prompt enrichment came back empty, using the description")
        scene_prompt = request.prompt.strip() or FALLBACK_SCENE_PROMPT
    return scene_prompt


async def generate_scene_image(
    store: SceneStore,
    storage: LocalFileStorage,
    provider: AIProvider,
    pattern_memory: PatternMemory,
    scene_id: str,
    request: SceneImageRequest,
) -> SceneImageResponse:
    """
    Render the scene image and, when the scene has materials, verify it.

    A verified image that scores badly (or has a critical issue) is edited
    image-to-image with the correction list, up to MAX_VERIFICATION_ATTEMPTS
    verification passes in total.
    """
    scene = store.get_scene(scene_id)
    if not scene:
        raise NotFoundError("scene", scene_id)

    materials = store.get_scene_materials(scene_id)
    motif_paths: list[str] = list(scene.get("motif_image_paths") or [])

    motif_mode: Optional[MotifDisplayMode] = None
    if motif_paths:
        motif_mode = await asyncio.to_thread(detect_display_mode_from_paths, motif_paths, storage.read_bytes)

    references, motif_count = await asyncio.to_thread(collect_reference_images, storage, materials, motif_paths)

    source_image = None
    if request.refine_existing and scene.get("image_path"):
        source_image = ImageInput(
            data=await asyncio.to_thread(storage.read_bytes, scene["image_path"]),
            mime_type=guess_mime(scene["image_path"]),
        )

    store.update_scene(scene_id, {
        "image_status": MediaStatus.GENERATING.value,
        "motif_display_mode": motif_mode.value if motif_mode else None,
    })
    logger.info(
        f"Generating scene image {scene_id}: {len(references)} refs ({motif_count} motifs), "
        f"mode={motif_mode.value if motif_mode else 'none'}, refine={source_image is not None}"
    )

    def image_request(prompt: str, source: Optional[ImageInput]) -> ImageGenerationRequest:
        return ImageGenerationRequest(
            prompt=prompt,
            reference_images=references,
            motif_ref_count=motif_count,
            aspect_ratio=request.aspect_ratio,
            image_size=request.image_size,
            source_image=source,
            safety_level=request.safety_level,
        )

    verification: Optional[VerificationResult] = None
    refinements = 0
    try:
        scene_prompt = await _write_scene_prompt(provider, request, materials, motif_mode)
        scene_prompt = pattern_memory.inject([m.category for m in materials], scene_prompt)
        store.update_scene(scene_id, {"enriched_prompt": scene_prompt})

        result = await provider.generate_image(image_request(
            build_image_generation_prompt(scene_prompt, motif_mode, request.aspect_ratio), source_image
        ))
        image_bytes, mime_type, cost = result.image_bytes, result.mime_type, result.cost or 0.0

        if materials:
            for attempt in range(1, MAX_VERIFICATION_ATTEMPTS + 1):
                verification = await verify_scene_image(
                    store, provider, scene_id, ImageInput(data=image_bytes, mime_type=mime_type),
                    materials, request.prompt, scene_prompt,
                )
                store.update_scene(scene_id, {"verification_attempts": attempt})
                if attempt == MAX_VERIFICATION_ATTEMPTS or not needs_refinement(verification):
                    break

                refinements += 1
                logger.info(f"Refining scene image {scene_id} (score {verification.score}), pass {refinements}")
                result = await provider.generate_image(image_request(
                    build_refinement_request(scene_prompt, verification.refinement_prompt),
                    ImageInput(data=image_bytes, mime_type=mime_type),
                ))
                image_bytes, mime_type = result.image_bytes, result.mime_type
                cost += result.cost or 0.0

        used = 0
        if request.composite_motifs and motif_paths:
            composite = await asyncio.to_thread(
                compose_motifs_onto_background, image_bytes, motif_paths, storage.read_bytes
            )
            image_bytes, mime_type, used = composite.image_bytes, composite.mime_type, composite.used_motifs

        ext = "png" if "png" in mime_type else "jpg"
        image_path = image_artifact_path(scene_id, ext)
        await asyncio.to_thread(storage.write_bytes, image_path, image_bytes)

    except Exception as e:
        if is_policy_block(e):
            metrics.inc_counter("scene_images.policy_blocks")
            logger.warning(f"Scene image {scene_id} blocked by content policy: {error_message(e)}")
        else:
            logger.error(f"Scene image generation failed for {scene_id}: {error_message(e)}")
        metrics.inc_counter("scene_images.failed")
        store.update_scene(scene_id, {
            "image_status": MediaStatus.FAILED.value,
            "last_error_message": error_message(e),
        })
        raise

    store.update_scene(scene_id, {
        "image_status": MediaStatus.DONE.value,
        "image_path": image_path,
        "last_error_message": None,
    })
    metrics.inc_counter("scene_images.completed")
    logger.info(f"Scene image stored for {scene_id}: {image_path}")

    return SceneImageResponse(
        id=scene_id,
        image_status=MediaStatus.DONE,
        image_path=image_path,
        motif_display_mode=motif_mode,
        used_motifs=used,
        cost=cost,
        verification_score=verification.score if verification else None,
        verification_passed=verification.passed if verification else None,
        refinement_attempts=refinements,
    )
