"""
Google backend: Gemini (text, image, vision) and Veo (video) over the
Generative Language REST API.

- Prompt enrichment / consistency analysis: generateContent (text out)
- Image generation: generateContent with IMAGE response modality
- Video: predictLongRunning → operation name → GET operation → download
"""

import base64
import logging
from pathlib import Path
from typing import Optional

import httpx

from ..errors import ProviderError
from ..retry import ENRICH_PROMPT_POLICY, IMAGE_GENERATION_POLICY, call_with_retry
from .base import (
    MAX_REFERENCE_IMAGES,
    ConsistencyRequest,
    ImageGenerationRequest,
    ImageGenerationResult,
    VideoGenerationRequest,
    VideoOperation,
)

logger = logging.getLogger(__name__)

# ── Config ───────────────────────────────────────────────────────────────────

API_BASE = "https://generativelanguage.googleapis.com/v1beta"
TEXT_MODEL = "gemini-2.5-flash"
IMAGE_MODEL = "gemini-3-pro-image-preview"
VIDEO_MODEL = "veo-3.1-generate-preview"

IMAGE_COST = 0.04
DEFAULT_NEGATIVE_PROMPT = "blurry, low quality, text artifacts, watermark, unrealistic proportions"

BLOCK_FINISH_REASONS = {"SAFETY", "OTHER", "RECITATION", "PROHIBITED_CONTENT", "BLOCKLIST", "IMAGE_SAFETY"}

RELAXED_SAFETY_SETTINGS = [
    {"category": "HARM_CATEGORY_HARASSMENT", "threshold": "BLOCK_ONLY_HIGH"},
    {"category": "HARM_CATEGORY_HATE_SPEECH", "threshold": "BLOCK_ONLY_HIGH"},
    {"category": "HARM_CATEGORY_SEXUALLY_EXPLICIT", "threshold": "BLOCK_ONLY_HIGH"},
    {"category": "HARM_CATEGORY_DANGEROUS_CONTENT", "threshold": "BLOCK_ONLY_HIGH"},
]

CONSISTENCY_PROMPT = """You are a vision correction specialist for a product photo studio.
Compare the generated product photo EXTREMELY CRITICALLY against the material specifications and scene description.

Look for:
1. LABELS: printed numbers or codes on products must be present, legible and correct.
2. ORIENTATION: products must show the correct side (e.g. the front of a canvas).
3. PROPORTIONS: small items must look small relative to large ones.
4. PHYSICAL INCONSISTENCIES: unrealistic reflections, floating objects, impossible shadows, merged textures.
5. MATERIAL FIDELITY: plastic looks like plastic, wood like wood, bristles like bristles.
6. COMPOSITION: objects cut off unnaturally.

Output ONLY a concise bullet list of errors. If the image is perfect, output "No errors found."
"""

MOTIF_VERBATIM_INSTRUCTION = (
    "\nCANVAS MOTIFS (the last {count} image(s) above): These are the ONLY artworks that may "
    "appear on the canvas. Display them EXACTLY as shown: same subject, colors, composition "
    "and details. Do NOT re-draw, re-interpret or invent different artwork.\n---"
)


def _b64(data: bytes) -> str:
    return base64.b64encode(data).decode("utf-8")


def block_reason_message(reason: Optional[str], safety_ratings=None) -> str:
    """Human-readable explanation for a blocked image generation."""
    r = (reason or "").upper()
    if r in ("SAFETY", "IMAGE_SAFETY"):
        details = f" Details: {safety_ratings}" if safety_ratings else ""
        return f"Blocked by safety filter.{details}"
    if r in ("OTHER", "PROHIBITED_CONTENT", "BLOCKLIST"):
        return (
            "Blocked: possibly protected content (trademarks or public figures in the "
            "reference images can be refused)."
        )
    if r == "RECITATION":
        return "Blocked: copyrighted material detected."
    if not r or r == "UNKNOWN":
        return (
            "No image returned (possibly a safety or copyright block). "
            "Check the reference images for protected content."
        )
    return f"Blocked: {reason}."


def build_image_parts(req: ImageGenerationRequest) -> list[dict]:
    """
    Ordered request parts: optional source image, reference images
    (motifs flagged for verbatim reproduction), then the instruction text.
    """
    parts: list[dict] = []

    if req.source_image:
        parts.append({"text": "SOURCE IMAGE (the existing image that MUST be modified/refined as requested):"})
        parts.append({"inlineData": {"mimeType": req.source_image.mime_type, "data": _b64(req.source_image.data)}})
        parts.append({"text": "\n---"})

    # motifs sit at the tail; trim material references first so every motif survives
    motif_count = min(req.motif_ref_count, len(req.reference_images), MAX_REFERENCE_IMAGES)
    split = len(req.reference_images) - motif_count
    refs = req.reference_images[:split][:MAX_REFERENCE_IMAGES - motif_count] + req.reference_images[split:]
    if refs:
        parts.append({
            "text": "REFERENCE IMAGES (material references for appearance and texture, plus "
                    "uploaded motif images; follow the prompt for how to use each):"
        })
        parts.extend(
            {"inlineData": {"mimeType": img.mime_type, "data": _b64(img.data)}} for img in refs
        )
        if motif_count > 0:
            parts.append({"text": MOTIF_VERBATIM_INSTRUCTION.format(count=motif_count)})
        else:
            parts.append({"text": "\n---"})

    parts.append({"text": "FINAL GENERATION INSTRUCTIONS AND PROMPT:"})
    parts.append({
        "text": req.prompt + "\n\nCRITICAL: Your response must be a single image. "
                             "Do not reply with text only."
    })
    return parts


def extract_image_result(result: dict) -> ImageGenerationResult:
    """Pull the image out of a generateContent response or explain why there is none."""
    candidates = result.get("candidates") or []

    if not candidates:
        feedback = result.get("promptFeedback") or {}
        block_reason = feedback.get("blockReason")
        logger.warning(f"Image generation blocked (no candidates): blockReason={block_reason}")
        raise ProviderError("gemini", "image-generation", {
            "message": block_reason_message(block_reason),
            "status": 451,
        })

    candidate = candidates[0]
    finish_reason = candidate.get("finishReason")
    if finish_reason in BLOCK_FINISH_REASONS:
        logger.warning(f"Image generation blocked: finishReason={finish_reason}")
        raise ProviderError("gemini", "image-generation", {
            "message": block_reason_message(finish_reason, candidate.get("safetyRatings")),
            "status": 451,
        })

    for part in candidate.get("content", {}).get("parts", []):
        if "inlineData" in part:
            return ImageGenerationResult(
                image_bytes=base64.b64decode(part["inlineData"]["data"]),
                mime_type=part["inlineData"].get("mimeType", "image/png"),
                provider="gemini",
                cost=IMAGE_COST,
            )

    raise ProviderError("gemini", "image-extraction", {
        "message": "Response contains no image (text only)",
        "status": 422,
    })


def _response_text(result: dict) -> str:
    candidates = result.get("candidates") or []
    if not candidates:
        return ""
    parts = candidates[0].get("content", {}).get("parts", [])
    return "".join(p.get("text", "") for p in parts).strip()


def parse_operation(data: dict) -> VideoOperation:
    """Normalize a Veo long-running operation payload."""
    name = data.get("name", "")
    if not data.get("done"):
        return VideoOperation(name=name, done=False, raw=data)

    if data.get("error"):
        return VideoOperation(
            name=name, done=True, error=data["error"].get("message", "Unknown Veo error"), raw=data
        )

    response = data.get("response") or {}
    samples = (
        response.get("generateVideoResponse", {}).get("generatedSamples")
        or response.get("generatedVideos")
        or []
    )
    video = samples[0].get("video", {}) if samples else {}
    uri = video.get("uri") or video.get("name")
    if not uri:
        return VideoOperation(name=name, done=True, error="No video in response", raw=data)
    return VideoOperation(name=name, done=True, video_uri=uri, raw=data)


class GeminiProvider:
    name = "gemini"

    def __init__(self, api_key: str, timeout: float = 120, transport: Optional[httpx.AsyncBaseTransport] = None):
        self._api_key = api_key
        self._timeout = timeout
        self._transport = transport

    def _client(self, timeout: Optional[float] = None) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=API_BASE,
            headers={"x-goog-api-key": self._api_key},
            timeout=timeout or self._timeout,
            transport=self._transport,
            follow_redirects=True,
        )

    def _require_key(self, operation: str):
        if not self._api_key:
            raise ProviderError("gemini", operation, {"message": "GEMINI_API_KEY not set", "status": 401})

    async def _generate_content(self, model: str, parts: list, config: Optional[dict] = None,
                                safety_settings: Optional[list] = None) -> dict:
        body: dict = {"contents": [{"role": "user", "parts": parts}]}
        if config:
            body["generationConfig"] = config
        if safety_settings:
            body["safetySettings"] = safety_settings

        async with self._client() as client:
            response = await client.post(f"/models/{model}:generateContent", json=body)
            response.raise_for_status()
            return response.json()

    # ── Prompt enrichment ────────────────────────────────────────────────

    async def enrich_prompt(self, system_prompt: str, user_prompt: str) -> str:
        self._require_key("enrichPrompt")
        logger.info("Enriching prompt via Gemini")
        text = await call_with_retry(
            ENRICH_PROMPT_POLICY, "gemini", "enrich_prompt",
            self._enrich_once, system_prompt, user_prompt,
        )
        logger.info(f"Enriched prompt generated ({len(text)} chars)")
        return text

    async def _enrich_once(self, system_prompt: str, user_prompt: str) -> str:
        result = await self._generate_content(TEXT_MODEL, [{"text": f"{system_prompt}\n\n{user_prompt}"}])
        return _response_text(result)

    # ── Image generation ─────────────────────────────────────────────────

    async def generate_image(self, req: ImageGenerationRequest) -> ImageGenerationResult:
        self._require_key("image-generation")
        parts = build_image_parts(req)
        logger.info(
            f"Generating image: {len(parts)} parts, refs={min(len(req.reference_images), MAX_REFERENCE_IMAGES)}, "
            f"motifs={req.motif_ref_count}, source={req.source_image is not None}, aspect={req.aspect_ratio}"
        )
        config = {
            "responseModalities": ["IMAGE", "TEXT"],
            "imageConfig": {"aspectRatio": req.aspect_ratio, "imageSize": req.image_size},
        }
        safety = RELAXED_SAFETY_SETTINGS if req.safety_level == "relaxed" else None

        return await call_with_retry(
            IMAGE_GENERATION_POLICY, "gemini", "generate_image",
            self._generate_image_once, parts, config, safety,
        )

    async def _generate_image_once(self, parts: list, config: dict, safety: Optional[list]) -> ImageGenerationResult:
        result = await self._generate_content(IMAGE_MODEL, parts, config, safety)
        return extract_image_result(result)

    # ── Video ────────────────────────────────────────────────────────────

    async def generate_video_from_image(self, req: VideoGenerationRequest) -> str:
        self._require_key("generateVideoFromImage")
        if req.source_image is None:
            raise ProviderError("veo", "generateVideoFromImage", {
                "message": "A source image is required for image-to-video generation",
                "status": 400,
            })

        parameters = {
            "aspectRatio": req.aspect_ratio,
            "durationSeconds": req.duration_seconds,
            "negativePrompt": req.negative_prompt or DEFAULT_NEGATIVE_PROMPT,
            "personGeneration": "allow_adult",
        }
        if req.duration_seconds == 8:
            parameters["resolution"] = "1080p"

        body = {
            "instances": [{
                "prompt": req.prompt,
                "image": {"bytesBase64Encoded": _b64(req.source_image.data), "mimeType": req.source_image.mime_type},
            }],
            "parameters": parameters,
        }

        logger.info(f"Submitting Veo job: {req.duration_seconds}s, style={req.style}")
        try:
            async with self._client(timeout=60) as client:
                response = await client.post(f"/models/{VIDEO_MODEL}:predictLongRunning", json=body)
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPError as e:
            raise ProviderError("veo", "generateVideoFromImage", e) from e

        op_name = data.get("name")
        if not op_name:
            raise ProviderError("veo", "generateVideoFromImage", f"No operation name in response: {str(data)[:200]}")
        logger.info(f"Veo job started: {op_name}")
        return op_name

    async def poll_operation(self, handle: str) -> VideoOperation:
        try:
            async with self._client(timeout=30) as client:
                response = await client.get(f"/{handle}")
                response.raise_for_status()
                body = response.json()
        except httpx.HTTPError as e:
            raise ProviderError("veo", "pollOperation", e) from e
        return parse_operation(body)

    async def download_video(self, operation: VideoOperation, destination: Path) -> None:
        if not operation.video_uri:
            raise ProviderError("veo", "downloadVideo", operation.error or "No video in response")
        try:
            async with self._client(timeout=120) as client:
                response = await client.get(operation.video_uri, params={"alt": "media"})
                response.raise_for_status()
                content = response.content
        except httpx.HTTPError as e:
            raise ProviderError("veo", "downloadVideo", e) from e

        destination.parent.mkdir(parents=True, exist_ok=True)
        destination.write_bytes(content)
        logger.info(f"Video downloaded to {destination} ({len(content)} bytes)")

    # ── Vision analysis ──────────────────────────────────────────────────

    async def analyze_image_consistency(self, req: ConsistencyRequest) -> str:
        self._require_key("analyzeImageConsistency")
        instructions = req.instructions or CONSISTENCY_PROMPT
        user_prompt = (
            f"Material Context:\n{req.material_context}\n\n"
            f"Scene Description:\n{req.scene_description or 'No description provided.'}\n\n"
            "Analyze the attached image for consistency errors with these materials."
        )
        parts = [
            {"text": f"{instructions}\n\n{user_prompt}"},
            {"inlineData": {"mimeType": req.image.mime_type, "data": _b64(req.image.data)}},
        ]
        try:
            result = await self._generate_content(TEXT_MODEL, parts)
        except httpx.HTTPError as e:
            raise ProviderError("gemini", "analyzeImageConsistency", e) from e

        text = _response_text(result) or "No errors found."
        logger.info(f"Vision analysis completed ({len(text)} chars)")
        return text
