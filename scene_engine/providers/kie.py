"""
Kie.ai backend.

Video goes through Kie's hosted Veo (veo3_fast, image reference mode).
Kie fetches the source image itself, so the scene image must be reachable
at a public URL. Text, image and vision calls are delegated to Gemini.
"""

import logging
from pathlib import Path
from typing import Optional

import httpx

from ..errors import ProviderError
from .base import (
    ConsistencyRequest,
    ImageGenerationRequest,
    ImageGenerationResult,
    VideoGenerationRequest,
    VideoOperation,
)
from .gemini import GeminiProvider

logger = logging.getLogger(__name__)

KIE_API_BASE = "https://api.kie.ai/api/v1"
KIE_VIDEO_MODEL = "veo3_fast"

SUCCESS_STATUSES = ("SUCCESS", "success")
FAILED_STATUSES = ("GENERATE_FAILED", "CREATE_TASK_FAILED", "SENSITIVE_WORD_ERROR", "fail")


def extract_task_id(result: dict) -> Optional[str]:
    data = result.get("data") if isinstance(result.get("data"), dict) else result
    return data.get("taskId") or data.get("task_id") or data.get("id")


def _find_video_url(poll_data: dict) -> Optional[str]:
    results = poll_data.get("results") or poll_data.get("works") or []
    if results and isinstance(results, list) and isinstance(results[0], dict):
        url = results[0].get("url") or results[0].get("videoUrl") or results[0].get("video_url")
        if url:
            return url

    response = poll_data.get("response") or {}
    urls = response.get("resultUrls") or poll_data.get("resultUrls") or []
    if isinstance(urls, list) and urls:
        return urls[0]

    return poll_data.get("videoUrl") or poll_data.get("url") or poll_data.get("video_url")


def parse_record_info(task_id: str, status_data: dict) -> VideoOperation:
    """Normalize Kie's status indicators (status string and successFlag)."""
    poll_data = status_data.get("data") if isinstance(status_data, dict) else None
    if not isinstance(poll_data, dict):
        poll_data = {}

    raw_status = poll_data.get("status", "")
    success_flag = poll_data.get("successFlag")

    if raw_status in SUCCESS_STATUSES or success_flag == 1:
        url = _find_video_url(poll_data)
        if not url:
            return VideoOperation(name=task_id, done=True, error="Completed but no video URL returned", raw=status_data)
        return VideoOperation(name=task_id, done=True, video_uri=url, raw=status_data)

    if raw_status in FAILED_STATUSES or success_flag in (2, 3):
        message = poll_data.get("errorMessage") or poll_data.get("failMsg") or raw_status or "Kie.ai generation failed"
        return VideoOperation(name=task_id, done=True, error=message, raw=status_data)

    return VideoOperation(name=task_id, done=False, raw=status_data)


class KieProvider:
    name = "kie"

    def __init__(self, api_key: str, delegate: GeminiProvider,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self._api_key = api_key
        self._delegate = delegate
        self._transport = transport

    def _client(self, timeout: float = 60) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=KIE_API_BASE,
            headers={"Authorization": f"Bearer {self._api_key}"},
            timeout=timeout,
            transport=self._transport,
            follow_redirects=True,
        )

    # ── Delegated capabilities ───────────────────────────────────────────

    async def enrich_prompt(self, system_prompt: str, user_prompt: str) -> str:
        return await self._delegate.enrich_prompt(system_prompt, user_prompt)

    async def generate_image(self, req: ImageGenerationRequest) -> ImageGenerationResult:
        return await self._delegate.generate_image(req)

    async def analyze_image_consistency(self, req: ConsistencyRequest) -> str:
        return await self._delegate.analyze_image_consistency(req)

    # ── Video ────────────────────────────────────────────────────────────

    async def generate_video_from_image(self, req: VideoGenerationRequest) -> str:
        if not self._api_key:
            raise ProviderError("kie", "generateVideoFromImage", {"message": "KIE_API_KEY not set", "status": 401})
        if not req.source_image_url:
            raise ProviderError("kie", "generateVideoFromImage", {
                "message": "Kie.ai needs a public URL for the source image (set PUBLIC_BASE_URL)",
                "status": 400,
            })

        payload = {
            "prompt": req.prompt,
            "model": KIE_VIDEO_MODEL,
            "mode": "REFERENCE_2_VIDEO",
            "imageUrls": [req.source_image_url],
            "aspectRatio": req.aspect_ratio,
            "duration": req.duration_seconds,
        }
        logger.info(f"Kie.ai request: model={KIE_VIDEO_MODEL}, duration={req.duration_seconds}s")

        try:
            async with self._client() as client:
                response = await client.post("/veo/generate", json=payload)
                response.raise_for_status()
                result = response.json()
        except httpx.HTTPError as e:
            raise ProviderError("kie", "generateVideoFromImage", e) from e

        code = result.get("code")
        if code not in (None, 200):
            raise ProviderError("kie", "generateVideoFromImage", {"message": result.get("msg", "Kie.ai error"), "status": code})

        task_id = extract_task_id(result)
        if not task_id:
            raise ProviderError("kie", "generateVideoFromImage", f"No task ID in response: {str(result)[:200]}")
        logger.info(f"Kie.ai task started: {task_id}")
        return task_id

    async def poll_operation(self, handle: str) -> VideoOperation:
        try:
            async with self._client(timeout=30) as client:
                response = await client.get("/veo/record-info", params={"taskId": handle})
                response.raise_for_status()
                body = response.json()
        except httpx.HTTPError as e:
            raise ProviderError("kie", "pollOperation", e) from e
        return parse_record_info(handle, body)

    async def download_video(self, operation: VideoOperation, destination: Path) -> None:
        if not operation.video_uri:
            raise ProviderError("kie", "downloadVideo", operation.error or "No video in response")
        try:
            async with httpx.AsyncClient(timeout=120, transport=self._transport, follow_redirects=True) as client:
                response = await client.get(operation.video_uri)
                response.raise_for_status()
                content = response.content
        except httpx.HTTPError as e:
            raise ProviderError("kie", "downloadVideo", e) from e

        destination.parent.mkdir(parents=True, exist_ok=True)
        destination.write_bytes(content)
        logger.info(f"Video downloaded to {destination} ({len(content)} bytes)")
