"""
Provider capability set shared by every generative backend.

Backends are plain classes that satisfy the AIProvider protocol; the
factory picks one per call from settings. Nothing here holds state
between calls.
"""

from pathlib import Path
from typing import Any, Optional, Protocol

from pydantic import BaseModel, Field

MAX_REFERENCE_IMAGES = 14


class ImageInput(BaseModel):
    data: bytes
    mime_type: str = "image/png"


class ImageGenerationRequest(BaseModel):
    prompt: str
    reference_images: list[ImageInput] = Field(default_factory=list)
    # The last N reference images are canvas motifs to reproduce verbatim.
    motif_ref_count: int = 0
    aspect_ratio: str = "16:9"
    image_size: str = "2K"
    source_image: Optional[ImageInput] = None
    safety_level: str = "default"  # "default" | "relaxed"


class ImageGenerationResult(BaseModel):
    image_bytes: bytes
    mime_type: str = "image/png"
    provider: str
    cost: Optional[float] = None


class VideoGenerationRequest(BaseModel):
    prompt: str
    source_image: Optional[ImageInput] = None
    source_image_url: Optional[str] = None
    aspect_ratio: str = "16:9"
    duration_seconds: int = 8
    style: Optional[str] = None
    negative_prompt: Optional[str] = None


class VideoOperation(BaseModel):
    """Backend view of a long-running video job. `name` is the opaque handle."""
    name: str
    done: bool = False
    video_uri: Optional[str] = None
    error: Optional[str] = None
    raw: dict[str, Any] = Field(default_factory=dict)


class ConsistencyRequest(BaseModel):
    image: ImageInput
    material_context: str
    scene_description: Optional[str] = None
    # Replaces the default analysis instructions when set.
    instructions: Optional[str] = None


class AIProvider(Protocol):
    name: str

    async def enrich_prompt(self, system_prompt: str, user_prompt: str) -> str: ...

    async def generate_image(self, req: ImageGenerationRequest) -> ImageGenerationResult: ...

    async def generate_video_from_image(self, req: VideoGenerationRequest) -> str: ...

    async def poll_operation(self, handle: str) -> VideoOperation: ...

    async def download_video(self, operation: VideoOperation, destination: Path) -> None: ...

    async def analyze_image_consistency(self, req: ConsistencyRequest) -> str: ...
