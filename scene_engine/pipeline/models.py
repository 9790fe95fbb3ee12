"""
Pydantic models and enums for the generation pipeline.
"""

from enum import Enum
from typing import Optional
from pydantic import BaseModel, Field


# ── Status enums ─────────────────────────────────────────────────────────────

class JobStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    GENERATING = "generating"
    COMPLETED = "completed"
    FAILED = "failed"


class MediaStatus(str, Enum):
    """Image / video status on a scene."""
    NONE = "none"
    GENERATING = "generating"
    DONE = "done"
    FAILED = "failed"


class JobKind(str, Enum):
    VIDEO = "video"


class VideoStyle(str, Enum):
    CINEMATIC = "cinematic"
    ENERGETIC = "energetic"
    MINIMAL = "minimal"
    COZY = "cozy"


class MotifDisplayMode(str, Enum):
    TEMPLATE = "template"     # flat layout with white margins
    STRETCHED = "stretched"   # canvas mounted on a frame


# ── Cost ─────────────────────────────────────────────────────────────────────

VIDEO_COST_PER_SECOND = 0.75


def estimate_video_cost(duration_seconds: int) -> float:
    """Display-only estimate, not a billing figure."""
    return duration_seconds * VIDEO_COST_PER_SECOND


# ── Records ──────────────────────────────────────────────────────────────────

class GenerationJob(BaseModel):
    id: str
    scene_id: str
    job_type: JobKind = JobKind.VIDEO
    status: JobStatus = JobStatus.PENDING
    operation_name: Optional[str] = None  # opaque backend handle
    cost_estimate: Optional[float] = None
    error_message: Optional[str] = None
    started_at: Optional[str] = None
    completed_at: Optional[str] = None


class SuccessfulPattern(BaseModel):
    id: str
    material_category: str
    prompt_snippet: str
    verification_score: int = Field(..., ge=0, le=100)
    usage_count: int = 1
    created_at: Optional[str] = None


class Material(BaseModel):
    """Reference material attached to a scene (read-only for the engine)."""
    id: str = ""
    name: str
    category: str
    description: Optional[str] = None
    material_type: Optional[str] = None
    dimensions: Optional[str] = None
    surface: Optional[str] = None
    weight: Optional[str] = None
    color: Optional[str] = None
    format_code: Optional[str] = None
    size: Optional[str] = None
    frame_option: Optional[str] = None
    image_paths: list[str] = Field(default_factory=list)


class NormalizedSlot(BaseModel):
    """Layout rectangle as fractions of the background size."""
    x: float = Field(..., ge=0, le=1)
    y: float = Field(..., ge=0, le=1)
    width: float = Field(..., ge=0, le=1)
    height: float = Field(..., ge=0, le=1)


DEFAULT_5_SLOT_LAYOUT: list[NormalizedSlot] = [
    NormalizedSlot(x=0.08, y=0.18, width=0.16, height=0.54),
    NormalizedSlot(x=0.26, y=0.18, width=0.16, height=0.54),
    NormalizedSlot(x=0.44, y=0.18, width=0.16, height=0.54),
    NormalizedSlot(x=0.62, y=0.18, width=0.16, height=0.54),
    NormalizedSlot(x=0.80, y=0.18, width=0.16, height=0.54),
]


# ── API request / response models ────────────────────────────────────────────

ALLOWED_VIDEO_DURATIONS = (4, 6, 8)
DEFAULT_VIDEO_DURATION = 8


class VideoGenerateRequest(BaseModel):
    video_style: Optional[str] = None
    video_prompt: Optional[str] = Field(None, max_length=2000)
    duration_seconds: Optional[int] = None


class VideoJobAccepted(BaseModel):
    id: str  # scene id
    job_id: str
    video_status: MediaStatus = MediaStatus.GENERATING
    job_status: JobStatus = JobStatus.PROCESSING
    cost_estimate: float
    message: str = "Video generation started"


class VideoStatusResponse(BaseModel):
    video_status: MediaStatus
    video_path: Optional[str] = None
    video_style: Optional[str] = None
    video_duration: Optional[int] = None
    job: Optional[GenerationJob] = None


class CompositeRequest(BaseModel):
    background_path: str
    motif_paths: list[str] = Field(default_factory=list)
    layout: Optional[list[NormalizedSlot]] = None
    edge_blend: bool = False
    output_path: Optional[str] = None


class CompositeResponse(BaseModel):
    image_path: Optional[str] = None
    mime_type: str = "image/png"
    used_motifs: int


class ClassifyRequest(BaseModel):
    motif_paths: list[str]


class ClassifyResponse(BaseModel):
    mode: MotifDisplayMode


class VerificationRecordRequest(BaseModel):
    category: str
    prompt: str
    score: int = Field(..., ge=0, le=100)
    scene_id: Optional[str] = None


class SceneImageRequest(BaseModel):
    prompt: str = Field(..., min_length=1)
    aspect_ratio: str = "16:9"
    image_size: str = "2K"
    safety_level: str = "default"
    composite_motifs: bool = False
    refine_existing: bool = False


class SceneImageResponse(BaseModel):
    id: str
    image_status: MediaStatus
    image_path: Optional[str] = None
    motif_display_mode: Optional[MotifDisplayMode] = None
    used_motifs: int = 0
    cost: Optional[float] = None
    verification_score: Optional[int] = None
    verification_passed: Optional[bool] = None
    refinement_attempts: int = 0


# ── Verification ─────────────────────────────────────────────────────────────

class VerificationIssue(BaseModel):
    material_id: Optional[str] = None
    material_name: Optional[str] = None
    issue_type: str = "other"  # label | orientation | material | proportion | color | other
    description: str
    severity: str = "minor"    # critical | major | minor


class VerificationResult(BaseModel):
    passed: bool
    score: int
    issues: list[VerificationIssue] = Field(default_factory=list)
    suggestions: list[str] = Field(default_factory=list)
    refinement_prompt: Optional[str] = None


class VerifySceneRequest(BaseModel):
    scene_description: Optional[str] = None
