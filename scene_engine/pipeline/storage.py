"""
File storage over the logical public root.

Artifacts are addressed by public paths ("/renders/<scene>_video.mp4") that
map onto files under PUBLIC_ROOT and, when PUBLIC_BASE_URL is set, onto
public URLs for backends that fetch inputs themselves.
"""

import logging
from pathlib import Path
from typing import Optional

from ..errors import FileError

logger = logging.getLogger(__name__)

RENDERS_DIR = "renders"


# ── Helpers ──────────────────────────────────────────────────────────────────

def video_artifact_path(scene_id: str) -> str:
    """Deterministic public path of a scene's generated video."""
    return f"/{RENDERS_DIR}/{scene_id}_video.mp4"


def image_artifact_path(scene_id: str, ext: str = "png") -> str:
    return f"/{RENDERS_DIR}/{scene_id}_image.{ext}"


def guess_mime(path: str) -> str:
    lower = path.lower()
    if lower.endswith(".png"):
        return "image/png"
    if lower.endswith(".webp"):
        return "image/webp"
    if lower.endswith(".mp4"):
        return "video/mp4"
    return "image/jpeg"


class LocalFileStorage:
    def __init__(self, public_root: str | Path, public_base_url: str = ""):
        self.public_root = Path(public_root)
        self.public_base_url = public_base_url.rstrip("/")

    def resolve(self, public_path: str) -> Path:
        """Absolute filesystem path for a public path; refuses to leave the root."""
        rel = public_path.lstrip("/")
        root = self.public_root.resolve()
        full = (root / rel).resolve()
        if root != full and root not in full.parents:
            raise FileError("resolve", public_path, "path escapes public root")
        return full

    def public_url(self, public_path: str) -> Optional[str]:
        if not self.public_base_url:
            return None
        return f"{self.public_base_url}/{public_path.lstrip('/')}"

    def read_bytes(self, public_path: str) -> bytes:
        try:
            return self.resolve(public_path).read_bytes()
        except FileError:
            raise
        except OSError as e:
            raise FileError("read", public_path, e) from e

    def write_bytes(self, public_path: str, data: bytes) -> Path:
        target = self.resolve(public_path)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(data)
        except OSError as e:
            raise FileError("write", public_path, e) from e
        logger.info(f"Stored {len(data)} bytes at {public_path}")
        return target
