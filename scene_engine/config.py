"""
Settings resolution.

Provider choice and credentials are looked up on every call (settings table
first, then environment) so a change takes effect without a restart.
Process-level paths and timeouts come from the environment only.
"""

import os
from typing import Optional

from dotenv import load_dotenv

load_dotenv()

GEMINI_KEY_PLACEHOLDER = "your-api-key-here"

DEFAULT_IMAGE_PROVIDER = "gemini"
DEFAULT_VIDEO_PROVIDER = "veo"

PUBLIC_ROOT = os.getenv("PUBLIC_ROOT", "public")
PUBLIC_BASE_URL = os.getenv("PUBLIC_BASE_URL", "")
VIDEO_POLL_TIMEOUT_SECONDS = float(os.getenv("VIDEO_POLL_TIMEOUT_SECONDS", "300"))
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()


class Settings:
    """Per-call view over the store's settings table with env fallback."""

    def __init__(self, store=None):
        self._store = store

    def get(self, key: str, default: Optional[str] = None) -> Optional[str]:
        if self._store is not None:
            value = self._store.get_setting(key)
            if value:
                return value
        return os.getenv(key.upper()) or default

    @property
    def image_provider(self) -> str:
        return self.get("image_provider", DEFAULT_IMAGE_PROVIDER)

    @property
    def video_provider(self) -> str:
        return self.get("video_provider", DEFAULT_VIDEO_PROVIDER)

    @property
    def gemini_api_key(self) -> str:
        key = (self.get("gemini_api_key") or os.getenv("GOOGLE_API_KEY", "")).strip()
        return "" if key == GEMINI_KEY_PLACEHOLDER else key

    @property
    def kie_api_key(self) -> str:
        return (self.get("kie_api_key") or "").strip()
