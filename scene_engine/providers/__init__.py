from .base import AIProvider
from .gemini import GeminiProvider
from .kie import KieProvider

__all__ = ["AIProvider", "GeminiProvider", "KieProvider"]
