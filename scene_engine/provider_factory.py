from .config import Settings
from .errors import ValidationError
from .providers.gemini import GeminiProvider
from .providers.kie import KieProvider

# Video backends offered to clients, with the cost used for estimates.
AVAILABLE_VIDEO_PROVIDERS = [
    {"id": "veo", "name": "Google Veo 3.1", "cost_per_second": 0.75, "supports_image_to_video": True},
    {"id": "kie", "name": "Kie.ai (Veo 3.1 Fast)", "cost_per_second": 0.5, "supports_image_to_video": True},
]

AVAILABLE_IMAGE_PROVIDERS = [
    {"id": "gemini", "name": "Google Gemini 3 Pro Image"},
    {"id": "kie", "name": "Kie.ai (delegates to Gemini)"},
]


class ProviderFactory:
    @staticmethod
    def get_provider(name: str, settings: Settings):
        name = (name or "").lower()
        gemini = GeminiProvider(settings.gemini_api_key)
        if name in ("gemini", "veo", "google"):
            return gemini
        if name == "kie":
            return KieProvider(settings.kie_api_key, delegate=gemini)
        raise ValidationError(f"Unknown provider: {name}", {"provider": name})

    @staticmethod
    def get_image_provider(settings: Settings):
        return ProviderFactory.get_provider(settings.image_provider, settings)

    @staticmethod
    def get_video_provider(settings: Settings):
        return ProviderFactory.get_provider(settings.video_provider, settings)
