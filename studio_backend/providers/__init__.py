"""
Collaborators available to pipeline steps.

build_services() wires every provider whose credentials are configured;
missing ones stay None and the pipelines decide whether that is fatal,
a warning, or a silent skip.
"""

from dataclasses import dataclass
from typing import Optional

from studio_backend.providers.base import (
    AdLibrary,
    CompetitorCandidate,
    CompetitorSearch,
    ImageGenerator,
    Isolator,
    MediaFile,
    ObjectStorage,
    ProviderError,
    RecordStore,
    ScrapedPage,
    Scraper,
    SpeechSynthesizer,
    TextGenerator,
    VideoComposer,
)
from studio_backend.utils.logging import provider_logger


@dataclass
class Services:
    scraper: Optional[Scraper] = None
    search: Optional[CompetitorSearch] = None
    text: Optional[TextGenerator] = None
    images: Optional[ImageGenerator] = None
    isolator: Optional[Isolator] = None
    speech: Optional[SpeechSynthesizer] = None
    video: Optional[VideoComposer] = None
    storage: Optional[ObjectStorage] = None
    records: Optional[RecordStore] = None
    ad_library: Optional[AdLibrary] = None
    images_bucket: str = "generated-images"
    videos_bucket: str = "ugc-videos"
    external_timeout: float = 90.0
    analysis_timeout: float = 120.0
    max_competitors: int = 3

    def require(self, name: str):
        """
        Return a configured collaborator.

        Raises:
            ProviderError: the collaborator is not configured
        """
        service = getattr(self, name)
        if service is None:
            raise ProviderError(name, "not configured")
        return service

    def configured(self) -> dict:
        return {
            name: getattr(self, name) is not None
            for name in (
                "scraper", "search", "text", "images", "isolator",
                "speech", "video", "storage", "records", "ad_library",
            )
        }


def build_services(config) -> Services:
    """Create the provider adapters the current configuration allows."""
    from studio_backend.providers.ad_library import MetaAdLibrary
    from studio_backend.providers.images import ReplicateImageGenerator, ReplicateIsolator
    from studio_backend.providers.llm import AnthropicTextGenerator
    from studio_backend.providers.records import SupabaseRecordStore
    from studio_backend.providers.scraper import HttpScraper
    from studio_backend.providers.search import GoogleCompetitorSearch
    from studio_backend.providers.speech import OpenAISpeechSynthesizer
    from studio_backend.providers.storage import SupabaseObjectStorage

    services = Services(
        scraper=HttpScraper(timeout=config.EXTERNAL_CALL_TIMEOUT_SECONDS),
        images_bucket=config.STORAGE_BUCKET_IMAGES,
        videos_bucket=config.STORAGE_BUCKET_VIDEOS,
        external_timeout=config.EXTERNAL_CALL_TIMEOUT_SECONDS,
        analysis_timeout=config.ANALYSIS_TIMEOUT_SECONDS,
        max_competitors=config.MAX_COMPETITORS_TO_ANALYZE,
    )

    if config.can_search_competitors:
        services.search = GoogleCompetitorSearch(
            config.GOOGLE_SEARCH_API_KEY, config.GOOGLE_SEARCH_ENGINE_ID
        )
    if config.can_generate_text:
        services.text = AnthropicTextGenerator(
            api_key=config.ANTHROPIC_API_KEY,
            model_name=config.MODEL_NAME,
            temperature=config.TEMPERATURE,
            max_tokens=config.MAX_TOKENS,
            timeout=config.ANALYSIS_TIMEOUT_SECONDS,
        )
    if config.can_generate_images:
        services.images = ReplicateImageGenerator(config.REPLICATE_API_TOKEN, config.IMAGE_MODEL)
        services.isolator = ReplicateIsolator(config.REPLICATE_API_TOKEN, config.ISOLATION_MODEL)
    if config.can_generate_audio:
        services.speech = OpenAISpeechSynthesizer(config.OPENAI_API_KEY, model=config.TTS_MODEL)
    if config.supabase_configured:
        services.storage = SupabaseObjectStorage()
        services.records = SupabaseRecordStore()
    if config.META_ACCESS_TOKEN:
        services.ad_library = MetaAdLibrary(config.META_ACCESS_TOKEN)

    provider_logger.info("Providers configured", **services.configured())
    return services


__all__ = [
    "Services",
    "build_services",
    "ProviderError",
    "ScrapedPage",
    "CompetitorCandidate",
    "MediaFile",
    "Scraper",
    "CompetitorSearch",
    "TextGenerator",
    "ImageGenerator",
    "Isolator",
    "SpeechSynthesizer",
    "VideoComposer",
    "ObjectStorage",
    "RecordStore",
    "AdLibrary",
]
