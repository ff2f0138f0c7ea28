"""
Collaborator interfaces used by pipeline steps.

Pipelines only talk to these protocols, so tests can pass in-memory
fakes and deployments can swap vendors without touching pipeline code.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol, runtime_checkable


class ProviderError(Exception):
    """A collaborator is misconfigured or its remote call failed."""

    def __init__(self, provider: str, message: str):
        super().__init__(f"{provider}: {message}")
        self.provider = provider


@dataclass
class ScrapedPage:
    url: str
    title: str
    text: str
    description: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class CompetitorCandidate:
    url: str
    title: str
    snippet: Optional[str] = None


@dataclass
class MediaFile:
    """Binary output of a generator, ready to upload."""
    data: bytes
    content_type: str
    source_url: Optional[str] = None
    duration_seconds: Optional[float] = None

    @property
    def extension(self) -> str:
        return {
            "image/png": "png",
            "image/jpeg": "jpg",
            "image/webp": "webp",
            "audio/mpeg": "mp3",
            "video/mp4": "mp4",
        }.get(self.content_type, "bin")


@runtime_checkable
class Scraper(Protocol):
    async def scrape(self, url: str) -> ScrapedPage:
        ...


@runtime_checkable
class CompetitorSearch(Protocol):
    async def find(
        self,
        website_url: str,
        brand_context: Optional[Dict[str, Any]] = None,
    ) -> List[CompetitorCandidate]:
        ...


@runtime_checkable
class TextGenerator(Protocol):
    async def generate(
        self,
        prompt: str,
        context: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> str:
        ...

    async def generate_json(
        self,
        prompt: str,
        context: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> Any:
        ...


@runtime_checkable
class ImageGenerator(Protocol):
    async def generate_image(
        self,
        prompt: str,
        timeout: Optional[float] = None,
        aspect_ratio: str = "1:1",
        reference_image_url: Optional[str] = None,
    ) -> MediaFile:
        ...


@runtime_checkable
class Isolator(Protocol):
    async def isolate(self, image_url: str) -> MediaFile:
        """Remove the background around a product image."""


@runtime_checkable
class SpeechSynthesizer(Protocol):
    async def synthesize(self, text: str, voice: str) -> MediaFile:
        ...


@runtime_checkable
class VideoComposer(Protocol):
    async def compose(
        self,
        background: MediaFile,
        voiceover: MediaFile,
        product_image: Optional[MediaFile] = None,
        character_id: Optional[str] = None,
        lip_sync: bool = True,
    ) -> MediaFile:
        """Layer background, product and presenter into one video track."""


@runtime_checkable
class ObjectStorage(Protocol):
    async def upload(
        self,
        data: bytes,
        bucket: str,
        path: str,
        content_type: str = "application/octet-stream",
    ) -> str:
        """Store an object and return a URL clients can fetch it from."""


@runtime_checkable
class RecordStore(Protocol):
    """Domain tables of the dashboard; every call is scoped to one owner."""

    async def insert(self, table: str, owner_scope: str, row: Dict[str, Any]) -> Dict[str, Any]:
        ...

    async def update(
        self,
        table: str,
        owner_scope: str,
        record_id: str,
        values: Dict[str, Any],
    ) -> Optional[Dict[str, Any]]:
        ...

    async def select(
        self,
        table: str,
        owner_scope: str,
        filters: Optional[Dict[str, Any]] = None,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        ...


@runtime_checkable
class AdLibrary(Protocol):
    async def fetch_ads(self, url: str) -> Optional[Dict[str, Any]]:
        """Active ads of the advertiser behind `url`, or None if unknown."""
