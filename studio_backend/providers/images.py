"""
Image generation and background removal on Replicate.

Replicate returns URLs to its own short-lived file hosting, so outputs
are downloaded right away and handed back as bytes.
"""

import asyncio
from typing import Any, Dict, Optional

import httpx
import replicate

from studio_backend.providers.base import MediaFile, ProviderError
from studio_backend.utils.logging import provider_logger


def _first_output(output: Any) -> str:
    if isinstance(output, list):
        output = output[0] if output else None
    if not output:
        raise ValueError("No output URL returned from Replicate")
    return str(output)


async def download(url: str, timeout: float = 60.0) -> MediaFile:
    async with httpx.AsyncClient(timeout=timeout, follow_redirects=True) as http_client:
        response = await http_client.get(url)
        response.raise_for_status()

    content_type = response.headers.get("content-type", "image/png").split(";")[0]
    return MediaFile(data=response.content, content_type=content_type, source_url=url)


class ReplicateImageGenerator:

    def __init__(self, api_token: str, model: str):
        if not api_token:
            raise ProviderError("replicate", "REPLICATE_API_TOKEN is not configured")
        self.client = replicate.Client(api_token=api_token)
        self.model = model

    async def generate_image(
        self,
        prompt: str,
        timeout: Optional[float] = None,
        aspect_ratio: str = "1:1",
        reference_image_url: Optional[str] = None,
    ) -> MediaFile:
        input_params: Dict[str, Any] = {
            "prompt": f"{prompt}, high quality, detailed, no text, no letters, no words",
            "aspect_ratio": aspect_ratio,
            "output_format": "png",
            "safety_filter_level": "block_only_high",
        }
        if reference_image_url:
            input_params["image"] = reference_image_url

        try:
            run = self.client.async_run(self.model, input=input_params)
            output = await asyncio.wait_for(run, timeout=timeout) if timeout else await run
            image = await download(_first_output(output))
        except asyncio.TimeoutError:
            raise ProviderError("replicate", f"image generation exceeded {timeout:g}s")
        except Exception as e:
            message = str(e)
            if "401" in message or "unauthorized" in message.lower():
                message = "authentication failed; check REPLICATE_API_TOKEN"
            raise ProviderError("replicate", message)

        provider_logger.debug("Image generated", model=self.model, bytes=len(image.data))
        return image


class ReplicateIsolator:
    """Removes product backgrounds so products can be composited into scenes."""

    def __init__(self, api_token: str, model: str):
        if not api_token:
            raise ProviderError("replicate", "REPLICATE_API_TOKEN is not configured")
        self.client = replicate.Client(api_token=api_token)
        self.model = model

    async def isolate(self, image_url: str) -> MediaFile:
        try:
            output = await self.client.async_run(self.model, input={"image": image_url})
            return await download(_first_output(output))
        except Exception as e:
            raise ProviderError("replicate", f"background removal failed: {e}")
