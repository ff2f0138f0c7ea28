"""
Voiceover generation with OpenAI TTS.
"""

from openai import AsyncOpenAI

from studio_backend.providers.base import MediaFile, ProviderError
from studio_backend.utils.logging import provider_logger


# OpenAI TTS supports up to 4096 characters per request
MAX_INPUT_CHARS = 4096

OPENAI_VOICES = ("alloy", "echo", "fable", "onyx", "nova", "shimmer")

# Spoken words per second, for a duration estimate without decoding audio.
WORDS_PER_SECOND = 2.5


class OpenAISpeechSynthesizer:

    def __init__(self, api_key: str, model: str = "tts-1", default_voice: str = "alloy"):
        if not api_key:
            raise ProviderError("openai", "OPENAI_API_KEY is not configured")
        self.client = AsyncOpenAI(api_key=api_key)
        self.model = model
        self.default_voice = default_voice

    async def synthesize(self, text: str, voice: str) -> MediaFile:
        text = text.strip()
        if not text:
            raise ProviderError("openai", "nothing to synthesize")
        if len(text) > MAX_INPUT_CHARS:
            raise ProviderError("openai", f"script exceeds {MAX_INPUT_CHARS} characters")

        # Voice ids from other vendors fall back to the default voice.
        if voice not in OPENAI_VOICES:
            provider_logger.info("Unknown voice, using default", voice=voice, default=self.default_voice)
            voice = self.default_voice

        try:
            response = await self.client.audio.speech.create(
                model=self.model,
                voice=voice,
                input=text,
            )
        except Exception as e:
            raise ProviderError("openai", f"speech synthesis failed: {e}")

        return MediaFile(
            data=response.content,
            content_type="audio/mpeg",
            duration_seconds=round(len(text.split()) / WORDS_PER_SECOND, 1),
        )
