"""
Application configuration management using Pydantic Settings.

This module provides a type-safe, centralized configuration system
that loads from environment variables with sensible defaults.
"""

from typing import Literal
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class AppConfig(BaseSettings):
    """
    Application configuration loaded from environment variables.

    All settings can be overridden via .env file or environment variables.
    Settings are validated at startup using Pydantic.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # ===== Job Backend =====
    JOB_BACKEND: Literal["sqlite", "supabase"] = Field(
        default="sqlite",
        description="Where job records and queue messages live (sqlite for local dev, supabase for production)"
    )

    JOB_DB_PATH: str = Field(
        default="./pipeline_jobs.db",
        description="SQLite database file for the sqlite job backend"
    )

    # ===== Supabase Configuration =====
    SUPABASE_URL: str | None = Field(
        default=None,
        description="Supabase project URL"
    )

    SUPABASE_SERVICE_KEY: str | None = Field(
        default=None,
        description="Supabase service role key (for server-side operations, bypasses RLS)"
    )

    STORAGE_BUCKET_IMAGES: str = Field(
        default="generated-images",
        description="Storage bucket for generated images"
    )

    STORAGE_BUCKET_VIDEOS: str = Field(
        default="ugc-videos",
        description="Storage bucket for UGC video assets"
    )

    # ===== Queue Settings =====
    QUEUE_VISIBILITY_TIMEOUT_SECONDS: int = Field(
        default=300,
        ge=5,
        le=3600,
        description="How long a dequeued message stays invisible to other workers"
    )

    QUEUE_MAX_RETRIES: int = Field(
        default=3,
        ge=0,
        le=20,
        description="Deliveries allowed before a message is abandoned and its job failed"
    )

    QUEUE_RETRY_DELAY_SECONDS: int = Field(
        default=60,
        ge=0,
        le=3600,
        description="Delay before a nacked message becomes visible again"
    )

    # ===== Worker Settings =====
    ENABLE_JOB_WORKER: bool = Field(
        default=False,
        description="Run an in-process job worker inside the web server"
    )

    WORKER_POLL_INTERVAL_SECONDS: int = Field(
        default=5,
        ge=1,
        le=300,
        description="Seconds between queue polls"
    )

    WORKER_CONCURRENCY: int = Field(
        default=1,
        ge=1,
        le=32,
        description="Jobs processed concurrently per worker process"
    )

    RECONCILE_INTERVAL_SECONDS: int = Field(
        default=300,
        ge=10,
        description="Seconds between reconciliation sweeps"
    )

    RECONCILE_PENDING_AFTER_SECONDS: int = Field(
        default=600,
        ge=10,
        description="Pending jobs older than this with no queue message are re-enqueued"
    )

    STALE_PROCESSING_AFTER_SECONDS: int = Field(
        default=1800,
        ge=60,
        description="Processing jobs older than this with no queue message are failed"
    )

    # ===== Pipeline Settings =====
    FANOUT_CONCURRENCY: int = Field(
        default=3,
        ge=1,
        le=20,
        description="Max concurrent external calls inside a fan-out step"
    )

    ANALYSIS_TIMEOUT_SECONDS: float = Field(
        default=120.0,
        gt=0,
        description="Time budget for one competitor analysis call"
    )

    EXTERNAL_CALL_TIMEOUT_SECONDS: float = Field(
        default=90.0,
        gt=0,
        description="Default time budget for a single external provider call"
    )

    MAX_COMPETITORS_TO_ANALYZE: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Upper bound on competitors analyzed per job"
    )

    STATUS_POLL_INTERVAL_SECONDS: int = Field(
        default=3,
        ge=1,
        le=60,
        description="Polling interval advertised to clients via Retry-After"
    )

    # ===== Provider API Keys =====
    ANTHROPIC_API_KEY: str | None = Field(
        default=None,
        description="Anthropic API key for Claude (competitor analysis, personas, ad copy)"
    )

    MODEL_NAME: str = Field(
        default="claude-sonnet-4-20250514",
        description="Claude model used for text generation"
    )

    TEMPERATURE: float = Field(
        default=0.4,
        ge=0.0,
        le=2.0,
        description="LLM temperature for text generation"
    )

    MAX_TOKENS: int = Field(
        default=4096,
        ge=100,
        le=16000,
        description="Maximum tokens per LLM response"
    )

    OPENAI_API_KEY: str | None = Field(
        default=None,
        description="OpenAI API key for voiceover TTS"
    )

    TTS_MODEL: str = Field(
        default="tts-1",
        description="OpenAI TTS model"
    )

    REPLICATE_API_TOKEN: str | None = Field(
        default=None,
        description="Replicate API token for image generation and background removal"
    )

    IMAGE_MODEL: str = Field(
        default="google/imagen-3-fast",
        description="Replicate model for image generation"
    )

    ISOLATION_MODEL: str = Field(
        default="cjwbw/rembg:fb8af171cfa1616ddcf1242c093f9c46bcada5ad4cf6f2fbe8b81b330ec5c003",
        description="Replicate model for product background removal"
    )

    GOOGLE_SEARCH_API_KEY: str | None = Field(
        default=None,
        description="Google Custom Search API key for competitor discovery"
    )

    GOOGLE_SEARCH_ENGINE_ID: str | None = Field(
        default=None,
        description="Google Custom Search engine id"
    )

    META_ACCESS_TOKEN: str | None = Field(
        default=None,
        description="Meta Graph API token for the Ad Library"
    )

    # ===== Application Settings =====
    ENVIRONMENT: str = Field(
        default="development",
        description="Environment mode: development or production"
    )

    DEBUG: bool = Field(
        default=True,
        description="Show exception details in error responses"
    )

    DEV_MODE: bool = Field(
        default=True,
        description="Bypass API key auth when no keys are configured"
    )

    @field_validator("DEBUG", "DEV_MODE", "ENABLE_JOB_WORKER", mode="before")
    @classmethod
    def parse_bool_string(cls, v):
        """Parse boolean from string values (platform env vars are strings)."""
        if isinstance(v, bool):
            return v
        if isinstance(v, str):
            return v.lower() in ("true", "1", "yes", "on")
        return False

    LOG_LEVEL: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR)"
    )

    API_HOST: str = Field(
        default="0.0.0.0",
        description="API server host"
    )

    API_PORT: int = Field(
        default=8000,
        ge=1024,
        le=65535,
        description="API server port"
    )

    # ===== Security Settings =====
    API_KEYS: str | None = Field(
        default=None,
        description="Comma-separated list of valid API keys. If empty/None and DEV_MODE=True, auth is bypassed."
    )

    ALLOWED_ORIGINS: str = Field(
        default="*",
        description="Comma-separated list of allowed CORS origins. Use '*' for all (dev only)."
    )

    RATE_LIMIT_PER_MINUTE: int = Field(
        default=120,
        ge=0,
        le=10000,
        description="Max API requests per minute per API key (0 = unlimited)"
    )

    @property
    def api_keys_list(self) -> list[str]:
        """Get list of valid API keys."""
        if not self.API_KEYS:
            return []
        return [k.strip() for k in self.API_KEYS.split(",") if k.strip()]

    @property
    def allowed_origins_list(self) -> list[str]:
        """Get list of allowed CORS origins.

        '*' is only honoured in dev mode.
        """
        if self.ALLOWED_ORIGINS == "*":
            return ["*"] if self.DEV_MODE else []
        return [o.strip() for o in self.ALLOWED_ORIGINS.split(",") if o.strip()]

    @property
    def auth_required(self) -> bool:
        """Check if authentication is required (False in dev mode with no keys)."""
        return bool(self.api_keys_list) or not self.DEV_MODE

    # ===== Computed Properties =====

    @property
    def supabase_configured(self) -> bool:
        """Check if Supabase is configured for server-side access."""
        return (
            self.SUPABASE_URL is not None
            and self.SUPABASE_SERVICE_KEY is not None
        )

    @property
    def can_search_competitors(self) -> bool:
        return (
            self.GOOGLE_SEARCH_API_KEY is not None
            and self.GOOGLE_SEARCH_ENGINE_ID is not None
        )

    @property
    def can_generate_text(self) -> bool:
        return self.ANTHROPIC_API_KEY is not None

    @property
    def can_generate_images(self) -> bool:
        return self.REPLICATE_API_TOKEN is not None

    @property
    def can_generate_audio(self) -> bool:
        return self.OPENAI_API_KEY is not None


# Global configuration instance
# Import this in other modules: from studio_backend.config import config
config = AppConfig()


if __name__ == "__main__":
    print("Configuration loaded successfully!")
    print(f"Job backend: {config.JOB_BACKEND}")
    print(f"Supabase: {'✓' if config.supabase_configured else '✗'}")
    print(f"Competitor search: {'✓' if config.can_search_competitors else '✗'}")
    print(f"Text generation: {'✓' if config.can_generate_text else '✗'}")
    print(f"Image generation: {'✓' if config.can_generate_images else '✗'}")
    print(f"Audio generation: {'✓' if config.can_generate_audio else '✗'}")
