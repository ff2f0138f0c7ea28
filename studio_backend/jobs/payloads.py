"""
Per-type payload schemas.

A payload is validated against the schema for its job type when the job
is created; the stored payload is the schema's normalized dump, so
workers always read a well-formed document.
"""

from typing import Any, Dict, List, Literal, Optional, Type

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic import ValidationError as PydanticValidationError

from studio_backend.jobs.errors import ValidationError
from studio_backend.jobs.models import JobType


ImageType = Literal["product_only", "product_persona", "ugc_style"]


def _check_url(value: str) -> str:
    value = value.strip()
    if not value.startswith(("http://", "https://")):
        raise ValueError(f"not an http(s) URL: {value!r}")
    return value


class JobPayload(BaseModel):
    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)


class CompetitorAnalysisPayload(JobPayload):
    """Either explicit candidate URLs or a website to search competitors for."""
    website_url: Optional[str] = None
    candidates: List[str] = Field(default_factory=list, max_length=20)
    brand_context: Dict[str, Any] = Field(default_factory=dict)
    max_competitors: Optional[int] = Field(default=None, ge=1, le=10)

    @field_validator("website_url")
    @classmethod
    def website_is_url(cls, v):
        return _check_url(v) if v else v

    @field_validator("candidates")
    @classmethod
    def candidates_are_urls(cls, v):
        return [_check_url(url) for url in v]

    @model_validator(mode="after")
    def needs_a_source(self):
        if not self.website_url and not self.candidates:
            raise ValueError("either website_url or candidates is required")
        return self


class PersonaGenerationPayload(JobPayload):
    audience_id: str = Field(min_length=1)
    audience: Dict[str, Any] = Field(default_factory=dict)
    count: int = Field(default=1, ge=1, le=5)
    render_portraits: bool = True


class AudienceImagePayload(JobPayload):
    audience_id: str = Field(min_length=1)
    product_ids: List[str] = Field(min_length=1, max_length=10)
    campaign_id: Optional[str] = None
    image_types: List[ImageType] = Field(default_factory=lambda: ["product_only"], min_length=1)
    variations_per_type: int = Field(default=1, ge=1, le=4)
    platform: Optional[str] = None
    funnel_stage: Optional[str] = None
    angle: Optional[str] = None


class AdGenerationPayload(JobPayload):
    template_id: str = Field(min_length=1)
    audience_segment_id: str = Field(min_length=1)
    image_id: str = Field(min_length=1)
    image_url: str
    headline: Optional[str] = None
    body_copy: Optional[str] = None
    hook: Optional[str] = None
    cta: Optional[str] = None
    count: int = Field(default=1, ge=1, le=5)

    @field_validator("image_url")
    @classmethod
    def image_is_url(cls, v):
        return _check_url(v)


class UGCVideoPayload(JobPayload):
    ugc_video_id: str = Field(min_length=1)
    location_text: str = Field(min_length=1, max_length=1000)
    voice_id: str = Field(min_length=1)
    script_text: str = Field(min_length=1, max_length=4096)
    product_id: str = Field(min_length=1)
    product_image_url: Optional[str] = None
    character_id: Optional[str] = None
    lip_sync_enabled: bool = True

    @field_validator("product_image_url")
    @classmethod
    def product_image_is_url(cls, v):
        return _check_url(v) if v else v


PAYLOAD_MODELS: Dict[JobType, Type[JobPayload]] = {
    JobType.ANALYZE_COMPETITORS: CompetitorAnalysisPayload,
    JobType.GENERATE_PERSONAS: PersonaGenerationPayload,
    JobType.GENERATE_AUDIENCE_IMAGES: AudienceImagePayload,
    JobType.GENERATE_ADS: AdGenerationPayload,
    JobType.GENERATE_UGC_VIDEO: UGCVideoPayload,
}


def parse_job_type(job_type: Any) -> JobType:
    try:
        return JobType(job_type)
    except ValueError:
        raise ValidationError(f"Unknown job type: {job_type!r}")


def validate_payload(job_type: Any, payload: Any) -> JobPayload:
    """
    Validate a raw payload for a job type.

    Raises:
        ValidationError: unknown type or payload failing the schema
    """
    model = PAYLOAD_MODELS[parse_job_type(job_type)]
    if not isinstance(payload, dict):
        raise ValidationError("payload must be an object")

    try:
        return model.model_validate(payload)
    except PydanticValidationError as e:
        errors = e.errors(include_url=False, include_context=False)
        details = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'payload'}: {err['msg']}"
            for err in errors
        )
        raise ValidationError(f"Invalid payload for {model.__name__}: {details}", errors=errors)
