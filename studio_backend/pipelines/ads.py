"""
Ad generation from a template, an audience segment and a chosen image.
"""

from typing import Any, Dict, List, Optional

from studio_backend.jobs.errors import StepFailure
from studio_backend.jobs.executor import Step, StepContext, fan_out
from studio_backend.jobs.models import JobType
from studio_backend.jobs.payloads import AdGenerationPayload
from studio_backend.pipelines import prompts
from studio_backend.pipelines.base import PipelineDefinition


COPY_FIELDS = ("headline", "body_copy", "hook", "cta")


def provided_copy(payload: AdGenerationPayload) -> Dict[str, Optional[str]]:
    return {name: getattr(payload, name) for name in COPY_FIELDS}


async def load_creative_inputs(ctx: StepContext) -> Dict[str, Any]:
    payload: AdGenerationPayload = ctx.payload
    records = ctx.services.require("records")

    templates = await records.select(
        "ad_templates", ctx.owner_scope, {"id": payload.template_id}, limit=1
    )
    if not templates:
        raise StepFailure(f"Ad template {payload.template_id} not found")

    audiences = await records.select(
        "audience_segments", ctx.owner_scope, {"id": payload.audience_segment_id}, limit=1
    )
    if not audiences:
        raise StepFailure(f"Audience segment not found: {payload.audience_segment_id}")

    return {"template": templates[0], "audience": audiences[0]}


async def write_ad_copy(ctx: StepContext) -> Dict[str, Any]:
    payload: AdGenerationPayload = ctx.payload
    fixed = provided_copy(payload)
    text = ctx.services.text

    async def write(variant: int) -> Dict[str, Any]:
        if text is None:
            if not fixed["headline"]:
                raise StepFailure(f"Ad {variant + 1}: no headline given and no text generator configured")
            return {"variant": variant, **fixed}

        try:
            drafted = await text.generate_json(
                prompts.ad_copy_prompt(ctx.data["template"], ctx.data["audience"], variant, fixed),
            )
        except Exception as e:
            if not fixed["headline"]:
                raise
            ctx.warn(f"Ad {variant + 1}: copy generation failed, using the provided copy ({e})")
            return {"variant": variant, **fixed}

        if not isinstance(drafted, dict):
            raise ValueError("copy is not a JSON object")
        copy = {name: fixed[name] or drafted.get(name) for name in COPY_FIELDS}
        if not copy["headline"]:
            raise ValueError("copy has no headline")
        return {"variant": variant, **copy}

    copies = await fan_out(
        ctx,
        range(payload.count),
        write,
        timeout=ctx.services.external_timeout,
        describe=lambda variant: f"Copy for ad {variant + 1}",
    )
    return {"copies": copies}


async def render_ads(ctx: StepContext) -> Dict[str, Any]:
    payload: AdGenerationPayload = ctx.payload
    copies = ctx.data.get("copies", [])
    images = ctx.services.images

    if images is None:
        ctx.warn("Image generator not configured; ads use the source image")
        return {"ads": [{**copy, "media": None} for copy in copies]}

    async def render(copy: Dict[str, Any]) -> Dict[str, Any]:
        media = await images.generate_image(
            prompts.ad_render_prompt(copy, ctx.data["template"]),
            reference_image_url=payload.image_url,
        )
        return {**copy, "media": media}

    ads = await fan_out(
        ctx,
        copies,
        render,
        timeout=ctx.services.external_timeout,
        describe=lambda copy: f"Rendering ad {copy['variant'] + 1}",
    )
    return {"ads": ads}


async def upload_ads(ctx: StepContext) -> Dict[str, Any]:
    ads = ctx.data.get("ads", [])
    to_upload = [ad for ad in ads if ad.get("media") is not None]
    if not to_upload:
        return {"ads": [{**ad, "rendered_image_url": None} for ad in ads]}

    storage = ctx.services.require("storage")

    async def upload(ad: Dict[str, Any]) -> Dict[str, Any]:
        media = ad["media"]
        url = await storage.upload(
            media.data,
            ctx.services.images_bucket,
            f"{ctx.owner_scope}/ads/{ctx.job_id}/ad_{ad['variant']}.{media.extension}",
            media.content_type,
        )
        return {**ad, "rendered_image_url": url}

    uploaded = await fan_out(
        ctx,
        to_upload,
        upload,
        timeout=ctx.services.external_timeout,
        describe=lambda ad: f"Uploading ad {ad['variant'] + 1}",
    )
    return {"ads": uploaded}


async def persist_ads(ctx: StepContext) -> Dict[str, Any]:
    payload: AdGenerationPayload = ctx.payload
    ads = ctx.data.get("ads", [])
    if not ads:
        return {"saved": []}

    records = ctx.services.require("records")
    saved = []
    for ad in ads:
        row = await records.insert("generated_ads", ctx.owner_scope, {
            "template_id": payload.template_id,
            "audience_segment_id": payload.audience_segment_id,
            "image_id": payload.image_id,
            "assets_json": {
                **{name: ad.get(name) for name in COPY_FIELDS},
                "image_url": payload.image_url,
                "rendered_image_url": ad.get("rendered_image_url"),
            },
            "metadata_json": {"variant": ad["variant"], "source_job_id": ctx.job_id},
            "status": "draft",
        })
        saved.append(row)
    return {"saved": saved}


class AdGenerationPipeline(PipelineDefinition):
    job_type = JobType.GENERATE_ADS
    payload_model = AdGenerationPayload

    def build_steps(self, payload, services) -> List[Step]:
        return [
            Step("load_creative_inputs", "Loading template and audience", load_creative_inputs, fatal=True),
            Step("write_ad_copy", "Ad copywriting", write_ad_copy, fatal=False),
            Step("render_ads", "Ad rendering", render_ads, fatal=False),
            Step("upload_ads", "Ad upload", upload_ads, fatal=False),
            Step("persist_ads", "Saving ads", persist_ads, fatal=True),
        ]

    def has_output(self, context: StepContext) -> bool:
        return bool(context.data.get("saved"))

    def build_result(self, context: StepContext) -> Dict[str, Any]:
        saved = context.data.get("saved", [])
        return {
            "requested_count": context.payload.count,
            "generated_count": len(saved),
            "ads": saved,
        }
