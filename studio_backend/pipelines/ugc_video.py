"""
UGC video generation: background plate, product cutout, voiceover and
the composed clip for one `ugc_videos` record.

The background and the voiceover are required. The product cutout and
the composed video are extras; without them the record still gets the
assets a editor can assemble by hand.
"""

from typing import Any, Dict, List, Optional

from studio_backend.jobs.errors import StepFailure, StepWarning
from studio_backend.jobs.executor import Step, StepContext, run_with_timeout
from studio_backend.jobs.models import JobType, utcnow
from studio_backend.jobs.payloads import UGCVideoPayload
from studio_backend.pipelines import prompts
from studio_backend.pipelines.audience_images import primary_image_url
from studio_backend.pipelines.base import PipelineDefinition
from studio_backend.providers.base import MediaFile
from studio_backend.providers.images import download


async def start_video(ctx: StepContext) -> Dict[str, Any]:
    payload: UGCVideoPayload = ctx.payload
    records = ctx.services.require("records")

    row = await records.update("ugc_videos", ctx.owner_scope, payload.ugc_video_id, {
        "status": "processing",
        "started_at": utcnow().isoformat(),
    })
    if row is None:
        raise StepFailure(f"UGC video record {payload.ugc_video_id} not found")
    return {"record": row}


async def generate_background(ctx: StepContext) -> Dict[str, Any]:
    payload: UGCVideoPayload = ctx.payload
    images = ctx.services.require("images")

    background = await run_with_timeout(
        images.generate_image(prompts.background_prompt(payload.location_text), aspect_ratio="9:16"),
        ctx.services.external_timeout,
        "Background generation",
    )
    return {"background": background}


async def resolve_product_image(ctx: StepContext) -> Optional[str]:
    payload: UGCVideoPayload = ctx.payload
    if payload.product_image_url:
        return str(payload.product_image_url)

    records = ctx.services.records
    if records is None:
        return None
    rows = await records.select("products", ctx.owner_scope, {"id": payload.product_id}, limit=1)
    return primary_image_url(rows[0]) if rows else None


async def isolate_product(ctx: StepContext) -> Dict[str, Any]:
    image_url = await resolve_product_image(ctx)
    if not image_url:
        raise StepWarning(f"Product {ctx.payload.product_id} has no image; video has no product layer")

    if ctx.services.isolator is None:
        product_image = await run_with_timeout(
            download(image_url), ctx.services.external_timeout, "Product image download"
        )
    else:
        product_image = await run_with_timeout(
            ctx.services.isolator.isolate(image_url),
            ctx.services.external_timeout,
            "Product isolation",
        )
    return {"product_image": product_image}


async def synthesize_voiceover(ctx: StepContext) -> Dict[str, Any]:
    payload: UGCVideoPayload = ctx.payload
    speech = ctx.services.require("speech")

    voiceover = await run_with_timeout(
        speech.synthesize(payload.script_text, payload.voice_id),
        ctx.services.external_timeout,
        "Voiceover generation",
    )
    return {"voiceover": voiceover}


async def compose_video(ctx: StepContext) -> Dict[str, Any]:
    payload: UGCVideoPayload = ctx.payload
    composer = ctx.services.video
    if composer is None:
        raise StepWarning("Video composition is not configured; assets saved without a final video")

    video = await run_with_timeout(
        composer.compose(
            ctx.data["background"],
            ctx.data["voiceover"],
            product_image=ctx.data.get("product_image"),
            character_id=payload.character_id,
            lip_sync=payload.lip_sync_enabled,
        ),
        ctx.services.external_timeout,
        "Video composition",
    )
    return {"video": video}


async def upload_assets(ctx: StepContext) -> Dict[str, Any]:
    payload: UGCVideoPayload = ctx.payload
    storage = ctx.services.require("storage")
    prefix = f"{ctx.owner_scope}/ugc-videos/{payload.ugc_video_id}"

    async def put(name: str, media: MediaFile) -> str:
        return await storage.upload(
            media.data,
            ctx.services.videos_bucket,
            f"{prefix}/{name}.{media.extension}",
            media.content_type,
        )

    urls = {
        "background_url": await put("background", ctx.data["background"]),
        "voiceover_url": await put("voiceover", ctx.data["voiceover"]),
    }
    if ctx.data.get("product_image") is not None:
        urls["product_image_url"] = await put("product", ctx.data["product_image"])
    if ctx.data.get("video") is not None:
        urls["video_url"] = await put("video", ctx.data["video"])
    return {"urls": urls}


def video_duration(ctx: StepContext) -> Optional[float]:
    for key in ("video", "voiceover"):
        media = ctx.data.get(key)
        if media is not None and media.duration_seconds:
            return media.duration_seconds
    return None


async def persist_video(ctx: StepContext) -> Dict[str, Any]:
    payload: UGCVideoPayload = ctx.payload
    records = ctx.services.require("records")
    urls = ctx.data["urls"]

    values = {
        **urls,
        "duration_seconds": video_duration(ctx),
        "status": "completed" if "video_url" in urls else "assets_ready",
        "completed_at": utcnow().isoformat(),
    }
    row = await records.update("ugc_videos", ctx.owner_scope, payload.ugc_video_id, values)
    if row is None:
        raise StepFailure(f"UGC video record {payload.ugc_video_id} not found")
    return {"record": row}


class UGCVideoPipeline(PipelineDefinition):
    job_type = JobType.GENERATE_UGC_VIDEO
    payload_model = UGCVideoPayload

    def build_steps(self, payload, services) -> List[Step]:
        return [
            Step("start_video", "Starting video", start_video, fatal=True),
            Step("generate_background", "Background generation", generate_background, fatal=True),
            Step("isolate_product", "Product isolation", isolate_product, fatal=False),
            Step("synthesize_voiceover", "Voiceover generation", synthesize_voiceover, fatal=True),
            Step("compose_video", "Video composition", compose_video, fatal=False),
            Step("upload_assets", "Uploading assets", upload_assets, fatal=True),
            Step("persist_video", "Saving video", persist_video, fatal=True),
        ]

    def has_output(self, context: StepContext) -> bool:
        return bool(context.data.get("urls", {}).get("voiceover_url"))

    async def on_failed(self, context: StepContext, error: str):
        records = context.services.records
        if records is None:
            return
        await records.update("ugc_videos", context.owner_scope, context.payload.ugc_video_id, {
            "status": "failed",
            "error_message": error,
            "completed_at": utcnow().isoformat(),
        })

    def build_result(self, context: StepContext) -> Dict[str, Any]:
        return {
            "ugc_video_id": context.payload.ugc_video_id,
            **context.data["urls"],
            "duration_seconds": video_duration(context),
        }
