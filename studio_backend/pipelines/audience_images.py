"""
Audience image generation: product shots composed for one audience.

One scene is planned per product, image type and variation. Isolation,
rendering and upload each run per scene (or per product) and drop
failures with a warning; the job completes if any image was uploaded.
The `audience_image_generations` record is opened as processing once the
products are loaded and ends completed or failed with the job.
"""

from typing import Any, Dict, List, Optional, Tuple

from studio_backend.jobs.errors import StepFailure
from studio_backend.jobs.executor import Step, StepContext, fan_out
from studio_backend.jobs.models import JobType, utcnow
from studio_backend.jobs.payloads import AudienceImagePayload
from studio_backend.pipelines import prompts
from studio_backend.pipelines.base import PipelineDefinition
from studio_backend.providers.base import MediaFile


def primary_image_url(product: Dict[str, Any]) -> str | None:
    images = product.get("images") or []
    if images and isinstance(images[0], dict):
        return images[0].get("url")
    if images and isinstance(images[0], str):
        return images[0]
    return product.get("image_url")


async def load_products(ctx: StepContext) -> Dict[str, Any]:
    payload: AudienceImagePayload = ctx.payload
    records = ctx.services.require("records")

    audiences = await records.select(
        "audience_segments", ctx.owner_scope, {"id": payload.audience_id}, limit=1
    )
    if not audiences:
        raise StepFailure(f"Audience segment {payload.audience_id} not found")

    products = await records.select(
        "products", ctx.owner_scope, {"id": list(payload.product_ids)}
    )
    if not products:
        raise StepFailure("None of the requested products were found")

    found = {str(p["id"]) for p in products}
    for product_id in payload.product_ids:
        if product_id not in found:
            ctx.warn(f"Product {product_id} not found")

    return {"audience": audiences[0], "products": products}


async def open_generation(ctx: StepContext) -> Dict[str, Any]:
    payload: AudienceImagePayload = ctx.payload
    records = ctx.services.require("records")

    generation = await records.insert("audience_image_generations", ctx.owner_scope, {
        "audience_id": payload.audience_id,
        "campaign_id": payload.campaign_id,
        "config": payload.model_dump(mode="json"),
        "generated_images": [],
        "status": "processing",
        "started_at": utcnow().isoformat(),
        "source_job_id": ctx.job_id,
    })
    return {"generation": generation}


async def plan_scenes(ctx: StepContext) -> Dict[str, Any]:
    payload: AudienceImagePayload = ctx.payload
    audience = ctx.data["audience"]

    plans = []
    for product in ctx.data["products"]:
        for image_type in payload.image_types:
            for variation in range(payload.variations_per_type):
                plans.append({
                    "product_id": str(product["id"]),
                    "product_name": product.get("name"),
                    "image_type": image_type,
                    "variation": variation,
                    "prompt": prompts.scene_prompt(
                        product, audience, image_type, variation,
                        platform=payload.platform,
                        funnel_stage=payload.funnel_stage,
                        angle=payload.angle,
                    ),
                })

    if not plans:
        raise StepFailure("No scenes could be planned")
    return {"plans": plans}


async def isolate_products(ctx: StepContext) -> Dict[str, Any]:
    isolator = ctx.services.isolator
    if isolator is None:
        return {"cutouts": {}}

    storage = ctx.services.require("storage")
    with_images = [p for p in ctx.data["products"] if primary_image_url(p)]

    async def isolate(product: Dict[str, Any]) -> Tuple[str, str]:
        cutout = await isolator.isolate(primary_image_url(product))
        url = await storage.upload(
            cutout.data,
            ctx.services.images_bucket,
            f"{ctx.owner_scope}/cutouts/{product['id']}.{cutout.extension}",
            cutout.content_type,
        )
        return str(product["id"]), url

    results = await fan_out(
        ctx,
        with_images,
        isolate,
        timeout=ctx.services.external_timeout,
        describe=lambda product: f"Background removal for {product.get('name', product['id'])}",
    )
    return {"cutouts": dict(results)}


def _describe_plan(plan: Dict[str, Any]) -> str:
    return f"{plan['image_type']} image {plan['variation'] + 1} of {plan['product_name'] or plan['product_id']}"


async def render_images(ctx: StepContext) -> Dict[str, Any]:
    payload: AudienceImagePayload = ctx.payload
    images = ctx.services.require("images")
    cutouts = ctx.data.get("cutouts", {})
    originals = {str(p["id"]): primary_image_url(p) for p in ctx.data["products"]}

    async def render(plan: Dict[str, Any]) -> Tuple[Dict[str, Any], MediaFile]:
        reference = cutouts.get(plan["product_id"]) or originals.get(plan["product_id"])
        image = await images.generate_image(
            plan["prompt"],
            aspect_ratio=prompts.aspect_ratio_for(payload.platform),
            reference_image_url=reference,
        )
        return plan, image

    rendered = await fan_out(
        ctx,
        ctx.data["plans"],
        render,
        timeout=ctx.services.external_timeout,
        describe=_describe_plan,
    )
    return {"rendered": rendered}


async def upload_images(ctx: StepContext) -> Dict[str, Any]:
    rendered = ctx.data.get("rendered", [])
    if not rendered:
        return {"uploaded": []}

    storage = ctx.services.require("storage")

    async def upload(item: Tuple[Dict[str, Any], MediaFile]) -> Dict[str, Any]:
        plan, image = item
        path = (
            f"{ctx.owner_scope}/audience-images/{ctx.job_id}/"
            f"{plan['product_id']}_{plan['image_type']}_{plan['variation']}.{image.extension}"
        )
        url = await storage.upload(image.data, ctx.services.images_bucket, path, image.content_type)
        return {
            "product_id": plan["product_id"],
            "image_type": plan["image_type"],
            "variation": plan["variation"],
            "prompt": plan["prompt"],
            "storage_path": path,
            "url": url,
        }

    uploaded = await fan_out(
        ctx,
        rendered,
        upload,
        timeout=ctx.services.external_timeout,
        describe=lambda item: f"Uploading {_describe_plan(item[0])}",
    )
    return {"uploaded": uploaded}


async def persist_generation(ctx: StepContext) -> Optional[Dict[str, Any]]:
    uploaded = ctx.data.get("uploaded", [])
    if not uploaded:
        return None

    records = ctx.services.require("records")
    generation_id = ctx.data["generation"]["id"]
    generation = await records.update("audience_image_generations", ctx.owner_scope, generation_id, {
        "generated_images": uploaded,
        "status": "completed",
        "completed_at": utcnow().isoformat(),
    })
    if generation is None:
        raise StepFailure(f"Image generation record {generation_id} not found")
    return {"generation": generation}


class AudienceImagePipeline(PipelineDefinition):
    job_type = JobType.GENERATE_AUDIENCE_IMAGES
    payload_model = AudienceImagePayload

    def build_steps(self, payload, services) -> List[Step]:
        return [
            Step("load_products", "Loading products", load_products, fatal=True),
            Step("open_generation", "Opening generation", open_generation, fatal=True),
            Step("plan_scenes", "Scene planning", plan_scenes, fatal=True),
            Step("isolate_products", "Product isolation", isolate_products, fatal=False),
            Step("render_images", "Image rendering", render_images, fatal=False),
            Step("upload_images", "Image upload", upload_images, fatal=False),
            Step("persist_generation", "Saving generation", persist_generation, fatal=True),
        ]

    def has_output(self, context: StepContext) -> bool:
        return bool(context.data.get("uploaded"))

    async def on_failed(self, context: StepContext, error: str):
        records = context.services.records
        if records is None:
            return
        generation = context.data.get("generation")
        if generation is None:
            # Failed outside a run; find the record this job opened
            rows = await records.select(
                "audience_image_generations", context.owner_scope, {"source_job_id": context.job_id}, limit=1
            )
            if not rows:
                return
            generation = rows[0]
        await records.update("audience_image_generations", context.owner_scope, generation["id"], {
            "status": "failed",
            "error_message": error,
            "completed_at": utcnow().isoformat(),
        })

    def build_result(self, context: StepContext) -> Dict[str, Any]:
        generation = context.data.get("generation") or {}
        uploaded = context.data.get("uploaded", [])
        return {
            "generation_id": generation.get("id"),
            "requested_count": len(context.data.get("plans", [])),
            "generated_count": len(uploaded),
            "images": uploaded,
        }
