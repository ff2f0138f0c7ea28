"""
Persona generation for an audience segment.
"""

from typing import Any, Dict, List, Optional, Tuple

from studio_backend.jobs.errors import StepFailure
from studio_backend.jobs.executor import Step, StepContext, fan_out
from studio_backend.jobs.models import JobType
from studio_backend.jobs.payloads import PersonaGenerationPayload
from studio_backend.pipelines import prompts
from studio_backend.pipelines.base import PipelineDefinition


async def load_audience(ctx: StepContext) -> Dict[str, Any]:
    payload: PersonaGenerationPayload = ctx.payload
    if payload.audience:
        return {"audience": {"id": payload.audience_id, **payload.audience}}

    records = ctx.services.require("records")
    rows = await records.select(
        "audience_segments", ctx.owner_scope, {"id": payload.audience_id}, limit=1
    )
    if not rows:
        raise StepFailure(f"Audience segment {payload.audience_id} not found")
    return {"audience": rows[0]}


def normalize_personas(raw: Any) -> List[Dict[str, Any]]:
    if isinstance(raw, dict):
        raw = raw.get("personas", [raw] if "name" in raw else [])
    if not isinstance(raw, list):
        return []
    return [p for p in raw if isinstance(p, dict) and p.get("name")]


async def draft_personas(ctx: StepContext) -> Dict[str, Any]:
    payload: PersonaGenerationPayload = ctx.payload
    text = ctx.services.require("text")

    raw = await text.generate_json(
        prompts.persona_prompt(ctx.data["audience"], payload.count),
        timeout=ctx.services.analysis_timeout,
    )
    personas = normalize_personas(raw)[:payload.count]
    if not personas:
        raise StepFailure("The text model returned no usable personas")
    return {"personas": personas}


async def render_portraits(ctx: StepContext) -> Optional[Dict[str, Any]]:
    payload: PersonaGenerationPayload = ctx.payload
    personas = ctx.data.get("personas", [])
    if not payload.render_portraits or not personas:
        return None

    images = ctx.services.require("images")
    storage = ctx.services.require("storage")

    async def render(indexed) -> Tuple[int, str]:
        index, persona = indexed
        image = await images.generate_image(
            prompts.portrait_prompt(persona), aspect_ratio="4:5"
        )
        url = await storage.upload(
            image.data,
            ctx.services.images_bucket,
            f"{ctx.owner_scope}/personas/{ctx.job_id}/{index}.{image.extension}",
            image.content_type,
        )
        return index, url

    rendered = await fan_out(
        ctx,
        list(enumerate(personas)),
        render,
        timeout=ctx.services.external_timeout,
        describe=lambda indexed: f"Portrait of {indexed[1]['name']}",
    )
    urls = dict(rendered)
    return {"personas": [
        {**persona, "portrait_url": urls[index]} if index in urls else persona
        for index, persona in enumerate(personas)
    ]}


async def persist_personas(ctx: StepContext) -> Dict[str, Any]:
    payload: PersonaGenerationPayload = ctx.payload
    records = ctx.services.require("records")

    saved = []
    for persona in ctx.data.get("personas", []):
        row = await records.insert("personas", ctx.owner_scope, {
            "audience_id": payload.audience_id,
            "name": persona["name"],
            "profile_json": persona,
            "portrait_url": persona.get("portrait_url"),
            "source_job_id": ctx.job_id,
        })
        saved.append(row)
    return {"saved": saved}


class PersonaGenerationPipeline(PipelineDefinition):
    job_type = JobType.GENERATE_PERSONAS
    payload_model = PersonaGenerationPayload

    def build_steps(self, payload, services) -> List[Step]:
        return [
            Step("load_audience", "Loading audience", load_audience, fatal=True),
            Step("draft_personas", "Persona drafting", draft_personas, fatal=True),
            Step("render_portraits", "Portrait rendering", render_portraits, fatal=False),
            Step("persist_personas", "Saving personas", persist_personas, fatal=True),
        ]

    def has_output(self, context: StepContext) -> bool:
        return bool(context.data.get("saved"))

    def build_result(self, context: StepContext) -> Dict[str, Any]:
        saved = context.data.get("saved", [])
        return {
            "audience_id": context.payload.audience_id,
            "persona_count": len(saved),
            "personas": saved,
        }
