"""
Prompt builders for the generation pipelines.

Kept apart from the pipeline modules so wording can change without
touching step logic.
"""

import json
from typing import Any, Dict, Optional

from studio_backend.providers.base import ScrapedPage


MAX_PAGE_CHARS = 12000


COMPETITOR_ANALYST_CONTEXT = """You are a Chief Marketing Officer analyzing a competitor's
website for a direct-to-consumer brand. Be concrete, quote the site where
you can, and never invent facts the page does not support."""


def competitor_analysis_prompt(page: ScrapedPage, brand_context: Dict[str, Any]) -> str:
    brand = json.dumps(brand_context, indent=2) if brand_context else "(not provided)"
    return f"""## OUR BRAND

{brand}

## COMPETITOR PAGE

**URL**: {page.url}
**Title**: {page.title}
**Description**: {page.description or "(none)"}

{page.text[:MAX_PAGE_CHARS]}

## TASK

Analyze this competitor. Return a JSON object with these keys:

- "competitor_identification": {{"name", "type" (direct|indirect|substitute|aspirational),
  "category", "price_positioning", "threat_level" (1-10)}}
- "brand_positioning": {{"headline", "core_promise", "emotional_angle", "value_propositions": []}}
- "target_audience_signals": {{"demographics", "identity_drivers": [], "aspirations": []}}
- "offer_structure": {{"entry_offer", "price_ranges", "bundles": [], "guarantees": []}}
- "claims": {{"bold_claims": [], "risky_claims": []}}
- "visual_identity": {{"colors", "image_style", "mood"}}
- "strengths": [], "weaknesses": [], "opportunities_for_us": []
"""


def persona_prompt(audience: Dict[str, Any], count: int) -> str:
    return f"""You are a senior brand strategist, casting director, and consumer psychologist.
Design {count} distinct persona(s) who will act as the human face of a campaign
for the audience segment below. Each persona is either a Mirror (relatable peer)
or a Guide (aspirational authority) for this audience.

## AUDIENCE SEGMENT

{json.dumps(audience, indent=2)}

## OUTPUT

Return {{"personas": [...]}} where each persona has:
"name", "role" (mirror|guide), "age_range", "gender", "location",
"lifestyle", "emotional_state", "personality_traits": [],
"communication_style", "visual_appearance", "trust_signals": [],
"never_be": []
"""


def portrait_prompt(persona: Dict[str, Any]) -> str:
    parts = [
        "Photorealistic lifestyle portrait",
        persona.get("age_range") and f"{persona['age_range']} years old",
        persona.get("gender"),
        persona.get("location") and f"in {persona['location']}",
        persona.get("visual_appearance"),
        persona.get("emotional_state") and f"mood: {persona['emotional_state']}",
        "natural light, candid, shot on 35mm",
    ]
    return ", ".join(str(p) for p in parts if p)


IMAGE_TYPE_DIRECTIONS = {
    "product_only": "studio product hero shot on a styled surface, soft shadows, brand colors",
    "product_persona": "a person from the target audience naturally using the product in their daily life",
    "ugc_style": "authentic smartphone photo as if posted by a real customer, casual framing, imperfect lighting",
}


def scene_prompt(
    product: Dict[str, Any],
    audience: Dict[str, Any],
    image_type: str,
    variation: int,
    platform: Optional[str] = None,
    funnel_stage: Optional[str] = None,
    angle: Optional[str] = None,
) -> str:
    parts = [
        IMAGE_TYPE_DIRECTIONS[image_type],
        f"product: {product.get('name', 'the product')}",
        product.get("description") and f"({str(product['description'])[:200]})",
        audience.get("name") and f"for {audience['name']}",
        angle and f"creative angle: {angle}",
        funnel_stage and f"{funnel_stage} funnel stage",
        platform and f"composed for {platform}",
        f"variation {variation + 1}",
    ]
    return ", ".join(str(p) for p in parts if p)


def aspect_ratio_for(platform: Optional[str]) -> str:
    return {
        "instagram_story": "9:16",
        "tiktok": "9:16",
        "instagram": "4:5",
        "facebook": "1:1",
        "google": "16:9",
    }.get((platform or "").lower(), "1:1")


def ad_copy_prompt(
    template: Dict[str, Any],
    audience: Dict[str, Any],
    variant: int,
    hints: Dict[str, Any],
) -> str:
    given = {k: v for k, v in hints.items() if v}
    return f"""Write ad copy variant #{variant + 1} for the template and audience below.

## TEMPLATE

{json.dumps(template, indent=2)}

## AUDIENCE

{json.dumps(audience, indent=2)}

## FIXED COPY (keep these exactly when present)

{json.dumps(given, indent=2) if given else "(none)"}

Return {{"headline", "body_copy", "hook", "cta"}}. Headline under 40 characters,
body copy under 125 characters, no claims the audience data does not support.
"""


def ad_render_prompt(copy: Dict[str, Any], template: Dict[str, Any]) -> str:
    style = template.get("style") or template.get("name") or "clean direct-response"
    return (
        f"Advertising creative in a {style} layout, leave clear space for the headline "
        f"\"{copy.get('headline', '')}\", keep the product photo as the focal point"
    )


def background_prompt(location_text: str) -> str:
    return (
        f"Vertical background plate for a creator video: {location_text}, "
        "empty scene, no people, natural light, shallow depth of field"
    )
