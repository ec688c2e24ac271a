"""
Single infographic mode: one fact, one plan, one image.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, List

from pydantic import Field, create_model

from .artifact import (
    AUDIENCE_PROFILES,
    ArtStyle,
    AspectRatio,
    Audience,
    ImageQuality,
    InfographicItem,
    Language,
    ScientificFact,
    StrictModel,
    resolve_style,
)
from .config import Settings
from .errors import MalformedResponseError
from .pipeline import generate_structured, render_stage_image
from .prompts import CONCEPT_EXPLANATION_PROMPT, FACT_GENERATION_PROMPT, INFOGRAPHIC_PLAN_PROMPT

if TYPE_CHECKING:
    from openrouter_wrapper import OpenRouterClient

logger = logging.getLogger(__name__)

FactListOutput = create_model(
    "FactListOutput",
    facts=(List[ScientificFact], Field(..., description="Exactly 3 scientific facts")),
    __base__=StrictModel,
)


async def generate_scientific_facts(
    client: "OpenRouterClient",
    domain: str,
    *,
    language: Language = Language.EN,
    audience: Audience = Audience.YOUNG,
    settings: Settings,
) -> List[ScientificFact]:
    profile = AUDIENCE_PROFILES[audience]
    prompt = FACT_GENERATION_PROMPT.format(
        target_audience=profile.target_audience,
        domain=domain,
        tone=profile.tone,
        language=language.display_name,
    )
    output = await generate_structured(client, prompt, FactListOutput, label="fact generation", settings=settings)
    if not output.facts:
        raise MalformedResponseError(f"No facts returned for domain '{domain}'")
    return output.facts


async def generate_fact_from_concept(
    client: "OpenRouterClient",
    concept: str,
    *,
    language: Language = Language.EN,
    audience: Audience = Audience.YOUNG,
    settings: Settings,
) -> ScientificFact:
    profile = AUDIENCE_PROFILES[audience]
    prompt = CONCEPT_EXPLANATION_PROMPT.format(
        target_audience=profile.target_audience,
        concept=concept,
        tone=profile.tone,
        language=language.display_name,
    )
    return await generate_structured(client, prompt, ScientificFact, label="concept explanation", settings=settings)


async def generate_infographic_plan(
    client: "OpenRouterClient",
    fact: ScientificFact,
    *,
    language: Language = Language.EN,
    audience: Audience = Audience.YOUNG,
    style: ArtStyle = ArtStyle.DEFAULT,
    settings: Settings,
) -> str:
    prompt = INFOGRAPHIC_PLAN_PROMPT.format(
        target_audience=AUDIENCE_PROFILES[audience].target_audience,
        visual_style=resolve_style(style, audience),
        language=language.display_name,
        domain=fact.domain,
        title=fact.title,
        text=fact.text,
    )
    return await generate_structured(client, prompt, None, label="infographic plan", settings=settings)


async def generate_infographic(
    client: "OpenRouterClient",
    fact: ScientificFact,
    *,
    language: Language = Language.EN,
    audience: Audience = Audience.YOUNG,
    style: ArtStyle = ArtStyle.DEFAULT,
    quality: ImageQuality = ImageQuality.FAST,
    aspect_ratio: AspectRatio = AspectRatio.PORTRAIT,
    settings: Settings,
) -> InfographicItem:
    """Plan and render a single infographic for ``fact``.

    Uses the single-image timeout, shorter than the process-mode budget.
    """
    plan = await generate_infographic_plan(
        client, fact, language=language, audience=audience, style=style, settings=settings,
    )
    image = await render_stage_image(
        client, plan,
        quality=quality,
        aspect_ratio=aspect_ratio,
        style=resolve_style(style, audience),
        timeout=settings.image_timeout,
        settings=settings,
        label="infographic rendering",
    )
    logger.info(f"Rendered infographic '{fact.title}' ({len(image.data)} bytes)")
    return InfographicItem(
        fact=fact,
        plan=plan,
        image=image,
        aspect_ratio=aspect_ratio,
        style=style,
        audience=audience,
        image_model=settings.image_model_for(quality),
        language=language,
    )
