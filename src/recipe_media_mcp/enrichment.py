"""Optional Gemini enrichment of per-step video prompts.

Turns terse cooking instructions into camera-aware scene descriptions. Any
failure (no key, API error, malformed output) falls back to the
deterministic step prompts, so enrichment can never fail a batch.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence

from pydantic import BaseModel, Field, field_validator

from .client import GeminiClient
from .config import get_config
from .models.recipe import Step
from .prompts.enrichment import ENRICHMENT_REQUEST, ENRICHMENT_SYSTEM
from .prompts.recipe import build_step_video_prompt, fit_budget

logger = logging.getLogger(__name__)


class EnrichedStep(BaseModel):
    step_number: int
    original_text: str = ""
    visual_prompt: str
    duration: int = 8

    @field_validator("duration", mode="before")
    @classmethod
    def clamp_duration(cls, value: object) -> int:
        if not isinstance(value, (int, float)):
            return 8
        return int(min(max(value, 5), 15))


class EnrichedRecipe(BaseModel):
    steps: list[EnrichedStep] = Field(default_factory=list)


def fallback_prompts(dish_name: str, steps: Sequence[Step]) -> list[str]:
    return [
        build_step_video_prompt(dish_name, step.instruction, i + 1)
        for i, step in enumerate(steps)
    ]


def enrichment_enabled() -> bool:
    cfg = get_config()
    return cfg.enrich_prompts and bool(cfg.gemini_api_key)


async def enrich_step_prompts(dish_name: str, steps: Sequence[Step]) -> list[str]:
    """Return one video prompt per step, enriched by Gemini when possible."""
    fallback = fallback_prompts(dish_name, steps)
    if not steps:
        return fallback

    numbered = "\n".join(f"{i + 1}. {s.instruction}" for i, s in enumerate(steps))
    try:
        result = await GeminiClient.generate_structured(
            ENRICHMENT_REQUEST.format(title=dish_name, steps=numbered),
            schema=EnrichedRecipe,
            system_instruction=ENRICHMENT_SYSTEM,
        )
    except Exception as exc:
        logger.warning("Step prompt enrichment failed, using built-in prompts: %s", exc)
        return fallback

    by_number = {s.step_number: s.visual_prompt.strip() for s in result.steps}
    prompts = []
    enriched = 0
    for i in range(len(steps)):
        text = by_number.get(i + 1)
        if text:
            prompts.append(fit_budget(text))
            enriched += 1
        else:
            prompts.append(fallback[i])
    logger.info("Enriched %d of %d step prompt(s)", enriched, len(steps))
    return prompts
