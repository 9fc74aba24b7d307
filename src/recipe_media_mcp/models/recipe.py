"""Recipe input models — one normalization point for loosely shaped recipes.

Recipes arrive from tool arguments with steps as plain strings or dicts with
varying keys (``instruction``/``text``/``description``, ``duration`` in
minutes), and ingredients as strings or dicts. Everything downstream sees
only :class:`Step` and :class:`Ingredient`.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field, field_validator

MAX_RECIPE_STEPS = 15

_INSTRUCTION_KEYS = ("instruction", "text", "description", "step")
_NAME_KEYS = ("name", "ingredient", "item")


class Step(BaseModel):
    instruction: str
    duration_seconds: int | None = None


class Ingredient(BaseModel):
    name: str
    amount: str = ""
    unit: str = ""


def _coerce_step(raw: Any) -> Step | None:
    if isinstance(raw, Step):
        return raw
    if isinstance(raw, str):
        text = raw.strip()
        return Step(instruction=text) if text else None
    if isinstance(raw, dict):
        text = next((str(raw[k]).strip() for k in _INSTRUCTION_KEYS if raw.get(k)), "")
        if not text:
            return None
        seconds = raw.get("duration_seconds")
        if seconds is None and raw.get("duration") is not None:
            try:
                seconds = int(float(raw["duration"]) * 60)
            except (TypeError, ValueError):
                seconds = None
        return Step(instruction=text, duration_seconds=seconds)
    return None


def _coerce_ingredient(raw: Any) -> Ingredient | None:
    if isinstance(raw, Ingredient):
        return raw
    if isinstance(raw, str):
        text = raw.strip()
        return Ingredient(name=text) if text else None
    if isinstance(raw, dict):
        name = next((str(raw[k]).strip() for k in _NAME_KEYS if raw.get(k)), "")
        if not name:
            return None
        return Ingredient(
            name=name,
            amount=str(raw.get("amount") or raw.get("quantity") or ""),
            unit=str(raw.get("unit") or ""),
        )
    return None


class RecipeInput(BaseModel):
    """A recipe as the generation engine consumes it."""

    recipe_id: str = Field(min_length=1)
    dish_name: str = Field(min_length=1)
    source_image_url: str = ""
    steps: list[Step] = Field(default_factory=list)
    ingredients: list[Ingredient] = Field(default_factory=list)
    cuisine: str | None = None
    hero_moment: str | None = None

    @field_validator("steps", mode="before")
    @classmethod
    def normalize_steps(cls, value: Any) -> list[Step]:
        steps = [s for s in (_coerce_step(v) for v in (value or [])) if s is not None]
        return steps[:MAX_RECIPE_STEPS]

    @field_validator("ingredients", mode="before")
    @classmethod
    def normalize_ingredients(cls, value: Any) -> list[Ingredient]:
        return [i for i in (_coerce_ingredient(v) for v in (value or [])) if i is not None]
