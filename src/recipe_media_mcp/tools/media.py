"""Recipe media tools — 6 tools on a FastMCP sub-server."""

from __future__ import annotations

import logging
from typing import Annotated

from fastmcp import FastMCP
from mcp.types import ToolAnnotations
from pydantic import Field

from ..errors import make_tool_error
from ..models.credits import CreditCheck
from ..models.recipe import RecipeInput
from ..pipeline import get_pipeline
from ..tracing import trace
from ..types import (
    DishName,
    IngredientsParam,
    RecipeId,
    SourceImageUrl,
    StepsParam,
    TierParam,
    UserId,
    coerce_json_param,
)

logger = logging.getLogger(__name__)
media_server = FastMCP("media")

_GENERATE = ToolAnnotations(
    readOnlyHint=False,
    destructiveHint=False,
    idempotentHint=True,
    openWorldHint=True,
)


def _recipe(
    recipe_id: str,
    dish_name: str,
    steps: list | str | None,
    source_image_url: str = "",
    ingredients: list | str | None = None,
    cuisine: str | None = None,
    hero_moment: str | None = None,
) -> RecipeInput:
    """Normalize tool arguments into the canonical recipe shape."""
    steps = coerce_json_param(steps, list)
    ingredients = coerce_json_param(ingredients, list)
    if isinstance(steps, str):
        steps = [line for line in steps.splitlines() if line.strip()]
    if isinstance(ingredients, str):
        ingredients = [part for part in ingredients.split(",") if part.strip()]
    return RecipeInput(
        recipe_id=recipe_id,
        dish_name=dish_name,
        source_image_url=source_image_url,
        steps=steps or [],
        ingredients=ingredients or [],
        cuisine=cuisine,
        hero_moment=hero_moment,
    )


def _render(result) -> dict:
    payload = result.model_dump(mode="json")
    if isinstance(result, CreditCheck):
        payload["denied"] = not result.allowed
    return payload


@media_server.tool(annotations=_GENERATE)
@trace(name="media_generate_step_photos", span_type="TOOL")
async def media_generate_step_photos(
    user_id: UserId,
    recipe_id: RecipeId,
    dish_name: DishName,
    steps: StepsParam,
    tier: TierParam = "credits",
) -> dict:
    """Generate one food photo per cooking step (at most 15 steps).

    Steps run one at a time; a failing step is reported and the rest continue.
    Already generated photos are returned from the cache without charge.

    Args:
        user_id: User charged one photo credit on first delivery.
        recipe_id: Stable recipe identifier used as cache key.
        dish_name: Dish title.
        steps: Ordered cooking steps.
        tier: "credits" for consumable balances, "unlimited" for subscribers.

    Returns:
        Dict with status, summary ("generated 7 of 10 step photos"), per-step
        items, from_cache and charged, or the credit denial.
    """
    try:
        recipe = _recipe(recipe_id, dish_name, steps)
        result = await get_pipeline().generate_step_photos(user_id, recipe, tier)
        return _render(result)
    except Exception as exc:
        return make_tool_error(exc)


@media_server.tool(annotations=_GENERATE)
@trace(name="media_generate_step_videos", span_type="TOOL")
async def media_generate_step_videos(
    user_id: UserId,
    recipe_id: RecipeId,
    dish_name: DishName,
    source_image_url: SourceImageUrl,
    steps: StepsParam,
    tier: TierParam = "credits",
) -> dict:
    """Generate a 5-second vertical clip per cooking step from the recipe image.

    Each step is retried up to twice with 5s/10s backoff before it is marked
    failed. Call again to retry only the failed steps.

    Args:
        user_id: User charged one video credit on first delivery.
        recipe_id: Stable recipe identifier used as cache key.
        dish_name: Dish title.
        source_image_url: Recipe hero image used for every clip.
        steps: Ordered cooking steps.
        tier: "credits" or "unlimited" (fair use, 50 videos per month).

    Returns:
        Dict with status, summary, per-step items, from_cache and charged,
        or the credit denial.
    """
    try:
        recipe = _recipe(recipe_id, dish_name, steps, source_image_url)
        result = await get_pipeline().generate_step_videos(user_id, recipe, tier)
        return _render(result)
    except Exception as exc:
        return make_tool_error(exc)


@media_server.tool(annotations=_GENERATE)
@trace(name="media_generate_short_video", span_type="TOOL")
async def media_generate_short_video(
    user_id: UserId,
    recipe_id: RecipeId,
    dish_name: DishName,
    source_image_url: SourceImageUrl,
    steps: StepsParam,
    ingredients: IngredientsParam = None,
    cuisine: Annotated[str | None, Field(description="Cuisine hint, e.g. 'Italian'")] = None,
    hero_moment: Annotated[str | None, Field(
        description="Closing shot description, e.g. 'cheese pull as the slice is lifted'",
    )] = None,
    tier: TierParam = "credits",
) -> dict:
    """Generate a 10-second 9:16 short-form video for the whole recipe.

    The output is quality-checked; an undersized result is regenerated once
    with an overhead-angle prompt.

    Returns:
        Dict with success, video_url, prompt, regenerated, passed_quality_gate,
        charged, or the credit denial.
    """
    try:
        recipe = _recipe(
            recipe_id, dish_name, steps, source_image_url, ingredients, cuisine, hero_moment,
        )
        result = await get_pipeline().generate_short_video(user_id, recipe, tier)
        return _render(result)
    except Exception as exc:
        return make_tool_error(exc)


@media_server.tool(annotations=_GENERATE)
@trace(name="media_regenerate_short_video", span_type="TOOL")
async def media_regenerate_short_video(
    user_id: UserId,
    recipe_id: RecipeId,
    dish_name: DishName,
    source_image_url: SourceImageUrl,
    steps: StepsParam,
    ingredients: IngredientsParam = None,
) -> dict:
    """Replace an existing short video using the alternate prompt, without charge."""
    try:
        recipe = _recipe(recipe_id, dish_name, steps, source_image_url, ingredients)
        result = await get_pipeline().regenerate_short_video(user_id, recipe)
        return _render(result)
    except Exception as exc:
        return make_tool_error(exc)


@media_server.tool(annotations=_GENERATE)
@trace(name="media_compose_final_video", span_type="TOOL")
async def media_compose_final_video(recipe_id: RecipeId) -> dict:
    """Concatenate a recipe's completed step videos into one final video.

    Refuses while any step video is missing or failed.
    """
    try:
        url = await get_pipeline().compose_final_video(recipe_id)
        return {"recipe_id": recipe_id, "final_video_url": url}
    except Exception as exc:
        return make_tool_error(exc)


@media_server.tool(annotations=ToolAnnotations(readOnlyHint=True, openWorldHint=False))
@trace(name="media_state", span_type="TOOL")
async def media_state(recipe_id: RecipeId) -> dict:
    """Return everything generated for a recipe, including in-progress steps.

    Returns:
        Dict with stepImages, stepVideos (with status), finalVideoUrl,
        shortVideoUrl and generatedAt.
    """
    try:
        state = get_pipeline().media_state(recipe_id)
        document = state.to_document()
        document["recipeId"] = recipe_id
        document["generatedAt"] = state.generated_at.isoformat() if state.generated_at else None
        return document
    except Exception as exc:
        return make_tool_error(exc)
