"""Shared type aliases and helpers for tool parameters."""

from __future__ import annotations

import json
from typing import Annotated, Literal

from pydantic import Field


def coerce_json_param(value: str | dict | list | None, expected_type: type) -> dict | list | None:
    """Parse MCP JSON-RPC string params back to dict/list.

    MCP JSON-RPC transport may serialize dict/list params as JSON strings.
    Pydantic v2 rejects these — this helper coerces them back.

    Args:
        value: The parameter value (possibly a JSON string).
        expected_type: Expected Python type (``dict`` or ``list``).

    Returns:
        Parsed value if coercion succeeded, original value otherwise.
    """
    if not isinstance(value, str):
        return value
    try:
        parsed = json.loads(value)
        if isinstance(parsed, expected_type):
            return parsed
    except (json.JSONDecodeError, TypeError):
        pass
    return value

# ── Literal enums ────────────────────────────────────────────────────────────

ThinkingLevel = Literal["minimal", "low", "medium", "high"]
TierParam = Literal["credits", "unlimited"]
CreditKindParam = Literal["photo", "video"]
CacheAction = Literal["stats", "clear"]
StorageBackend = Literal["local", "supabase"]

# ── Annotated aliases ────────────────────────────────────────────────────────

RecipeId = Annotated[str, Field(min_length=1, description="Stable recipe identifier")]
UserId = Annotated[str, Field(min_length=1, description="User whose credits are checked and charged")]
DishName = Annotated[str, Field(min_length=1, description="Dish title used in every prompt")]
SourceImageUrl = Annotated[str, Field(
    description="Recipe hero image: https://, data:image/ or runway:// (http:// is upgraded)",
)]
StepsParam = Annotated[list | str, Field(
    description="Ordered steps: strings or objects with instruction/text and optional duration (minutes)",
)]
IngredientsParam = Annotated[list | str | None, Field(
    description="Ingredients: strings or objects with name, amount, unit",
)]
AuthToken = Annotated[str | None, Field(
    description="Optional infra auth token (required when INFRA_ADMIN_TOKEN is configured)",
)]
