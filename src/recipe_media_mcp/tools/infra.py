"""Infrastructure tools — 2 tools on a FastMCP sub-server."""

from __future__ import annotations

from typing import Annotated

from fastmcp import FastMCP
from mcp.types import ToolAnnotations
from pydantic import Field

from ..config import get_config, update_config
from ..errors import make_tool_error
from ..pipeline import get_pipeline, reset_pipeline
from ..tracing import trace
from ..types import AuthToken, CacheAction, StorageBackend

infra_server = FastMCP("infra")
_SENSITIVE_CONFIG_FIELDS = {
    "runway_api_key",
    "supabase_service_key",
    "gemini_api_key",
    "infra_admin_token",
}


def _redacted_config() -> dict:
    """Return runtime config with secret-bearing fields removed."""
    return get_config().model_dump(exclude=_SENSITIVE_CONFIG_FIELDS)


def enforce_mutation_policy(auth_token: str | None) -> None:
    """Gate mutating operations behind explicit policy + optional token."""
    cfg = get_config()
    if not cfg.infra_mutations_enabled:
        raise PermissionError(
            "Infra mutations are disabled by policy. "
            "Set INFRA_MUTATIONS_ENABLED=true to enable mutating tools."
        )
    if cfg.infra_admin_token and auth_token != cfg.infra_admin_token:
        raise PermissionError(
            "Invalid or missing infra auth token for mutating operation."
        )


@infra_server.tool(
    annotations=ToolAnnotations(
        readOnlyHint=False,
        destructiveHint=True,
        idempotentHint=True,
        openWorldHint=False,
    )
)
@trace(name="infra_cache", span_type="TOOL")
async def infra_cache(
    action: CacheAction = "stats",
    recipe_id: Annotated[str | None, Field(description="Recipe whose media records to clear")] = None,
    auth_token: AuthToken = None,
) -> dict:
    """Inspect the media database or clear one recipe's generated media records.

    Clearing only drops the records; stored files stay in object storage and
    the next generation call for the recipe starts from scratch.

    Args:
        action: "stats" or "clear".
        recipe_id: Required when action is "clear".

    Returns:
        Dict with database stats, or the number of rows removed.
    """
    try:
        pipeline = get_pipeline()
        if action == "stats":
            return pipeline.cache.stats()
        if action == "clear":
            enforce_mutation_policy(auth_token)
            if not recipe_id:
                raise ValueError("recipe_id is required to clear media records")
            return {"recipe_id": recipe_id, "removed": pipeline.cache.delete_recipe(recipe_id)}
    except Exception as exc:
        return make_tool_error(exc)
    return {"error": f"Unknown action: {action}", "valid_actions": ["stats", "clear"]}


@infra_server.tool(
    annotations=ToolAnnotations(
        readOnlyHint=False,
        destructiveHint=False,
        idempotentHint=True,
        openWorldHint=False,
    )
)
@trace(name="infra_configure", span_type="TOOL")
async def infra_configure(
    step_video_model: Annotated[str | None, Field(description="Provider model for step clips")] = None,
    short_video_model: Annotated[str | None, Field(description="Provider model for the short video")] = None,
    image_model: Annotated[str | None, Field(description="Provider model for step photos")] = None,
    max_retries: Annotated[int | None, Field(ge=0, le=5, description="Retries per generation")] = None,
    quality_min_bytes: Annotated[int | None, Field(ge=1, description="Quality gate size threshold")] = None,
    monthly_video_limit: Annotated[int | None, Field(ge=1, description="Fair-use monthly cap")] = None,
    storage_backend: StorageBackend | None = None,
    enrich_prompts: Annotated[bool | None, Field(description="Enrich step video prompts with Gemini")] = None,
    auth_token: AuthToken = None,
) -> dict:
    """Reconfigure the server at runtime.

    Changes take effect for all subsequent tool calls; the generation
    pipeline is rebuilt so storage and ledger settings apply immediately.

    Returns:
        Dict with current_config (secrets redacted).
    """
    try:
        overrides: dict[str, object] = {
            "step_video_model": step_video_model,
            "short_video_model": short_video_model,
            "image_model": image_model,
            "max_retries": max_retries,
            "quality_min_bytes": quality_min_bytes,
            "monthly_video_limit": monthly_video_limit,
            "storage_backend": storage_backend,
            "enrich_prompts": enrich_prompts,
        }
        overrides = {k: v for k, v in overrides.items() if v is not None}
        if overrides:
            enforce_mutation_policy(auth_token)
            update_config(**overrides)
            await reset_pipeline()
        return {"current_config": _redacted_config()}
    except Exception as exc:
        return make_tool_error(exc)
