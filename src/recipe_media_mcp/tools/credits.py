"""Credit ledger tools — 3 tools on a FastMCP sub-server."""

from __future__ import annotations

from typing import Annotated

from fastmcp import FastMCP
from mcp.types import ToolAnnotations
from pydantic import Field

from ..errors import make_tool_error
from ..pipeline import get_pipeline
from ..tracing import trace
from ..types import AuthToken, CreditKindParam, TierParam, UserId
from .infra import enforce_mutation_policy

credits_server = FastMCP("credits")


@credits_server.tool(
    annotations=ToolAnnotations(readOnlyHint=False, idempotentHint=True, openWorldHint=False)
)
@trace(name="credits_check", span_type="TOOL")
async def credits_check(
    user_id: UserId,
    kind: CreditKindParam = "video",
    tier: TierParam = "credits",
) -> dict:
    """Check whether a user may generate one more photo set or video.

    Returns:
        Dict with allowed, remaining and a user-facing message when denied.
    """
    try:
        return get_pipeline().ledger.can_generate(user_id, kind, tier).model_dump(mode="json")
    except Exception as exc:
        return make_tool_error(exc)


@credits_server.tool(
    annotations=ToolAnnotations(readOnlyHint=False, idempotentHint=True, openWorldHint=False)
)
@trace(name="credits_balance", span_type="TOOL")
async def credits_balance(user_id: UserId) -> dict:
    """Return a user's photo/video balances and this month's fair-use count."""
    try:
        return get_pipeline().ledger.remaining(user_id)
    except Exception as exc:
        return make_tool_error(exc)


@credits_server.tool(
    annotations=ToolAnnotations(
        readOnlyHint=False,
        destructiveHint=False,
        idempotentHint=False,
        openWorldHint=False,
    )
)
@trace(name="credits_add", span_type="TOOL")
async def credits_add(
    user_id: UserId,
    photo: Annotated[int, Field(ge=0, description="Photo credits to add")] = 0,
    video: Annotated[int, Field(ge=0, description="Video credits to add")] = 0,
    auth_token: AuthToken = None,
) -> dict:
    """Top up a user's balances after a purchase.

    Gated by INFRA_MUTATIONS_ENABLED and the optional INFRA_ADMIN_TOKEN.
    """
    try:
        enforce_mutation_policy(auth_token)
        return get_pipeline().ledger.add_credits(user_id, photo=photo, video=video)
    except Exception as exc:
        return make_tool_error(exc)
