"""Credit ledger models."""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

Tier = Literal["credits", "unlimited"]
CreditKind = Literal["photo", "video"]


class UserCredits(BaseModel):
    user_id: str
    photo_credits: int = Field(default=0, ge=0)
    video_credits: int = Field(default=0, ge=0)
    videos_generated_this_month: int = Field(default=0, ge=0)
    month_reset_at: datetime


class CreditCheck(BaseModel):
    """Answer to "may this user generate?" A denial is a value, not an exception."""

    allowed: bool
    remaining: int
    message: str | None = None
    kind: CreditKind = "video"
    tier: Tier = "credits"
