"""Credit and entitlement ledger.

Two tracks per user:

- **Consumable credits** (``tier="credits"``): separate photo and video
  balances, allowed while positive, decremented once per delivered artifact.
- **Fair use** (``tier="unlimited"``): videos are capped per calendar month;
  the counter resets lazily the first time it is checked in a new month.
  Photos on this tier are not metered.

Every balance change is a single conditional SQL statement, so concurrent
requests for one user can never drive a counter negative.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime

from .errors import PersistenceError
from .models.credits import CreditCheck, CreditKind, Tier
from .models.media import utcnow
from .persistence import MediaDB

logger = logging.getLogger(__name__)

UNLIMITED_PHOTO_REMAINING = 999

MONTHLY_LIMIT_MESSAGE = (
    "You've reached your monthly limit of {limit} videos. "
    "Your limit resets on the 1st of next month."
)
NO_VIDEO_CREDITS_MESSAGE = (
    "You don't have any video credits. Purchase a video bundle to continue."
)
NO_PHOTO_CREDITS_MESSAGE = (
    "You don't have any photo credits. Purchase a photo bundle to continue."
)
UNVERIFIED_MESSAGE = "Could not verify credits"


def month_start(moment: datetime) -> datetime:
    return moment.replace(day=1, hour=0, minute=0, second=0, microsecond=0)


class CreditLedger:
    def __init__(
        self,
        db: MediaDB,
        *,
        monthly_limit: int = 50,
        now: Callable[[], datetime] = utcnow,
    ) -> None:
        self._db = db
        self._limit = monthly_limit
        self._now = now

    def _account(self, user_id: str) -> datetime:
        start = month_start(self._now())
        self._db.ensure_user(user_id, start)
        return start

    def can_generate(self, user_id: str, kind: CreditKind, tier: Tier = "credits") -> CreditCheck:
        """Decide whether *user_id* may generate one more *kind* artifact."""
        try:
            start = self._account(user_id)
            if tier == "unlimited":
                if kind == "photo":
                    return CreditCheck(
                        allowed=True, remaining=UNLIMITED_PHOTO_REMAINING, kind=kind, tier=tier,
                    )
                if self._db.reset_month_if_stale(user_id, start):
                    logger.info("Monthly video counter reset for user %s", user_id)
                used = self._db.get_user(user_id).videos_generated_this_month
                if used >= self._limit:
                    return CreditCheck(
                        allowed=False,
                        remaining=0,
                        message=MONTHLY_LIMIT_MESSAGE.format(limit=self._limit),
                        kind=kind,
                        tier=tier,
                    )
                return CreditCheck(allowed=True, remaining=self._limit - used, kind=kind, tier=tier)

            account = self._db.get_user(user_id)
            balance = account.photo_credits if kind == "photo" else account.video_credits
            if balance <= 0:
                message = NO_PHOTO_CREDITS_MESSAGE if kind == "photo" else NO_VIDEO_CREDITS_MESSAGE
                return CreditCheck(allowed=False, remaining=0, message=message, kind=kind, tier=tier)
            return CreditCheck(allowed=True, remaining=balance, kind=kind, tier=tier)
        except PersistenceError as exc:
            logger.error("Credit check failed for user %s: %s", user_id, exc)
            return CreditCheck(
                allowed=False, remaining=0, message=UNVERIFIED_MESSAGE, kind=kind, tier=tier,
            )

    def record_success(self, user_id: str, kind: CreditKind, tier: Tier = "credits") -> bool:
        """Charge one delivered artifact. Returns False if nothing could be charged."""
        start = self._account(user_id)
        if tier == "unlimited":
            if kind == "photo":
                return True
            self._db.reset_month_if_stale(user_id, start)
            self._db.increment_monthly(user_id)
            logger.info("Counted fair-use video for user %s", user_id)
            return True

        column = "photo_credits" if kind == "photo" else "video_credits"
        charged = self._db.consume(user_id, column)
        if charged:
            logger.info("Charged one %s credit to user %s", kind, user_id)
        else:
            logger.warning("No %s credit left to charge for user %s", kind, user_id)
        return charged

    def add_credits(self, user_id: str, photo: int = 0, video: int = 0) -> dict:
        """Top up balances after a purchase. Returns the new balances."""
        if photo < 0 or video < 0:
            raise ValueError("Credit top-ups must be non-negative")
        self._account(user_id)
        self._db.add_credits(user_id, photo, video)
        logger.info("Added %d photo / %d video credit(s) to user %s", photo, video, user_id)
        return self.remaining(user_id)

    def remaining(self, user_id: str) -> dict:
        start = self._account(user_id)
        self._db.reset_month_if_stale(user_id, start)
        account = self._db.get_user(user_id)
        return {
            "user_id": user_id,
            "photo_credits": account.photo_credits,
            "video_credits": account.video_credits,
            "videos_generated_this_month": account.videos_generated_this_month,
            "monthly_video_limit": self._limit,
            "month_reset_at": account.month_reset_at.isoformat(),
        }
