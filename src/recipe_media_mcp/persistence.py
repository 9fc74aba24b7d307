"""SQLite-backed media and credit persistence with WAL mode."""

from __future__ import annotations

import logging
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path

from .errors import PersistenceError
from .models.credits import UserCredits
from .models.media import StepMediaResult, StepStatus, utcnow

logger = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS step_media (
    recipe_id TEXT NOT NULL,
    artifact TEXT NOT NULL,
    step_index INTEGER NOT NULL CHECK (step_index >= 0),
    media_url TEXT,
    status TEXT NOT NULL,
    error TEXT,
    provider_url TEXT,
    updated_at TEXT NOT NULL,
    PRIMARY KEY (recipe_id, artifact, step_index)
);

CREATE TABLE IF NOT EXISTS recipe_artifacts (
    recipe_id TEXT NOT NULL,
    artifact TEXT NOT NULL,
    url TEXT,
    step_count INTEGER NOT NULL DEFAULT 0,
    generated_at TEXT NOT NULL,
    PRIMARY KEY (recipe_id, artifact)
);

CREATE TABLE IF NOT EXISTS user_credits (
    user_id TEXT PRIMARY KEY,
    photo_credits INTEGER NOT NULL DEFAULT 0 CHECK (photo_credits >= 0),
    video_credits INTEGER NOT NULL DEFAULT 0 CHECK (video_credits >= 0),
    videos_generated_this_month INTEGER NOT NULL DEFAULT 0
        CHECK (videos_generated_this_month >= 0),
    month_reset_at TEXT NOT NULL
);
"""

_CREDIT_COLUMNS = {"photo_credits", "video_credits"}


@contextmanager
def _sql_errors(operation: str) -> Iterator[None]:
    try:
        yield
    except sqlite3.Error as exc:
        logger.error("SQLite %s failed: %s", operation, exc)
        raise PersistenceError(f"Database {operation} failed: {exc}") from exc


class MediaDB:
    """Synchronous SQLite persistence for generated media and user credits.

    Uses WAL mode for concurrent reads and fast writes (<1ms).
    Every mutation is a single statement committed immediately, so a crash
    loses at most the step in flight.
    """

    def __init__(self, db_path: str) -> None:
        if db_path == ":memory:":
            target = db_path
        else:
            path = Path(db_path).expanduser().resolve()
            path.parent.mkdir(parents=True, exist_ok=True)
            target = str(path)
        self.path = target
        self._conn = sqlite3.connect(target)
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA synchronous=NORMAL")
        self._conn.executescript(_SCHEMA)

    # ── step media ─────────────────────────────────────────────────────────

    def upsert_step(self, recipe_id: str, artifact: str, result: StepMediaResult) -> bool:
        """Write one step row. A completed row is never overwritten.

        Returns:
            True if the row was inserted or updated.
        """
        with _sql_errors("step upsert"):
            cursor = self._conn.execute(
                """INSERT INTO step_media
                   (recipe_id, artifact, step_index, media_url, status, error,
                    provider_url, updated_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                   ON CONFLICT (recipe_id, artifact, step_index) DO UPDATE SET
                       media_url = excluded.media_url,
                       status = excluded.status,
                       error = excluded.error,
                       provider_url = excluded.provider_url,
                       updated_at = excluded.updated_at
                   WHERE step_media.status != 'completed'""",
                (
                    recipe_id,
                    artifact,
                    result.step_index,
                    result.media_url,
                    result.status.value,
                    result.error,
                    result.provider_url,
                    utcnow().isoformat(),
                ),
            )
            self._conn.commit()
        return cursor.rowcount > 0

    def load_steps(self, recipe_id: str, artifact: str) -> list[StepMediaResult]:
        with _sql_errors("step load"):
            rows = self._conn.execute(
                "SELECT step_index, media_url, status, error, provider_url "
                "FROM step_media WHERE recipe_id = ? AND artifact = ? ORDER BY step_index",
                (recipe_id, artifact),
            ).fetchall()
        return [
            StepMediaResult(
                step_index=row[0],
                media_url=row[1],
                status=StepStatus(row[2]),
                error=row[3],
                provider_url=row[4],
            )
            for row in rows
        ]

    # ── recipe-level artifacts ─────────────────────────────────────────────

    def set_artifact(
        self,
        recipe_id: str,
        artifact: str,
        *,
        url: str | None = None,
        step_count: int | None = None,
    ) -> None:
        """Upsert the recipe-level record; None arguments keep the stored value."""
        with _sql_errors("artifact upsert"):
            self._conn.execute(
                """INSERT INTO recipe_artifacts (recipe_id, artifact, url, step_count, generated_at)
                   VALUES (?, ?, ?, ?, ?)
                   ON CONFLICT (recipe_id, artifact) DO UPDATE SET
                       url = COALESCE(excluded.url, recipe_artifacts.url),
                       step_count = CASE WHEN ? IS NULL
                           THEN recipe_artifacts.step_count ELSE excluded.step_count END,
                       generated_at = excluded.generated_at""",
                (
                    recipe_id,
                    artifact,
                    url,
                    step_count or 0,
                    utcnow().isoformat(),
                    step_count,
                ),
            )
            self._conn.commit()

    def get_artifact(self, recipe_id: str, artifact: str) -> dict | None:
        with _sql_errors("artifact load"):
            row = self._conn.execute(
                "SELECT url, step_count, generated_at FROM recipe_artifacts "
                "WHERE recipe_id = ? AND artifact = ?",
                (recipe_id, artifact),
            ).fetchone()
        if row is None:
            return None
        return {
            "url": row[0],
            "step_count": row[1],
            "generated_at": datetime.fromisoformat(row[2]),
        }

    def delete_recipe(self, recipe_id: str) -> int:
        """Delete every media row for a recipe. Returns rows removed."""
        with _sql_errors("recipe delete"):
            removed = self._conn.execute(
                "DELETE FROM step_media WHERE recipe_id = ?", (recipe_id,),
            ).rowcount
            removed += self._conn.execute(
                "DELETE FROM recipe_artifacts WHERE recipe_id = ?", (recipe_id,),
            ).rowcount
            self._conn.commit()
        return removed

    def stats(self) -> dict:
        with _sql_errors("stats"):
            recipes = self._conn.execute(
                "SELECT COUNT(DISTINCT recipe_id) FROM recipe_artifacts"
            ).fetchone()[0]
            by_status = dict(self._conn.execute(
                "SELECT status, COUNT(*) FROM step_media GROUP BY status"
            ).fetchall())
            users = self._conn.execute("SELECT COUNT(*) FROM user_credits").fetchone()[0]
        return {
            "db_path": self.path,
            "recipes": recipes,
            "step_rows": by_status,
            "users": users,
        }

    # ── credits ────────────────────────────────────────────────────────────

    def ensure_user(self, user_id: str, month_start: datetime) -> None:
        with _sql_errors("user insert"):
            self._conn.execute(
                "INSERT OR IGNORE INTO user_credits (user_id, month_reset_at) VALUES (?, ?)",
                (user_id, month_start.isoformat()),
            )
            self._conn.commit()

    def get_user(self, user_id: str) -> UserCredits | None:
        with _sql_errors("user load"):
            row = self._conn.execute(
                "SELECT user_id, photo_credits, video_credits, videos_generated_this_month, "
                "month_reset_at FROM user_credits WHERE user_id = ?",
                (user_id,),
            ).fetchone()
        if row is None:
            return None
        return UserCredits(
            user_id=row[0],
            photo_credits=row[1],
            video_credits=row[2],
            videos_generated_this_month=row[3],
            month_reset_at=datetime.fromisoformat(row[4]),
        )

    def reset_month_if_stale(self, user_id: str, month_start: datetime) -> bool:
        """Zero the monthly counter once per calendar month. Returns True if reset."""
        stamp = month_start.isoformat()
        with _sql_errors("monthly reset"):
            cursor = self._conn.execute(
                "UPDATE user_credits SET videos_generated_this_month = 0, month_reset_at = ? "
                "WHERE user_id = ? AND month_reset_at < ?",
                (stamp, user_id, stamp),
            )
            self._conn.commit()
        return cursor.rowcount > 0

    def consume(self, user_id: str, column: str) -> bool:
        """Decrement a consumable balance if positive. Returns True on success."""
        if column not in _CREDIT_COLUMNS:
            raise ValueError(f"Unknown credit column '{column}'")
        with _sql_errors("credit decrement"):
            cursor = self._conn.execute(
                f"UPDATE user_credits SET {column} = {column} - 1 "
                f"WHERE user_id = ? AND {column} > 0",
                (user_id,),
            )
            self._conn.commit()
        return cursor.rowcount > 0

    def increment_monthly(self, user_id: str) -> None:
        with _sql_errors("monthly increment"):
            self._conn.execute(
                "UPDATE user_credits SET videos_generated_this_month = "
                "videos_generated_this_month + 1 WHERE user_id = ?",
                (user_id,),
            )
            self._conn.commit()

    def add_credits(self, user_id: str, photo: int, video: int) -> None:
        with _sql_errors("credit top-up"):
            self._conn.execute(
                "UPDATE user_credits SET photo_credits = photo_credits + ?, "
                "video_credits = video_credits + ? WHERE user_id = ?",
                (photo, video, user_id),
            )
            self._conn.commit()

    def close(self) -> None:
        """Close the database connection."""
        self._conn.close()
