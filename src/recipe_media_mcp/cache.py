"""Per-recipe media cache over :class:`~recipe_media_mcp.persistence.MediaDB`.

A recipe's step photos or step videos count as cached once a batch was
started for it and every step of that batch is completed. Video artifacts
(short video, composite) are cached once a URL is stored.
"""

from __future__ import annotations

import logging

from .models.media import ArtifactKind, RecipeMediaState, StepMediaResult, StepStatus
from .persistence import MediaDB

logger = logging.getLogger(__name__)


class MediaCache:
    """Write-through cache keyed by ``(recipe_id, artifact, step_index)``."""

    def __init__(self, db: MediaDB) -> None:
        self._db = db

    def has_cached(self, recipe_id: str, artifact: ArtifactKind) -> bool:
        record = self._db.get_artifact(recipe_id, artifact.value)
        if record is None:
            return False
        if not artifact.is_step_set:
            return bool(record["url"])
        step_count = record["step_count"]
        if step_count <= 0:
            return False
        done = self.completed_steps(recipe_id, artifact)
        return all(i in done for i in range(step_count))

    def get_cached(
        self, recipe_id: str, artifact: ArtifactKind,
    ) -> list[StepMediaResult] | str | None:
        """Return the stored step list or URL, or None on a miss."""
        if not self.has_cached(recipe_id, artifact):
            return None
        logger.info("Cache hit: %s/%s", recipe_id, artifact.value)
        if artifact.is_step_set:
            return self._db.load_steps(recipe_id, artifact.value)
        return self._db.get_artifact(recipe_id, artifact.value)["url"]

    def begin_batch(self, recipe_id: str, artifact: ArtifactKind, step_count: int) -> None:
        """Record how many steps the batch covers so completion can be judged."""
        self._db.set_artifact(recipe_id, artifact.value, step_count=step_count)

    def steps(self, recipe_id: str, artifact: ArtifactKind) -> list[StepMediaResult]:
        """Every stored row for the step set, whatever its status."""
        return self._db.load_steps(recipe_id, artifact.value)

    def completed_steps(
        self, recipe_id: str, artifact: ArtifactKind,
    ) -> dict[int, StepMediaResult]:
        return {
            r.step_index: r
            for r in self.steps(recipe_id, artifact)
            if r.status == StepStatus.COMPLETED
        }

    def write_through(
        self,
        recipe_id: str,
        artifact: ArtifactKind,
        result: StepMediaResult | str,
    ) -> None:
        """Persist one step result or one artifact URL immediately.

        Raises:
            ValueError: Setting the composite while step videos are incomplete,
                or passing the wrong result type for the artifact.
            PersistenceError: SQLite failure.
        """
        if artifact.is_step_set:
            if not isinstance(result, StepMediaResult):
                raise ValueError(f"{artifact.value} expects a StepMediaResult")
            if not self._db.upsert_step(recipe_id, artifact.value, result):
                logger.debug(
                    "Step %d of %s/%s already completed, kept stored value",
                    result.step_index, recipe_id, artifact.value,
                )
            return

        if not isinstance(result, str) or not result:
            raise ValueError(f"{artifact.value} expects a non-empty URL")
        if artifact == ArtifactKind.FINAL_VIDEO and not self.has_cached(
            recipe_id, ArtifactKind.STEP_VIDEOS,
        ):
            raise ValueError(
                f"Cannot set final video for {recipe_id}: step videos are not all completed"
            )
        self._db.set_artifact(recipe_id, artifact.value, url=result)

    def state(self, recipe_id: str) -> RecipeMediaState:
        """Assemble everything stored for *recipe_id*."""
        stamps = []
        urls: dict[ArtifactKind, str | None] = {}
        for artifact in ArtifactKind:
            record = self._db.get_artifact(recipe_id, artifact.value)
            if record is None:
                continue
            stamps.append(record["generated_at"])
            urls[artifact] = record["url"]
        return RecipeMediaState(
            recipe_id=recipe_id,
            step_images=self._db.load_steps(recipe_id, ArtifactKind.STEP_IMAGES.value),
            step_videos=self._db.load_steps(recipe_id, ArtifactKind.STEP_VIDEOS.value),
            final_video_url=urls.get(ArtifactKind.FINAL_VIDEO),
            short_video_url=urls.get(ArtifactKind.SHORT_VIDEO),
            generated_at=max(stamps) if stamps else None,
        )

    def delete_recipe(self, recipe_id: str) -> int:
        removed = self._db.delete_recipe(recipe_id)
        logger.info("Deleted %d media row(s) for recipe %s", removed, recipe_id)
        return removed

    def stats(self) -> dict:
        return self._db.stats()
