"""Batch sequencer — one generation per recipe step, strictly in order.

Steps run one at a time to respect the provider's per-account rate limits.
A failing step never stops the batch; its error is captured on the step and
the next one starts. Every state change is written through to SQLite (so
progress is readable from another request) and reported to the optional
``on_progress`` callback with a snapshot of all step results.
"""

from __future__ import annotations

import functools
import inspect
import logging
from collections.abc import Awaitable, Callable, Sequence
from typing import Union

from .cache import MediaCache
from .config import ServerConfig, get_config
from .errors import PersistenceError
from .models.media import (
    ArtifactKind,
    BatchResult,
    Generated,
    MediaKind,
    StepMediaResult,
    StepStatus,
)
from .models.recipe import Step
from .prompts.recipe import build_step_image_prompt, build_step_video_prompt
from .provider import GenerationProvider, submit_and_wait
from .retry import run_with_retry
from .storage import IMAGE_MIME, VIDEO_MIME, ObjectStore, persist_artifact, step_media_key
from .url_policy import normalize_source_image

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[list[StepMediaResult]], Union[None, Awaitable[None]]]

_KEY_LAYOUT = {
    ArtifactKind.STEP_IMAGES: ("step-images", "png", IMAGE_MIME),
    ArtifactKind.STEP_VIDEOS: ("step-videos", "mp4", VIDEO_MIME),
}


async def _notify(on_progress: ProgressCallback | None, results: list[StepMediaResult]) -> None:
    if on_progress is None:
        return
    outcome = on_progress([r.model_copy() for r in results])
    if inspect.isawaitable(outcome):
        await outcome


class BatchSequencer:
    def __init__(
        self,
        provider: GenerationProvider,
        store: ObjectStore,
        cache: MediaCache,
        config: ServerConfig | None = None,
    ) -> None:
        self._provider = provider
        self._store = store
        self._cache = cache
        self._cfg = config or get_config()

    def _submit_kwargs(self, artifact: ArtifactKind, source: str | None) -> dict:
        if artifact == ArtifactKind.STEP_IMAGES:
            return {
                "kind": MediaKind.IMAGE_FROM_TEXT,
                "model": self._cfg.image_model,
                "aspect_ratio": self._cfg.image_ratio,
            }
        return {
            "kind": MediaKind.IMAGE_TO_VIDEO,
            "source_image_url": source,
            "model": self._cfg.step_video_model,
            "aspect_ratio": self._cfg.step_video_ratio,
            "duration_seconds": self._cfg.step_video_duration,
        }

    async def _attempt(self, prompt: str, submit_kwargs: dict, *, attempt: int = 1) -> str:
        kwargs = dict(submit_kwargs)
        kind = kwargs.pop("kind")
        return await submit_and_wait(
            self._provider,
            kind,
            prompt,
            timeout=self._cfg.attempt_timeout_seconds,
            poll_interval=self._cfg.poll_interval_seconds,
            attempt=attempt,
            **kwargs,
        )

    def _record(
        self,
        recipe_id: str,
        artifact: ArtifactKind,
        result: StepMediaResult,
        provider_url: str | None,
    ) -> StepMediaResult:
        """Write a finished step. A completed step whose row cannot be written comes back failed."""
        try:
            self._cache.write_through(recipe_id, artifact, result)
        except PersistenceError as exc:
            logger.error(
                "Could not record step %d of %s/%s (provider_url=%s, stored_url=%s): %s",
                result.step_index, recipe_id, artifact.value, provider_url, result.media_url, exc,
            )
            if result.status != StepStatus.COMPLETED:
                return result
            return StepMediaResult(
                step_index=result.step_index,
                status=StepStatus.FAILED,
                error=f"Stored at {result.media_url} but not recorded: {exc}",
                provider_url=provider_url,
            )
        return result

    def _prompt_for(
        self,
        artifact: ArtifactKind,
        dish_name: str,
        steps: Sequence[Step],
        index: int,
        step_prompts: Sequence[str] | None,
    ) -> str:
        if step_prompts and index < len(step_prompts) and step_prompts[index]:
            return step_prompts[index]
        instruction = steps[index].instruction
        if artifact == ArtifactKind.STEP_IMAGES:
            return build_step_image_prompt(dish_name, instruction, index + 1, len(steps))
        return build_step_video_prompt(dish_name, instruction, index + 1)

    async def generate_batch(
        self,
        recipe_id: str,
        dish_name: str,
        source_image_url: str | None,
        steps: Sequence[Step],
        on_progress: ProgressCallback | None = None,
        *,
        artifact: ArtifactKind,
        step_prompts: Sequence[str] | None = None,
    ) -> BatchResult:
        """Generate one artifact per step and return the aggregate result.

        Previously completed steps are reused without provider calls, so a
        second run over a partially failed batch only retries the failures.

        Raises:
            ValidationError: Video batch with an unusable source image.
            ValueError: *artifact* is not a per-step artifact.
        """
        if not artifact.is_step_set:
            raise ValueError(f"{artifact.value} is not a per-step artifact")
        if not steps:
            return BatchResult(recipe_id=recipe_id, artifact=artifact, status="completed")

        source = None
        if artifact == ArtifactKind.STEP_VIDEOS:
            source = normalize_source_image(source_image_url)
        submit_kwargs = self._submit_kwargs(artifact, source)
        prefix, ext, content_type = _KEY_LAYOUT[artifact]

        self._cache.begin_batch(recipe_id, artifact, len(steps))
        prior = {r.step_index: r for r in self._cache.steps(recipe_id, artifact)}
        done = {i: r for i, r in prior.items() if r.status == StepStatus.COMPLETED}
        results = [
            done.get(i) or StepMediaResult(step_index=i) for i in range(len(steps))
        ]
        if done:
            logger.info(
                "Reusing %d completed step(s) for %s/%s", len(done), recipe_id, artifact.value,
            )

        for index in range(len(steps)):
            if index in done:
                continue

            # An earlier paid-but-unstored URL stays on the row until a new run stores the step.
            earlier_url = prior[index].provider_url if index in prior else None
            results[index] = StepMediaResult(
                step_index=index, status=StepStatus.GENERATING, provider_url=earlier_url,
            )
            self._cache.write_through(recipe_id, artifact, results[index])
            await _notify(on_progress, results)

            prompt = self._prompt_for(artifact, dish_name, steps, index, step_prompts)
            label = f"{recipe_id} step {index + 1}/{len(steps)}"
            outcome = await run_with_retry(
                functools.partial(self._attempt, prompt, submit_kwargs),
                max_retries=self._cfg.max_retries,
                backoff_base=self._cfg.backoff_base_seconds,
                label=label,
            )

            if isinstance(outcome, Generated):
                try:
                    url = await persist_artifact(
                        self._store,
                        outcome.url,
                        step_media_key(prefix, recipe_id, index, ext),
                        content_type,
                        recipe_id=recipe_id,
                        step_index=index,
                    )
                except PersistenceError as exc:
                    results[index] = StepMediaResult(
                        step_index=index,
                        status=StepStatus.FAILED,
                        error=str(exc),
                        provider_url=outcome.url,
                    )
                else:
                    results[index] = StepMediaResult(
                        step_index=index, media_url=url, status=StepStatus.COMPLETED,
                    )
                    logger.info("Completed %s", label)
            else:
                results[index] = StepMediaResult(
                    step_index=index,
                    status=StepStatus.FAILED,
                    error=outcome.reason,
                    provider_url=earlier_url,
                )
                logger.warning("Giving up on %s after %d attempt(s)", label, outcome.attempts)

            provider_url = outcome.url if isinstance(outcome, Generated) else earlier_url
            results[index] = self._record(recipe_id, artifact, results[index], provider_url)
            await _notify(on_progress, results)

        completed = sum(1 for r in results if r.status == StepStatus.COMPLETED)
        batch = BatchResult(
            recipe_id=recipe_id,
            artifact=artifact,
            status="completed" if completed else "failed",
            items=results,
        )
        logger.info("%s for recipe %s", batch.summary, recipe_id)
        return batch
