"""Recipe media pipeline — ledger, cache, generation, storage, charge.

Every entry point follows the same order: ask the ledger whether the user
may generate, return the cached artifact if one exists, otherwise generate,
write through, and charge one credit only for a newly delivered artifact.
"""

from __future__ import annotations

import functools
import inspect
import logging
from collections.abc import Awaitable, Callable
from typing import Union

from .batch import BatchSequencer, ProgressCallback
from .cache import MediaCache
from .compose import FfmpegComposer, compose_and_store
from .config import ServerConfig, get_config
from .enrichment import enrich_step_prompts, enrichment_enabled
from .errors import PersistenceError
from .ledger import CreditLedger
from .models.credits import CreditCheck, CreditKind, Tier
from .models.media import (
    ArtifactKind,
    Generated,
    GenerationOutcome,
    GenerationReport,
    MediaKind,
    RecipeMediaState,
    ShortVideoResult,
    StepStatus,
)
from .models.recipe import RecipeInput
from .persistence import MediaDB
from .prompts.recipe import build_alternate_prompt, build_prompt
from .provider import GenerationProvider, RunwayProvider, submit_and_wait
from .quality import generate_with_quality_gate, passes_quality_check
from .retry import run_with_retry
from .storage import VIDEO_MIME, ObjectStore, make_store, normalize_key, persist_artifact
from .url_policy import normalize_source_image

logger = logging.getLogger(__name__)

StageCallback = Callable[[str], Union[None, Awaitable[None]]]

STAGE_BUILDING_PROMPT = "building_prompt"
STAGE_GENERATING = "generating_video"
STAGE_REGENERATING = "regenerating"
STAGE_STORING = "storing"
STAGE_COMPLETED = "completed"


async def _emit(on_stage: StageCallback | None, stage: str) -> None:
    if on_stage is None:
        return
    outcome = on_stage(stage)
    if inspect.isawaitable(outcome):
        await outcome


def short_video_key(recipe_id: str) -> str:
    return normalize_key(f"short-videos/{recipe_id}/short_video.mp4")


class RecipeMediaPipeline:
    def __init__(
        self,
        provider: GenerationProvider,
        store: ObjectStore,
        db: MediaDB,
        *,
        composer: FfmpegComposer | None = None,
        ledger: CreditLedger | None = None,
        config: ServerConfig | None = None,
        quality_check: Callable[[str], Awaitable[bool]] = passes_quality_check,
    ) -> None:
        self._cfg = config or get_config()
        self._quality_check = quality_check
        self.provider = provider
        self.store = store
        self.db = db
        self.cache = MediaCache(db)
        self.ledger = ledger or CreditLedger(db, monthly_limit=self._cfg.monthly_video_limit)
        self.composer = composer or FfmpegComposer()
        self.sequencer = BatchSequencer(provider, store, self.cache, self._cfg)

    # ── step batches ───────────────────────────────────────────────────────

    async def _generate_steps(
        self,
        user_id: str,
        recipe: RecipeInput,
        artifact: ArtifactKind,
        kind: CreditKind,
        tier: Tier,
        on_progress: ProgressCallback | None,
    ) -> GenerationReport | CreditCheck:
        check = self.ledger.can_generate(user_id, kind, tier)
        if not check.allowed:
            logger.info("Credit check denied %s for user %s", artifact.value, user_id)
            return check

        cached = self.cache.get_cached(recipe.recipe_id, artifact)
        if cached is not None:
            noun = "step photos" if artifact == ArtifactKind.STEP_IMAGES else "step videos"
            return GenerationReport(
                recipe_id=recipe.recipe_id,
                artifact=artifact,
                status="completed",
                summary=f"generated {len(cached)} of {len(cached)} {noun}",
                items=cached,
                from_cache=True,
                credit=check.model_dump(),
            )

        previously_delivered = bool(self.cache.completed_steps(recipe.recipe_id, artifact))
        step_prompts = None
        if artifact == ArtifactKind.STEP_VIDEOS and enrichment_enabled():
            step_prompts = await enrich_step_prompts(recipe.dish_name, recipe.steps)

        batch = await self.sequencer.generate_batch(
            recipe.recipe_id,
            recipe.dish_name,
            recipe.source_image_url,
            recipe.steps,
            on_progress,
            artifact=artifact,
            step_prompts=step_prompts,
        )

        charged = False
        if batch.completed_count and not previously_delivered:
            charged = self.ledger.record_success(user_id, kind, tier)
        return GenerationReport(
            recipe_id=recipe.recipe_id,
            artifact=artifact,
            status=batch.status,
            summary=batch.summary,
            items=batch.items,
            charged=charged,
            credit=self.ledger.can_generate(user_id, kind, tier).model_dump(),
        )

    async def generate_step_photos(
        self,
        user_id: str,
        recipe: RecipeInput,
        tier: Tier = "credits",
        on_progress: ProgressCallback | None = None,
    ) -> GenerationReport | CreditCheck:
        """Generate one still photo per recipe step."""
        return await self._generate_steps(
            user_id, recipe, ArtifactKind.STEP_IMAGES, "photo", tier, on_progress,
        )

    async def generate_step_videos(
        self,
        user_id: str,
        recipe: RecipeInput,
        tier: Tier = "credits",
        on_progress: ProgressCallback | None = None,
    ) -> GenerationReport | CreditCheck:
        """Generate one short clip per recipe step from the recipe's hero image."""
        return await self._generate_steps(
            user_id, recipe, ArtifactKind.STEP_VIDEOS, "video", tier, on_progress,
        )

    # ── short video ────────────────────────────────────────────────────────

    def _short_video_attempt(self, source: str) -> Callable[[str], Awaitable[GenerationOutcome]]:
        async def generate(prompt: str) -> GenerationOutcome:
            return await run_with_retry(
                functools.partial(
                    submit_and_wait,
                    self.provider,
                    MediaKind.IMAGE_TO_VIDEO,
                    prompt,
                    source_image_url=source,
                    duration_seconds=self._cfg.short_video_duration,
                    aspect_ratio=self._cfg.short_video_ratio,
                    model=self._cfg.short_video_model,
                    timeout=self._cfg.short_video_timeout_seconds,
                    poll_interval=self._cfg.poll_interval_seconds,
                ),
                max_retries=self._cfg.max_retries,
                backoff_base=self._cfg.backoff_base_seconds,
                label="short video",
            )

        return generate

    async def _store_short_video(
        self, recipe_id: str, outcome: Generated, prompt: str,
    ) -> ShortVideoResult | str:
        try:
            url = await persist_artifact(
                self.store, outcome.url, short_video_key(recipe_id), VIDEO_MIME,
                recipe_id=recipe_id,
            )
        except PersistenceError as exc:
            return ShortVideoResult(
                recipe_id=recipe_id,
                success=False,
                prompt=prompt,
                error=str(exc),
                provider_url=outcome.url,
            )
        try:
            self.cache.write_through(recipe_id, ArtifactKind.SHORT_VIDEO, url)
        except PersistenceError as exc:
            logger.error(
                "Could not record short video for %s (provider_url=%s, stored_url=%s): %s",
                recipe_id, outcome.url, url, exc,
            )
            return ShortVideoResult(
                recipe_id=recipe_id,
                success=False,
                prompt=prompt,
                error=f"Stored at {url} but not recorded: {exc}",
                provider_url=outcome.url,
            )
        return url

    async def generate_short_video(
        self,
        user_id: str,
        recipe: RecipeInput,
        tier: Tier = "credits",
        on_stage: StageCallback | None = None,
    ) -> ShortVideoResult | CreditCheck:
        """Generate the quality-gated vertical short video for a recipe.

        Raises:
            ValidationError: The recipe's source image is unusable.
        """
        check = self.ledger.can_generate(user_id, "video", tier)
        if not check.allowed:
            return check

        cached = self.cache.get_cached(recipe.recipe_id, ArtifactKind.SHORT_VIDEO)
        if cached:
            return ShortVideoResult(
                recipe_id=recipe.recipe_id,
                success=True,
                video_url=cached,
                passed_quality_gate=True,
                from_cache=True,
            )

        await _emit(on_stage, STAGE_BUILDING_PROMPT)
        source = normalize_source_image(recipe.source_image_url)
        primary = build_prompt(
            recipe.dish_name, recipe.steps, recipe.ingredients,
            recipe.cuisine, recipe.hero_moment,
        )
        alternate = build_alternate_prompt(recipe.dish_name, recipe.steps, recipe.ingredients)

        attempt = self._short_video_attempt(source)
        calls = 0

        async def staged(prompt: str) -> GenerationOutcome:
            nonlocal calls
            calls += 1
            await _emit(on_stage, STAGE_GENERATING if calls == 1 else STAGE_REGENERATING)
            return await attempt(prompt)

        gated = await generate_with_quality_gate(
            staged, primary, alternate, check=self._quality_check,
        )
        used_prompt = alternate if gated.regenerated else primary
        if not isinstance(gated.outcome, Generated):
            return ShortVideoResult(
                recipe_id=recipe.recipe_id,
                success=False,
                prompt=used_prompt,
                regenerated=gated.regenerated,
                error=gated.outcome.reason,
            )

        await _emit(on_stage, STAGE_STORING)
        stored = await self._store_short_video(recipe.recipe_id, gated.outcome, used_prompt)
        if isinstance(stored, ShortVideoResult):
            stored.regenerated = gated.regenerated
            return stored

        charged = self.ledger.record_success(user_id, "video", tier)
        await _emit(on_stage, STAGE_COMPLETED)
        return ShortVideoResult(
            recipe_id=recipe.recipe_id,
            success=True,
            video_url=stored,
            prompt=used_prompt,
            regenerated=gated.regenerated,
            passed_quality_gate=gated.passed_gate,
            charged=charged,
        )

    async def regenerate_short_video(
        self,
        user_id: str,
        recipe: RecipeInput,
        on_stage: StageCallback | None = None,
    ) -> ShortVideoResult:
        """Replace an existing short video using the alternate prompt. Free of charge.

        Raises:
            ValueError: No short video exists for the recipe yet.
            ValidationError: The recipe's source image is unusable.
        """
        if not self.cache.has_cached(recipe.recipe_id, ArtifactKind.SHORT_VIDEO):
            raise ValueError(f"No short video to regenerate for recipe {recipe.recipe_id}")

        await _emit(on_stage, STAGE_BUILDING_PROMPT)
        source = normalize_source_image(recipe.source_image_url)
        prompt = build_alternate_prompt(recipe.dish_name, recipe.steps, recipe.ingredients)
        logger.info("Regenerating short video for recipe %s (user %s)", recipe.recipe_id, user_id)

        await _emit(on_stage, STAGE_GENERATING)
        outcome = await self._short_video_attempt(source)(prompt)
        if not isinstance(outcome, Generated):
            return ShortVideoResult(
                recipe_id=recipe.recipe_id, success=False, prompt=prompt,
                regenerated=True, error=outcome.reason,
            )

        await _emit(on_stage, STAGE_STORING)
        stored = await self._store_short_video(recipe.recipe_id, outcome, prompt)
        if isinstance(stored, ShortVideoResult):
            stored.regenerated = True
            return stored
        await _emit(on_stage, STAGE_COMPLETED)
        return ShortVideoResult(
            recipe_id=recipe.recipe_id, success=True, video_url=stored,
            prompt=prompt, regenerated=True,
        )

    # ── composite ──────────────────────────────────────────────────────────

    async def compose_final_video(self, recipe_id: str) -> str:
        """Concatenate completed step videos into the composite and store its URL.

        Raises:
            ValueError: Some step video is not completed yet.
            CompositionError: ffmpeg failed.
        """
        existing = self.cache.get_cached(recipe_id, ArtifactKind.FINAL_VIDEO)
        if existing:
            return existing
        if not self.cache.has_cached(recipe_id, ArtifactKind.STEP_VIDEOS):
            raise ValueError(
                f"Step videos for recipe {recipe_id} are not all completed yet"
            )
        steps = self.db.load_steps(recipe_id, ArtifactKind.STEP_VIDEOS.value)
        urls = [s.media_url for s in steps if s.status == StepStatus.COMPLETED and s.media_url]
        url = await compose_and_store(self.composer, self.store, recipe_id, urls)
        self.cache.write_through(recipe_id, ArtifactKind.FINAL_VIDEO, url)
        logger.info("Final video ready for recipe %s", recipe_id)
        return url

    def media_state(self, recipe_id: str) -> RecipeMediaState:
        return self.cache.state(recipe_id)

    async def aclose(self) -> None:
        for resource in (self.provider, self.store):
            close = getattr(resource, "aclose", None)
            if close is not None:
                await close()
        self.db.close()


_pipeline: RecipeMediaPipeline | None = None


def get_pipeline() -> RecipeMediaPipeline:
    """Return the process-wide pipeline, building it from config on first use."""
    global _pipeline
    if _pipeline is None:
        cfg = get_config()
        _pipeline = RecipeMediaPipeline(
            RunwayProvider(cfg),
            make_store(cfg),
            MediaDB(cfg.db_path),
            config=cfg,
        )
    return _pipeline


async def reset_pipeline() -> None:
    """Close and drop the process-wide pipeline."""
    global _pipeline
    if _pipeline is not None:
        await _pipeline.aclose()
        _pipeline = None
