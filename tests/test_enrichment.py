"""Tests for optional Gemini step prompt enrichment."""

from __future__ import annotations

import pytest

from recipe_media_mcp.enrichment import (
    EnrichedRecipe,
    EnrichedStep,
    enrich_step_prompts,
    enrichment_enabled,
    fallback_prompts,
)
from recipe_media_mcp.models.recipe import Step
from recipe_media_mcp.prompts.recipe import PROMPT_BUDGET

STEPS = [Step(instruction="Whisk the eggs"), Step(instruction="Fold in the cheese")]


class TestEnrichStepPrompts:
    async def test_uses_enriched_prompts(self, mock_gemini_client):
        mock_gemini_client["generate_structured"].return_value = EnrichedRecipe(steps=[
            EnrichedStep(step_number=1, visual_prompt="Close-up of a whisk blurring through yolks"),
            EnrichedStep(step_number=2, visual_prompt="Spatula folding gruyère into fluffy eggs"),
        ])

        prompts = await enrich_step_prompts("Omelette", STEPS)

        assert prompts == [
            "Close-up of a whisk blurring through yolks",
            "Spatula folding gruyère into fluffy eggs",
        ]
        call = mock_gemini_client["generate_structured"].await_args
        assert call.kwargs["schema"] is EnrichedRecipe
        assert "1. Whisk the eggs" in call.args[0]
        assert "Omelette" in call.args[0]

    async def test_missing_step_falls_back_individually(self, mock_gemini_client):
        mock_gemini_client["generate_structured"].return_value = EnrichedRecipe(steps=[
            EnrichedStep(step_number=2, visual_prompt="x" * 900),
        ])

        prompts = await enrich_step_prompts("Omelette", STEPS)

        assert prompts[0] == fallback_prompts("Omelette", STEPS)[0]
        assert len(prompts[1]) == PROMPT_BUDGET

    async def test_api_error_falls_back(self, mock_gemini_client):
        mock_gemini_client["generate_structured"].side_effect = RuntimeError("quota")
        assert await enrich_step_prompts("Omelette", STEPS) == fallback_prompts("Omelette", STEPS)

    async def test_no_steps(self, mock_gemini_client):
        assert await enrich_step_prompts("Omelette", []) == []
        mock_gemini_client["generate_structured"].assert_not_awaited()


class TestEnrichedStep:
    @pytest.mark.parametrize("raw,expected", [(2, 5), (30, 15), (9.6, 9), ("ten", 8)])
    def test_duration_clamped(self, raw, expected):
        assert EnrichedStep(step_number=1, visual_prompt="p", duration=raw).duration == expected


class TestEnabled:
    def test_disabled_by_default(self, clean_config):
        assert enrichment_enabled() is False

    def test_needs_flag_and_key(self, monkeypatch, clean_config):
        monkeypatch.setenv("RECIPE_MEDIA_ENRICH_PROMPTS", "true")
        assert enrichment_enabled() is True

    def test_no_key(self, monkeypatch, clean_config):
        monkeypatch.setenv("RECIPE_MEDIA_ENRICH_PROMPTS", "true")
        monkeypatch.setenv("GEMINI_API_KEY", "")
        assert enrichment_enabled() is False
