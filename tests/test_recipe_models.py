"""Tests for recipe input normalization and media models."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from recipe_media_mcp.models.media import (
    ArtifactKind,
    BatchResult,
    RecipeMediaState,
    StepMediaResult,
    StepStatus,
    TaskStatus,
)
from recipe_media_mcp.models.recipe import MAX_RECIPE_STEPS, RecipeInput


class TestRecipeInput:
    def test_mixed_step_shapes(self):
        recipe = RecipeInput(
            recipe_id="r1",
            dish_name="Dal",
            steps=[
                "Rinse the lentils",
                {"text": "Simmer", "duration": 20},
                {"description": "Temper the spices", "duration_seconds": 45},
                {"unrelated": "x"},
                "   ",
            ],
        )
        assert [s.instruction for s in recipe.steps] == ["Rinse the lentils", "Simmer", "Temper the spices"]
        assert recipe.steps[1].duration_seconds == 1200
        assert recipe.steps[2].duration_seconds == 45

    def test_steps_capped(self):
        recipe = RecipeInput(recipe_id="r1", dish_name="Dal", steps=[f"s{i}" for i in range(20)])
        assert len(recipe.steps) == MAX_RECIPE_STEPS

    def test_ingredients(self):
        recipe = RecipeInput(
            recipe_id="r1",
            dish_name="Dal",
            ingredients=["turmeric", {"item": "lentils", "quantity": 200, "unit": "g"}, {}],
        )
        assert [i.name for i in recipe.ingredients] == ["turmeric", "lentils"]
        assert recipe.ingredients[1].amount == "200"
        assert recipe.ingredients[1].unit == "g"

    def test_requires_ids(self):
        with pytest.raises(ValidationError):
            RecipeInput(recipe_id="", dish_name="Dal")


class TestMediaModels:
    @pytest.mark.parametrize("raw,expected", [
        ("SUCCEEDED", TaskStatus.SUCCEEDED),
        ("IN_PROGRESS", TaskStatus.RUNNING),
        ("CANCELED", TaskStatus.CANCELLED),
        ("THROTTLED", TaskStatus.PENDING),
        (None, TaskStatus.PENDING),
    ])
    def test_task_status_from_provider(self, raw, expected):
        assert TaskStatus.from_provider(raw) == expected

    def test_terminal_states(self):
        assert {s for s in TaskStatus if s.is_terminal} == {
            TaskStatus.SUCCEEDED, TaskStatus.FAILED, TaskStatus.CANCELLED,
        }

    def test_batch_summary(self):
        batch = BatchResult(
            recipe_id="r1",
            artifact=ArtifactKind.STEP_IMAGES,
            status="completed",
            items=[
                StepMediaResult(step_index=0, status=StepStatus.COMPLETED, media_url="u"),
                StepMediaResult(step_index=1, status=StepStatus.FAILED),
            ],
        )
        assert batch.summary == "generated 1 of 2 step photos"

    def test_state_document_lists_video_status(self):
        state = RecipeMediaState(
            recipe_id="r1",
            step_videos=[
                StepMediaResult(step_index=0, status=StepStatus.COMPLETED, media_url="u0"),
                StepMediaResult(step_index=1, status=StepStatus.GENERATING),
            ],
        )
        assert state.to_document()["stepVideos"] == [
            {"stepIndex": 0, "videoUrl": "u0", "status": "completed"},
            {"stepIndex": 1, "videoUrl": None, "status": "generating"},
        ]
