"""Tests for the recipe media and credit tools."""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest
from fastmcp import Client

import recipe_media_mcp.config as cfg_mod
import recipe_media_mcp.tools.credits as credits_mod
import recipe_media_mcp.tools.media as media_mod
from recipe_media_mcp.pipeline import RecipeMediaPipeline
from tests.conftest import unwrap_tool

generate_step_photos = unwrap_tool(media_mod.media_generate_step_photos)
generate_step_videos = unwrap_tool(media_mod.media_generate_step_videos)
generate_short_video = unwrap_tool(media_mod.media_generate_short_video)
regenerate_short_video = unwrap_tool(media_mod.media_regenerate_short_video)
compose_final_video = unwrap_tool(media_mod.media_compose_final_video)
media_state = unwrap_tool(media_mod.media_state)
credits_check = unwrap_tool(credits_mod.credits_check)
credits_balance = unwrap_tool(credits_mod.credits_balance)
credits_add = unwrap_tool(credits_mod.credits_add)

HERO = "https://images.example.com/ramen.jpg"


@pytest.fixture(autouse=True)
def _clean_config():
    cfg_mod._config = None
    yield
    cfg_mod._config = None


@pytest.fixture()
def pipeline(monkeypatch, db, fake_provider, fake_store):
    p = RecipeMediaPipeline(
        fake_provider, fake_store, db, quality_check=AsyncMock(return_value=True),
    )
    monkeypatch.setattr(media_mod, "get_pipeline", lambda: p)
    monkeypatch.setattr(credits_mod, "get_pipeline", lambda: p)
    return p


class TestStepTools:
    async def test_denial_is_a_value(self, pipeline):
        out = await generate_step_photos(
            user_id="u1", recipe_id="r1", dish_name="Ramen", steps=["Boil the noodles"],
        )
        assert out["denied"] is True
        assert out["allowed"] is False
        assert "photo credits" in out["message"]

    async def test_steps_as_newline_string(self, pipeline, no_sleep, fake_download):
        pipeline.ledger.add_credits("u1", photo=1)
        out = await generate_step_photos(
            user_id="u1", recipe_id="r1", dish_name="Ramen",
            steps="Boil the noodles\n\nSlice the pork\nAssemble the bowl",
        )
        assert out["status"] == "completed"
        assert out["summary"] == "generated 3 of 3 step photos"
        assert out["charged"] is True

    async def test_steps_as_json_string(self, pipeline, no_sleep, fake_download):
        pipeline.ledger.add_credits("u1", video=1)
        out = await generate_step_videos(
            user_id="u1", recipe_id="r1", dish_name="Ramen", source_image_url=HERO,
            steps='[{"instruction": "Boil the noodles"}, {"text": "Simmer the broth"}]',
        )
        assert out["summary"] == "generated 2 of 2 step videos"
        assert out["items"][1]["status"] == "completed"

    async def test_local_source_image_returns_input_error(self, pipeline, fake_provider):
        pipeline.ledger.add_credits("u1", video=1)
        out = await generate_step_videos(
            user_id="u1", recipe_id="r1", dish_name="Ramen",
            source_image_url="/home/me/ramen.jpg", steps=["Boil"],
        )
        assert out["category"] == "INPUT_INVALID"
        assert fake_provider.submissions == []


class TestShortVideoTools:
    async def test_generate_then_regenerate(self, pipeline, no_sleep, fake_download):
        pipeline.ledger.add_credits("u1", video=1)
        first = await generate_short_video(
            user_id="u1", recipe_id="r1", dish_name="Ramen", source_image_url=HERO,
            steps=["Simmer the broth"], ingredients="pork, egg, scallion", cuisine="Japanese",
        )
        again = await regenerate_short_video(
            user_id="u1", recipe_id="r1", dish_name="Ramen", source_image_url=HERO,
            steps=["Simmer the broth"],
        )
        assert first["success"] is True
        assert first["charged"] is True
        assert "minimalist zen" in first["prompt"]
        assert again["regenerated"] is True
        assert again["charged"] is False

    async def test_regenerate_without_video_is_input_error(self, pipeline):
        out = await regenerate_short_video(
            user_id="u1", recipe_id="r1", dish_name="Ramen", source_image_url=HERO,
            steps=["Simmer"],
        )
        assert out["category"] == "INPUT_INVALID"


class TestComposeAndState:
    async def test_compose_refused_then_state(self, pipeline):
        out = await compose_final_video(recipe_id="r1")
        assert out["category"] == "INPUT_INVALID"
        assert "not all completed" in out["error"]

    async def test_state_after_generation(self, pipeline, no_sleep, fake_download):
        pipeline.ledger.add_credits("u1", video=1)
        await generate_step_videos(
            user_id="u1", recipe_id="r1", dish_name="Ramen", source_image_url=HERO,
            steps=["Boil the noodles"],
        )
        composed = await compose_final_video(recipe_id="r1")
        doc = await media_state(recipe_id="r1")

        assert composed["final_video_url"] == doc["finalVideoUrl"]
        assert doc["recipeId"] == "r1"
        assert doc["stepVideos"][0]["status"] == "completed"
        assert doc["generatedAt"] is not None


class TestCreditTools:
    async def test_check_and_balance(self, pipeline):
        check = await credits_check(user_id="u1", kind="photo", tier="unlimited")
        balance = await credits_balance(user_id="u1")
        assert check["allowed"] is True
        assert check["remaining"] == 999
        assert balance["video_credits"] == 0
        assert balance["monthly_video_limit"] == 50

    async def test_add_blocked_by_default(self, pipeline):
        out = await credits_add(user_id="u1", video=3)
        assert out["category"] == "PERMISSION_DENIED"

    async def test_add_when_enabled(self, pipeline, monkeypatch):
        monkeypatch.setenv("INFRA_MUTATIONS_ENABLED", "true")
        cfg_mod._config = None
        out = await credits_add(user_id="u1", photo=2, video=3)
        assert out["photo_credits"] == 2
        assert out["video_credits"] == 3


async def test_credit_reads_are_not_advertised_read_only():
    """Checking or reading a balance may create the account and roll the month."""
    async with Client(credits_mod.credits_server) as client:
        tools = {tool.name: tool for tool in await client.list_tools()}
    for name in ("credits_check", "credits_balance"):
        assert tools[name].annotations.readOnlyHint is False
        assert tools[name].annotations.idempotentHint is True
