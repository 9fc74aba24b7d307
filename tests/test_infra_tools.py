"""Tests for infrastructure tools."""

from __future__ import annotations

import pytest

import recipe_media_mcp.config as cfg_mod
import recipe_media_mcp.tools.infra as infra_mod
from recipe_media_mcp.models.media import ArtifactKind
from tests.conftest import unwrap_tool

infra_cache = unwrap_tool(infra_mod.infra_cache)
infra_configure = unwrap_tool(infra_mod.infra_configure)


@pytest.fixture(autouse=True)
def _clean_config(monkeypatch):
    monkeypatch.setenv("INFRA_MUTATIONS_ENABLED", "true")
    cfg_mod._config = None
    yield
    cfg_mod._config = None


@pytest.fixture()
def pipeline(monkeypatch, db, fake_provider, fake_store):
    from recipe_media_mcp.pipeline import RecipeMediaPipeline

    p = RecipeMediaPipeline(fake_provider, fake_store, db)
    monkeypatch.setattr(infra_mod, "get_pipeline", lambda: p)
    return p


class TestInfraConfigure:
    async def test_updates_runtime_config(self):
        out = await infra_configure(step_video_model="gen4_turbo", max_retries=4, enrich_prompts=True)
        cfg = out["current_config"]
        assert cfg["step_video_model"] == "gen4_turbo"
        assert cfg["max_retries"] == 4
        assert cfg["enrich_prompts"] is True
        assert cfg_mod.get_config().max_retries == 4

    async def test_redacts_all_secret_fields(self, monkeypatch):
        monkeypatch.setenv("SUPABASE_SERVICE_ROLE_KEY", "supabase-secret")
        monkeypatch.setenv("INFRA_ADMIN_TOKEN", "infra-secret")
        cfg_mod._config = None

        cfg = (await infra_configure())["current_config"]

        for field in ("runway_api_key", "supabase_service_key", "gemini_api_key", "infra_admin_token"):
            assert field not in cfg

    async def test_read_only_call_allowed_when_policy_disabled(self, monkeypatch):
        monkeypatch.setenv("INFRA_MUTATIONS_ENABLED", "false")
        cfg_mod._config = None
        out = await infra_configure()
        assert "current_config" in out

    async def test_mutation_blocked_by_policy(self, monkeypatch):
        monkeypatch.setenv("INFRA_MUTATIONS_ENABLED", "false")
        cfg_mod._config = None
        out = await infra_configure(max_retries=1)
        assert out["category"] == "PERMISSION_DENIED"
        assert "INFRA_MUTATIONS_ENABLED" in out["error"]
        assert cfg_mod.get_config().max_retries == 2

    async def test_admin_token_required_when_configured(self, monkeypatch):
        monkeypatch.setenv("INFRA_ADMIN_TOKEN", "s3cret")
        cfg_mod._config = None
        denied = await infra_configure(max_retries=1, auth_token="wrong")
        allowed = await infra_configure(max_retries=1, auth_token="s3cret")
        assert denied["category"] == "PERMISSION_DENIED"
        assert allowed["current_config"]["max_retries"] == 1

    async def test_invalid_storage_backend_returns_error(self):
        out = await infra_configure(storage_backend="s3")
        assert out["category"] == "INPUT_INVALID"
        assert out["retryable"] is False


class TestInfraCache:
    async def test_stats(self, pipeline):
        out = await infra_cache(action="stats")
        assert out["recipes"] == 0
        assert "db_path" in out

    async def test_clear_recipe(self, pipeline):
        pipeline.cache.write_through("r1", ArtifactKind.SHORT_VIDEO, "https://s/short.mp4")
        out = await infra_cache(action="clear", recipe_id="r1")
        assert out == {"recipe_id": "r1", "removed": 1}
        assert pipeline.media_state("r1").short_video_url is None

    async def test_clear_requires_recipe_id(self, pipeline):
        out = await infra_cache(action="clear")
        assert out["category"] == "INPUT_INVALID"

    async def test_clear_blocked_by_policy(self, pipeline, monkeypatch):
        monkeypatch.setenv("INFRA_MUTATIONS_ENABLED", "false")
        cfg_mod._config = None
        out = await infra_cache(action="clear", recipe_id="r1")
        assert out["category"] == "PERMISSION_DENIED"
