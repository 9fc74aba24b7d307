"""Tests for the optional MLflow tracing integration."""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import pytest

import recipe_media_mcp.tracing as mod
from recipe_media_mcp.config import _resolve_tracing_enabled


def _make_config(**overrides):
    defaults = {
        "tracing_enabled": True,
        "mlflow_tracking_uri": "http://127.0.0.1:5001",
        "mlflow_experiment_name": "recipe-media-mcp",
        "enrich_prompts": True,
    }
    defaults.update(overrides)
    cfg = MagicMock()
    for k, v in defaults.items():
        setattr(cfg, k, v)
    return cfg


@pytest.fixture()
def fake_mlflow(monkeypatch):
    """Install a mock mlflow module and mark tracing as available."""
    mock_mlflow = MagicMock()
    monkeypatch.setattr(mod, "_HAS_MLFLOW", True)
    monkeypatch.setattr(mod, "mlflow", mock_mlflow, raising=False)
    return mock_mlflow


class TestIsEnabled:
    def test_true_when_installed_and_enabled(self, fake_mlflow):
        with patch("recipe_media_mcp.config.get_config", return_value=_make_config()):
            assert mod.is_enabled() is True

    def test_false_when_not_installed(self, monkeypatch):
        monkeypatch.setattr(mod, "_HAS_MLFLOW", False)
        assert mod.is_enabled() is False

    def test_false_when_config_disabled(self, fake_mlflow):
        cfg = _make_config(tracing_enabled=False)
        with patch("recipe_media_mcp.config.get_config", return_value=cfg):
            assert mod.is_enabled() is False


class TestTraceDecorator:
    def test_identity_when_disabled(self, monkeypatch):
        monkeypatch.setattr(mod, "_HAS_MLFLOW", False)

        async def tool():
            return 1

        assert mod.trace(name="media_state", span_type="TOOL")(tool) is tool

    def test_wraps_with_mlflow_when_enabled(self, fake_mlflow):
        with patch("recipe_media_mcp.config.get_config", return_value=_make_config()):
            mod.trace(name="media_state", span_type="TOOL")
        fake_mlflow.trace.assert_called_once_with(name="media_state", span_type="TOOL")


class TestSetupAndShutdown:
    def test_setup_configures_tracking(self, fake_mlflow):
        cfg = _make_config(mlflow_experiment_name="kitchen")
        with patch("recipe_media_mcp.config.get_config", return_value=cfg):
            mod.setup()
        fake_mlflow.set_tracking_uri.assert_called_once_with("http://127.0.0.1:5001")
        fake_mlflow.set_experiment.assert_called_once_with("kitchen")
        fake_mlflow.gemini.autolog.assert_called_once()

    def test_setup_skips_gemini_autolog_without_enrichment(self, fake_mlflow):
        cfg = _make_config(enrich_prompts=False)
        with patch("recipe_media_mcp.config.get_config", return_value=cfg):
            mod.setup()
        fake_mlflow.set_experiment.assert_called_once_with("recipe-media-mcp")
        fake_mlflow.gemini.autolog.assert_not_called()

    def test_setup_failure_does_not_propagate(self, fake_mlflow):
        fake_mlflow.set_experiment.side_effect = Exception("connection refused")
        with patch("recipe_media_mcp.config.get_config", return_value=_make_config()):
            mod.setup()
        fake_mlflow.gemini.autolog.assert_not_called()

    def test_noop_when_disabled(self, fake_mlflow, monkeypatch):
        monkeypatch.setattr(mod, "_HAS_MLFLOW", False)
        mod.setup()
        mod.shutdown()
        fake_mlflow.set_tracking_uri.assert_not_called()
        fake_mlflow.flush_trace_async_logging.assert_not_called()

    def test_shutdown_flushes(self, fake_mlflow):
        with patch("recipe_media_mcp.config.get_config", return_value=_make_config()):
            mod.shutdown()
        fake_mlflow.flush_trace_async_logging.assert_called_once()


@pytest.mark.parametrize("flag,uri,expected", [
    ("", "http://127.0.0.1:5001", True),
    ("", "", False),
    ("false", "http://127.0.0.1:5001", False),
    ("False", "http://127.0.0.1:5001", False),
    ("true", "http://127.0.0.1:5001", True),
    ("true", "", False),
])
def test_resolve_tracing_enabled(flag, uri, expected):
    assert _resolve_tracing_enabled(flag, uri) is expected
