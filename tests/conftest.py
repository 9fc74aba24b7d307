"""Shared test fixtures for recipe-media-mcp."""

from __future__ import annotations

import itertools
from collections.abc import Callable
from typing import Any
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from recipe_media_mcp.config import ServerConfig
from recipe_media_mcp.models.media import MediaKind, TaskPoll, TaskStatus
from recipe_media_mcp.persistence import MediaDB


def unwrap_tool(tool: Any) -> Any:
    """Extract the raw coroutine from a FastMCP FunctionTool, if wrapped.

    FastMCP 2.x wraps @server.tool functions in FunctionTool (not callable).
    FastMCP 3.x preserves the original function. This helper works with both.
    """
    return getattr(tool, "fn", tool)


@pytest.fixture(autouse=True, scope="session")
def _unwrap_fastmcp_tools():
    """Patch tool modules so FunctionTool objects become directly callable."""
    import importlib
    import pkgutil

    import recipe_media_mcp.tools as tools_pkg

    modules = [
        importlib.import_module(info.name)
        for info in pkgutil.walk_packages(tools_pkg.__path__, tools_pkg.__name__ + ".")
    ]
    for mod in modules:
        for name in list(vars(mod)):
            obj = getattr(mod, name, None)
            if obj is not None and hasattr(obj, "fn") and not callable(obj):
                setattr(mod, name, obj.fn)


@pytest.fixture(autouse=True)
def _set_dummy_api_keys(monkeypatch):
    """Ensure tests never hit the real provider or Gemini."""
    monkeypatch.setenv("RUNWAY_API_KEY", "runway-test-key")
    monkeypatch.setenv("GEMINI_API_KEY", "test-key-not-real")


@pytest.fixture(autouse=True)
def _disable_tracing(monkeypatch):
    """Disable MLflow tracing in all tests to avoid real tracking-server calls."""
    monkeypatch.setenv("RECIPE_MEDIA_TRACING_ENABLED", "false")


@pytest.fixture(autouse=True)
def _isolate_dotenv(tmp_path, monkeypatch):
    """Prevent tests from loading the user's real ~/.config/recipe-media-mcp/.env."""
    monkeypatch.setattr(
        "recipe_media_mcp.dotenv.DEFAULT_ENV_PATH",
        tmp_path / "nonexistent.env",
    )


@pytest.fixture(autouse=True)
def _isolate_storage(tmp_path, monkeypatch):
    """Point the SQLite database and local object store at a temp directory."""
    monkeypatch.setenv("RECIPE_MEDIA_DB", str(tmp_path / "media.db"))
    monkeypatch.setenv("RECIPE_MEDIA_LOCAL_STORAGE_DIR", str(tmp_path / "objects"))
    monkeypatch.setenv("RECIPE_MEDIA_STORAGE", "local")


@pytest.fixture()
def clean_config():
    """Reset the config singleton between tests."""
    import recipe_media_mcp.config as cfg_mod

    cfg_mod._config = None
    yield
    cfg_mod._config = None


@pytest.fixture()
def db(tmp_path):
    d = MediaDB(str(tmp_path / "test_media.db"))
    yield d
    d.close()


@pytest.fixture()
def config():
    return ServerConfig()


@pytest.fixture()
def no_sleep():
    """Replace asyncio.sleep in the retry/poll loops with an AsyncMock."""
    with patch("recipe_media_mcp.retry.asyncio.sleep", new_callable=AsyncMock) as mock_sleep:
        yield mock_sleep


@pytest.fixture()
def fake_download():
    """Skip the real download of provider outputs during persistence."""
    with patch(
        "recipe_media_mcp.storage.download_bytes",
        new_callable=AsyncMock,
        return_value=b"generated-media",
    ) as mock_download:
        yield mock_download


class FakeProvider:
    """Scripted provider: every task succeeds unless a rule says otherwise.

    ``fail_when`` / ``hang_when`` receive the submitted prompt; a matching
    task ends FAILED or stays RUNNING forever (forcing a timeout).
    """

    def __init__(
        self,
        *,
        fail_when: Callable[[str], bool] | None = None,
        hang_when: Callable[[str], bool] | None = None,
        output_url: Callable[[str], str] | None = None,
    ) -> None:
        self.fail_when = fail_when or (lambda prompt: False)
        self.hang_when = hang_when or (lambda prompt: False)
        self.output_url = output_url or (lambda task_id: f"https://cdn.example.com/{task_id}.mp4")
        self.submissions: list[dict] = []
        self.polls: list[str] = []
        self._ids = itertools.count(1)
        self._prompts: dict[str, str] = {}

    async def submit(self, kind: MediaKind, *, prompt: str, **kwargs) -> str:
        task_id = f"task-{next(self._ids)}"
        self.submissions.append({"kind": kind, "prompt": prompt, "task_id": task_id, **kwargs})
        self._prompts[task_id] = prompt
        return task_id

    async def poll(self, task_id: str) -> TaskPoll:
        self.polls.append(task_id)
        prompt = self._prompts[task_id]
        if self.hang_when(prompt):
            return TaskPoll(status=TaskStatus.RUNNING, progress=0.5)
        if self.fail_when(prompt):
            return TaskPoll(status=TaskStatus.FAILED, failure_reason="content moderation")
        return TaskPoll(status=TaskStatus.SUCCEEDED, output_url=self.output_url(task_id))


class FakeStore:
    """In-memory object store returning deterministic public URLs."""

    def __init__(self) -> None:
        self.objects: dict[str, bytes] = {}

    async def put(self, key: str, data: bytes, content_type: str) -> str:
        self.objects[key] = data
        return f"https://storage.example.com/{key}"


@pytest.fixture()
def fake_provider():
    return FakeProvider()


@pytest.fixture()
def fake_store():
    return FakeStore()


@pytest.fixture()
def mock_gemini_client():
    """Patch GeminiClient.get(), .generate(), and .generate_structured() for unit tests."""
    with (
        patch("recipe_media_mcp.client.GeminiClient.get") as mock_get,
        patch(
            "recipe_media_mcp.client.GeminiClient.generate", new_callable=AsyncMock
        ) as mock_gen,
        patch(
            "recipe_media_mcp.client.GeminiClient.generate_structured",
            new_callable=AsyncMock,
        ) as mock_structured,
    ):
        client = MagicMock()
        mock_get.return_value = client
        yield {
            "get": mock_get,
            "generate": mock_gen,
            "generate_structured": mock_structured,
            "client": client,
        }
