"""Auto-load environment variables from a shared config file.

Loads provider and storage credentials from
``~/.config/recipe-media-mcp/.env`` when they aren't already set in the
process environment, so the server behaves the same regardless of which
MCP host launched it. No external dependencies.
"""

from __future__ import annotations

import os
from pathlib import Path

from .config import _is_env_placeholder

DEFAULT_ENV_PATH = Path.home() / ".config" / "recipe-media-mcp" / ".env"


def _is_unset(value: str | None) -> bool:
    """Return True when the current env value should be treated as unset.

    Blank values and unresolved placeholders (``${RUNWAY_API_KEY}``) that some
    MCP hosts pass through unchanged count as unset, the same way
    :class:`~recipe_media_mcp.config.ServerConfig` reads them.
    """
    if value is None:
        return True
    normalized = value.strip()
    if len(normalized) >= 2 and normalized[0] == normalized[-1] and normalized[0] in ('"', "'"):
        normalized = normalized[1:-1].strip()
    return not normalized or _is_env_placeholder(normalized)


def parse_dotenv(path: Path) -> dict[str, str]:
    """Parse a ``.env`` file into a dict of key-value pairs.

    Supports ``KEY=VALUE``, ``KEY="VALUE"``, ``KEY='VALUE'``,
    ``export KEY=VALUE``, blank lines, and ``#`` comments.
    No variable expansion.
    """
    result: dict[str, str] = {}
    if not path.is_file():
        return result

    for line in path.read_text().splitlines():
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        if line.startswith("export "):
            line = line[len("export ") :]
        if "=" not in line:
            continue
        key, _, value = line.partition("=")
        key = key.strip()
        value = value.strip()
        if len(value) >= 2 and value[0] == value[-1] and value[0] in ('"', "'"):
            value = value[1:-1]
        if key:
            result[key] = value
    return result


def load_dotenv(path: Path | None = None) -> dict[str, str]:
    """Load vars from *path* into ``os.environ`` when existing values are unset.

    Args:
        path: Path to the ``.env`` file. Defaults to :data:`DEFAULT_ENV_PATH`.

    Returns:
        Dict of vars that were actually injected.
    """
    if path is None:
        path = DEFAULT_ENV_PATH
    parsed = parse_dotenv(path)
    injected: dict[str, str] = {}
    for key, value in parsed.items():
        if _is_unset(os.environ.get(key)):
            os.environ[key] = value
            injected[key] = value
    return injected
