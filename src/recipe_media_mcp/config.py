"""Server configuration via environment variables."""

from __future__ import annotations

import os
from pathlib import Path

from pydantic import BaseModel, Field, field_validator

VALID_STORAGE_BACKENDS = {"local", "supabase"}
VALID_THINKING_LEVELS = {"minimal", "low", "medium", "high"}


def _is_env_placeholder(value: str) -> bool:
    """Return True when *value* looks like an unresolved shell placeholder."""
    if value.startswith("${") and value.endswith("}"):
        inner = value[2:-1].strip()
        if ":-" in inner:
            inner = inner.split(":-", 1)[0].strip()
        return bool(inner) and all(ch.isalnum() or ch == "_" for ch in inner)
    if value.startswith("$"):
        inner = value[1:].strip()
        return bool(inner) and all(ch.isalnum() or ch == "_" for ch in inner)
    return False


def _env(name: str, default: str = "") -> str:
    """Read an env var, treating unresolved placeholders as unset."""
    value = os.getenv(name, default).strip()
    if _is_env_placeholder(value):
        return default
    return value


def _env_flag(name: str) -> bool:
    return _env(name).lower() in ("1", "true", "yes")


def _resolve_tracing_enabled(flag_value: str, tracking_uri: str) -> bool:
    """Derive tracing_enabled from env vars.

    - ``RECIPE_MEDIA_TRACING_ENABLED=false`` → always disabled (explicit opt-out).
    - Otherwise enabled when ``MLFLOW_TRACKING_URI`` is non-empty.
    """
    if flag_value.lower() == "false":
        return False
    return bool(tracking_uri)


class ServerConfig(BaseModel):
    """Runtime configuration resolved from environment."""

    runway_api_key: str = Field(default="")
    runway_base_url: str = Field(default="https://api.dev.runwayml.com")
    runway_api_version: str = Field(default="2024-11-06")

    image_model: str = Field(default="gen4_image")
    image_ratio: str = Field(default="1080:1920")
    step_video_model: str = Field(default="gen3a_turbo")
    step_video_ratio: str = Field(default="768:1280")
    step_video_duration: int = Field(default=5)
    short_video_model: str = Field(default="gen4_turbo")
    short_video_ratio: str = Field(default="720:1280")
    short_video_duration: int = Field(default=10)

    poll_interval_seconds: float = Field(default=5.0)
    attempt_timeout_seconds: float = Field(default=180.0)
    short_video_timeout_seconds: float = Field(default=300.0)
    max_retries: int = Field(default=2)
    backoff_base_seconds: float = Field(default=5.0)

    quality_min_bytes: int = Field(default=500_000)
    monthly_video_limit: int = Field(default=50)
    max_download_mb: int = Field(default=200)

    db_path: str = Field(default="")
    storage_backend: str = Field(default="local")
    supabase_url: str = Field(default="")
    supabase_service_key: str = Field(default="")
    storage_bucket: str = Field(default="generated-files")
    local_storage_dir: str = Field(default="")
    public_base_url: str = Field(default="")

    gemini_api_key: str = Field(default="")
    flash_model: str = Field(default="gemini-3-flash-preview")
    enrichment_thinking_level: str = Field(default="low")
    enrich_prompts: bool = Field(default=False)

    retry_max_attempts: int = Field(default=3)
    retry_base_delay: float = Field(default=1.0)
    retry_max_delay: float = Field(default=60.0)

    infra_mutations_enabled: bool = Field(default=False)
    infra_admin_token: str = Field(default="")
    tracing_enabled: bool = Field(default=False)
    mlflow_tracking_uri: str = Field(default="")
    mlflow_experiment_name: str = Field(default="recipe-media-mcp")

    @field_validator("storage_backend")
    @classmethod
    def validate_storage_backend(cls, value: str) -> str:
        backend = value.strip().lower()
        if backend not in VALID_STORAGE_BACKENDS:
            allowed = ", ".join(sorted(VALID_STORAGE_BACKENDS))
            raise ValueError(f"Invalid storage backend '{value}'. Allowed: {allowed}")
        return backend

    @field_validator("enrichment_thinking_level")
    @classmethod
    def validate_thinking_level(cls, value: str) -> str:
        level = value.strip().lower()
        if level not in VALID_THINKING_LEVELS:
            allowed = ", ".join(sorted(VALID_THINKING_LEVELS))
            raise ValueError(f"Invalid thinking level '{value}'. Allowed: {allowed}")
        return level

    @field_validator(
        "step_video_duration",
        "short_video_duration",
        "quality_min_bytes",
        "monthly_video_limit",
        "max_download_mb",
        "retry_max_attempts",
    )
    @classmethod
    def validate_positive_ints(cls, value: int) -> int:
        if value < 1:
            raise ValueError("Configuration values must be >= 1")
        return value

    @field_validator("max_retries")
    @classmethod
    def validate_max_retries(cls, value: int) -> int:
        if value < 0:
            raise ValueError("max_retries must be >= 0")
        return value

    @field_validator(
        "poll_interval_seconds",
        "attempt_timeout_seconds",
        "short_video_timeout_seconds",
        "backoff_base_seconds",
        "retry_base_delay",
        "retry_max_delay",
    )
    @classmethod
    def validate_positive_delays(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("Timing values must be > 0")
        return value

    @property
    def max_download_bytes(self) -> int:
        return self.max_download_mb * 1024 * 1024

    @classmethod
    def from_env(cls) -> ServerConfig:
        """Build config from environment variables."""
        cache_root = Path.home() / ".cache" / "recipe-media-mcp"
        return cls(
            runway_api_key=_env("RUNWAY_API_KEY"),
            runway_base_url=_env("RUNWAY_BASE_URL", "https://api.dev.runwayml.com"),
            runway_api_version=_env("RUNWAY_API_VERSION", "2024-11-06"),
            image_model=_env("RECIPE_MEDIA_IMAGE_MODEL", "gen4_image"),
            image_ratio=_env("RECIPE_MEDIA_IMAGE_RATIO", "1080:1920"),
            step_video_model=_env("RECIPE_MEDIA_STEP_VIDEO_MODEL", "gen3a_turbo"),
            step_video_ratio=_env("RECIPE_MEDIA_STEP_VIDEO_RATIO", "768:1280"),
            step_video_duration=int(_env("RECIPE_MEDIA_STEP_VIDEO_DURATION", "5")),
            short_video_model=_env("RECIPE_MEDIA_SHORT_VIDEO_MODEL", "gen4_turbo"),
            short_video_ratio=_env("RECIPE_MEDIA_SHORT_VIDEO_RATIO", "720:1280"),
            short_video_duration=int(_env("RECIPE_MEDIA_SHORT_VIDEO_DURATION", "10")),
            poll_interval_seconds=float(_env("RECIPE_MEDIA_POLL_INTERVAL", "5")),
            attempt_timeout_seconds=float(_env("RECIPE_MEDIA_ATTEMPT_TIMEOUT", "180")),
            short_video_timeout_seconds=float(_env("RECIPE_MEDIA_SHORT_VIDEO_TIMEOUT", "300")),
            max_retries=int(_env("RECIPE_MEDIA_MAX_RETRIES", "2")),
            backoff_base_seconds=float(_env("RECIPE_MEDIA_BACKOFF_BASE", "5")),
            quality_min_bytes=int(_env("RECIPE_MEDIA_QUALITY_MIN_BYTES", "500000")),
            monthly_video_limit=int(_env("RECIPE_MEDIA_MONTHLY_VIDEO_LIMIT", "50")),
            max_download_mb=int(_env("RECIPE_MEDIA_MAX_DOWNLOAD_MB", "200")),
            db_path=_env("RECIPE_MEDIA_DB", str(cache_root / "media.db")),
            storage_backend=_env("RECIPE_MEDIA_STORAGE", "local"),
            supabase_url=_env("SUPABASE_URL").rstrip("/"),
            supabase_service_key=_env("SUPABASE_SERVICE_ROLE_KEY"),
            storage_bucket=_env("RECIPE_MEDIA_BUCKET", "generated-files"),
            local_storage_dir=_env("RECIPE_MEDIA_LOCAL_STORAGE_DIR", str(cache_root / "objects")),
            public_base_url=_env("RECIPE_MEDIA_PUBLIC_BASE_URL").rstrip("/"),
            gemini_api_key=_env("GEMINI_API_KEY"),
            flash_model=_env("GEMINI_FLASH_MODEL", "gemini-3-flash-preview"),
            enrichment_thinking_level=_env("GEMINI_THINKING_LEVEL", "low"),
            enrich_prompts=_env_flag("RECIPE_MEDIA_ENRICH_PROMPTS"),
            retry_max_attempts=int(_env("RECIPE_MEDIA_RETRY_MAX_ATTEMPTS", "3")),
            retry_base_delay=float(_env("RECIPE_MEDIA_RETRY_BASE_DELAY", "1.0")),
            retry_max_delay=float(_env("RECIPE_MEDIA_RETRY_MAX_DELAY", "60.0")),
            infra_mutations_enabled=_env_flag("INFRA_MUTATIONS_ENABLED"),
            infra_admin_token=_env("INFRA_ADMIN_TOKEN"),
            tracing_enabled=_resolve_tracing_enabled(
                _env("RECIPE_MEDIA_TRACING_ENABLED"),
                _env("MLFLOW_TRACKING_URI"),
            ),
            mlflow_tracking_uri=_env("MLFLOW_TRACKING_URI"),
            mlflow_experiment_name=_env("MLFLOW_EXPERIMENT_NAME", "recipe-media-mcp"),
        )


# Singleton — initialised once on first access.
_config: ServerConfig | None = None


def get_config() -> ServerConfig:
    """Return the global config singleton, creating it on first access.

    Loads ``~/.config/recipe-media-mcp/.env`` before reading env vars.
    Process environment always takes precedence over the config file.
    """
    global _config
    if _config is None:
        import logging

        from .dotenv import load_dotenv

        injected = load_dotenv()
        if injected:
            logger = logging.getLogger(__name__)
            logger.info(
                "Loaded %d var(s) from config: %s",
                len(injected),
                ", ".join(injected.keys()),
            )
        _config = ServerConfig.from_env()
    return _config


def update_config(**overrides: object) -> ServerConfig:
    """Patch the live config (used by the ``infra_configure`` tool)."""
    global _config
    cfg = get_config()
    data = cfg.model_dump()
    data.update({k: v for k, v in overrides.items() if v is not None})
    _config = ServerConfig(**data)
    return _config
