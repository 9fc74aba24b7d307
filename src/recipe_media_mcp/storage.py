"""Object storage for generated media.

Provider output URLs expire, so every generated artifact is downloaded once
and written to permanent storage under a deterministic key before it is
marked complete.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Protocol

import httpx

from .config import ServerConfig, get_config
from .errors import MediaError, PersistenceError
from .retry import with_retry
from .url_policy import download_bytes

logger = logging.getLogger(__name__)

VIDEO_MIME = "video/mp4"
IMAGE_MIME = "image/png"


def normalize_key(key: str) -> str:
    """Strip leading slashes and collapse empty path segments."""
    return "/".join(part for part in key.strip().split("/") if part)


def step_media_key(prefix: str, recipe_id: str, step_index: int, ext: str) -> str:
    return normalize_key(f"{prefix}/{recipe_id}/step_{step_index}.{ext}")


class ObjectStore(Protocol):
    async def put(self, key: str, data: bytes, content_type: str) -> str: ...


class SupabaseStorage:
    """Supabase Storage REST adapter (upsert uploads, public bucket URLs)."""

    def __init__(
        self,
        base_url: str,
        service_key: str,
        bucket: str,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if not base_url or not service_key:
            raise ValueError(
                "Supabase storage needs SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY"
            )
        self._base = base_url.rstrip("/")
        self._bucket = bucket
        self._client = httpx.AsyncClient(
            headers={
                "Authorization": f"Bearer {service_key}",
                "apikey": service_key,
            },
            timeout=httpx.Timeout(120.0, connect=10.0),
            transport=transport,
        )

    def public_url(self, key: str) -> str:
        return f"{self._base}/storage/v1/object/public/{self._bucket}/{normalize_key(key)}"

    async def _upload(self, key: str, data: bytes, content_type: str) -> None:
        resp = await self._client.post(
            f"{self._base}/storage/v1/object/{self._bucket}/{key}",
            content=data,
            headers={"Content-Type": content_type, "x-upsert": "true"},
        )
        resp.raise_for_status()

    async def put(self, key: str, data: bytes, content_type: str) -> str:
        key = normalize_key(key)
        await with_retry(lambda: self._upload(key, data, content_type))
        logger.info("Stored %s (%d bytes) in bucket %s", key, len(data), self._bucket)
        return self.public_url(key)

    async def aclose(self) -> None:
        await self._client.aclose()


class LocalStorage:
    """Directory-backed store for development and self-hosting."""

    def __init__(self, root: str | Path, public_base_url: str = "") -> None:
        self._root = Path(root).expanduser().resolve()
        self._public_base = public_base_url.rstrip("/")

    async def put(self, key: str, data: bytes, content_type: str) -> str:
        key = normalize_key(key)
        path = self._root / key
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
        logger.info("Stored %s (%d bytes, %s) at %s", key, len(data), content_type, path)
        if self._public_base:
            return f"{self._public_base}/{key}"
        return path.as_uri()

    async def aclose(self) -> None:
        return None


def make_store(config: ServerConfig | None = None) -> SupabaseStorage | LocalStorage:
    """Build the configured object store."""
    cfg = config or get_config()
    if cfg.storage_backend == "supabase":
        return SupabaseStorage(cfg.supabase_url, cfg.supabase_service_key, cfg.storage_bucket)
    return LocalStorage(cfg.local_storage_dir, cfg.public_base_url)


async def persist_artifact(
    store: ObjectStore,
    provider_url: str,
    key: str,
    content_type: str,
    *,
    recipe_id: str = "",
    step_index: int | None = None,
) -> str:
    """Download a provider output and write it to permanent storage.

    Raises:
        PersistenceError: Download or upload failed. Carries the provider URL
            so the already-paid artifact can be recovered by hand.
    """
    try:
        data = await download_bytes(provider_url, max_bytes=get_config().max_download_bytes)
        return await store.put(key, data, content_type)
    except (MediaError, httpx.HTTPError, OSError) as exc:
        logger.error(
            "Failed to persist generated artifact (recipe=%s, step=%s, provider_url=%s): %s",
            recipe_id, step_index, provider_url, exc,
        )
        raise PersistenceError(
            f"Could not store {key}: {exc}",
            recipe_id=recipe_id,
            step_index=step_index,
            provider_url=provider_url,
        ) from exc
