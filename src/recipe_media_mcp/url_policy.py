"""URL rules for provider inputs and safe download of provider outputs.

Source images sent to the provider must be HTTPS, a ``data:image/`` URI or a
``runway://`` reference; plain HTTP is upgraded, everything else is rejected
before any network call. Downloads of generated media are HTTPS-only, block
private/loopback ranges and stream with a size cap.
"""

from __future__ import annotations

import asyncio
import logging
import socket
from ipaddress import ip_address
from urllib.parse import urlparse

import httpx

from .errors import ValidationError

logger = logging.getLogger(__name__)

ACCEPTED_PREFIXES = ("https://", "data:image/", "runway://")

_BLOCKED_RANGES_MSG = (
    "private, loopback, link-local, multicast, and reserved addresses are not allowed"
)


class UrlPolicyError(ValidationError):
    """Raised when a download URL violates the security policy."""


def normalize_source_image(url: str | None) -> str:
    """Return the provider-ready form of a source image reference.

    Raises:
        ValidationError: For local paths, ``file://``, bare base64 or empty input.
    """
    value = (url or "").strip()
    if not value:
        raise ValidationError("Source image URL is required")
    lowered = value.lower()
    if lowered.startswith(ACCEPTED_PREFIXES):
        return value
    if lowered.startswith("http://"):
        upgraded = "https://" + value[len("http://"):]
        logger.info("Upgraded source image URL to HTTPS: %s", upgraded)
        return upgraded
    if lowered.startswith("file://") or value.startswith(("/", "./", "~")):
        raise ValidationError(
            f"Local file paths are not accepted as source images: {value[:80]}"
        )
    raise ValidationError(
        "Source image must be an https:// URL, a data:image/ URI or a runway:// reference, "
        f"got {value[:40]!r}"
    )


def _is_blocked_ip(ip_str: str) -> bool:
    ip = ip_address(ip_str)
    return (
        ip.is_loopback or ip.is_private or ip.is_link_local
        or ip.is_multicast or ip.is_reserved
    )


async def _resolve_dns(hostname: str) -> list:
    """Resolve hostname via the event loop's threadpool (non-blocking)."""
    loop = asyncio.get_running_loop()
    return await loop.getaddrinfo(
        hostname, None, family=socket.AF_UNSPEC, type=socket.SOCK_STREAM,
    )


async def validate_url(url: str) -> None:
    """Validate a download URL against the security policy.

    Checks:
    - HTTPS scheme only
    - No embedded credentials (userinfo)
    - Hostname present and DNS-resolvable
    - Resolved IPs are not private, loopback, link-local, multicast, or reserved

    Raises:
        UrlPolicyError: If any check fails.
    """
    parsed = urlparse(url)

    if parsed.scheme != "https":
        raise UrlPolicyError(f"Only HTTPS URLs are allowed, got '{parsed.scheme}://'")

    if parsed.username or parsed.password:
        raise UrlPolicyError("URLs with embedded credentials are not allowed")

    hostname = parsed.hostname
    if not hostname:
        raise UrlPolicyError("URL has no hostname")

    try:
        addr_infos = await _resolve_dns(hostname)
    except socket.gaierror as exc:
        raise UrlPolicyError(f"DNS resolution failed for '{hostname}': {exc}") from exc

    for _family, _type, _proto, _canonname, sockaddr in addr_infos:
        ip_str = sockaddr[0]
        if _is_blocked_ip(ip_str):
            raise UrlPolicyError(
                f"URL resolves to blocked IP range ({ip_str}): {_BLOCKED_RANGES_MSG}"
            )


async def download_bytes(
    url: str,
    *,
    max_bytes: int,
    client: httpx.AsyncClient | None = None,
) -> bytes:
    """Download generated media into memory with a size cap.

    Args:
        url: HTTPS URL returned by the provider.
        max_bytes: Maximum response body size in bytes.
        client: Optional shared client; a short-lived one is created otherwise.

    Returns:
        The response body.

    Raises:
        UrlPolicyError: If the URL fails validation or the body exceeds max_bytes.
        httpx.HTTPStatusError: If the server returns an error status.
    """
    await validate_url(url)

    owns_client = client is None
    if client is None:
        client = httpx.AsyncClient(follow_redirects=True, timeout=120)
    try:
        chunks: list[bytes] = []
        accumulated = 0
        async with client.stream("GET", url) as resp:
            resp.raise_for_status()
            async for chunk in resp.aiter_bytes():
                accumulated += len(chunk)
                if accumulated > max_bytes:
                    raise UrlPolicyError(f"Response exceeds size limit ({max_bytes} bytes)")
                chunks.append(chunk)
    finally:
        if owns_client:
            await client.aclose()

    logger.info("Downloaded %s (%d bytes)", url, accumulated)
    return b"".join(chunks)
