"""Coarse quality gate for single-artifact generations.

A generated video counts as acceptable when its URL answers a HEAD request
with a 2xx status and a ``Content-Length`` of at least ``quality_min_bytes``.
Truncated outputs are tiny, so size is a cheap proxy. An artifact failing the
gate gets exactly one regeneration with the alternate prompt.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable

import httpx
from pydantic import BaseModel

from .config import get_config
from .errors import QualityError
from .models.media import Generated, GenerationOutcome

logger = logging.getLogger(__name__)


class GatedOutcome(BaseModel):
    outcome: GenerationOutcome
    regenerated: bool = False
    passed_gate: bool = False


async def _check(url: str, min_bytes: int, client: httpx.AsyncClient) -> None:
    try:
        resp = await client.head(url, follow_redirects=True)
    except httpx.HTTPError as exc:
        raise QualityError(f"Artifact unreachable: {exc}") from exc
    if not resp.is_success:
        raise QualityError(f"Artifact HEAD returned {resp.status_code}")
    raw = resp.headers.get("content-length")
    if raw is None or not raw.isdigit():
        raise QualityError("Artifact has no Content-Length")
    size = int(raw)
    if size < min_bytes:
        raise QualityError(f"Artifact too small ({size} < {min_bytes} bytes)")


async def passes_quality_check(
    url: str,
    *,
    min_bytes: int | None = None,
    client: httpx.AsyncClient | None = None,
) -> bool:
    """Return True when *url* looks like a complete artifact."""
    threshold = min_bytes if min_bytes is not None else get_config().quality_min_bytes
    owns_client = client is None
    if client is None:
        client = httpx.AsyncClient(timeout=30)
    try:
        await _check(url, threshold, client)
    except QualityError as exc:
        logger.warning("Quality check failed for %s: %s", url, exc)
        return False
    finally:
        if owns_client:
            await client.aclose()
    return True


async def generate_with_quality_gate(
    generate: Callable[[str], Awaitable[GenerationOutcome]],
    primary_prompt: str,
    alternate_prompt: str,
    *,
    check: Callable[[str], Awaitable[bool]] = passes_quality_check,
) -> GatedOutcome:
    """Generate with *primary_prompt*; regenerate once with *alternate_prompt* if gated out.

    A first attempt that failed outright is returned as-is (the controller has
    already retried). The regenerated result is accepted without another check.
    """
    first = await generate(primary_prompt)
    if not isinstance(first, Generated):
        return GatedOutcome(outcome=first)
    if await check(first.url):
        return GatedOutcome(outcome=first, passed_gate=True)

    logger.warning("Output failed quality gate, regenerating once with alternate prompt")
    second = await generate(alternate_prompt)
    return GatedOutcome(outcome=second, regenerated=True)
