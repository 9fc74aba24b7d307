"""Tests for the size-based quality gate and its single regeneration."""

from __future__ import annotations

from unittest.mock import AsyncMock

import httpx
import pytest

from recipe_media_mcp.models.media import Generated, GenerationFailed
from recipe_media_mcp.quality import generate_with_quality_gate, passes_quality_check


def _client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


class TestPassesQualityCheck:
    async def test_large_artifact_passes(self):
        async with _client(lambda r: httpx.Response(200, headers={"content-length": "600000"})) as c:
            assert await passes_quality_check("https://cdn/a.mp4", min_bytes=500_000, client=c)

    async def test_exact_threshold_passes(self):
        async with _client(lambda r: httpx.Response(200, headers={"content-length": "500000"})) as c:
            assert await passes_quality_check("https://cdn/a.mp4", min_bytes=500_000, client=c)

    @pytest.mark.parametrize("response", [
        httpx.Response(200, headers={"content-length": "1024"}),
        httpx.Response(404),
        httpx.Response(200),
    ])
    async def test_rejected(self, response):
        async with _client(lambda r: response) as c:
            assert not await passes_quality_check("https://cdn/a.mp4", min_bytes=500_000, client=c)

    async def test_unreachable_is_rejected(self):
        def handler(request):
            raise httpx.ConnectError("refused")

        async with _client(handler) as c:
            assert not await passes_quality_check("https://cdn/a.mp4", min_bytes=1, client=c)

    async def test_uses_head_request(self):
        methods = []

        def handler(request):
            methods.append(request.method)
            return httpx.Response(200, headers={"content-length": "10"})

        async with _client(handler) as c:
            await passes_quality_check("https://cdn/a.mp4", min_bytes=1, client=c)
        assert methods == ["HEAD"]


class TestQualityGate:
    async def test_passing_first_output_is_kept(self):
        generate = AsyncMock(return_value=Generated(url="https://cdn/1.mp4", attempts=1))
        check = AsyncMock(return_value=True)

        gated = await generate_with_quality_gate(generate, "primary", "alternate", check=check)

        assert gated.passed_gate is True
        assert gated.regenerated is False
        assert gated.outcome.url == "https://cdn/1.mp4"
        generate.assert_awaited_once_with("primary")

    async def test_gated_out_regenerates_exactly_once_with_alternate(self):
        """GIVEN two outputs that both fail the check THEN only one regeneration happens."""
        generate = AsyncMock(side_effect=[
            Generated(url="https://cdn/1.mp4", attempts=1),
            Generated(url="https://cdn/2.mp4", attempts=1),
        ])
        check = AsyncMock(return_value=False)

        gated = await generate_with_quality_gate(generate, "primary", "alternate", check=check)

        assert [c.args[0] for c in generate.await_args_list] == ["primary", "alternate"]
        check.assert_awaited_once_with("https://cdn/1.mp4")
        assert gated.regenerated is True
        assert gated.passed_gate is False
        assert gated.outcome.url == "https://cdn/2.mp4"

    async def test_failed_first_attempt_is_not_regenerated(self):
        generate = AsyncMock(return_value=GenerationFailed(reason="timeout", attempts=3))
        check = AsyncMock()

        gated = await generate_with_quality_gate(generate, "primary", "alternate", check=check)

        assert gated.outcome.ok is False
        assert gated.regenerated is False
        generate.assert_awaited_once()
        check.assert_not_awaited()
