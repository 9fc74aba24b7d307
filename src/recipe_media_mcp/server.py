"""Main FastMCP server — mounts all sub-servers."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastmcp import FastMCP

from . import tracing
from .client import GeminiClient
from .pipeline import reset_pipeline
from .tools.credits import credits_server
from .tools.infra import infra_server
from .tools.media import media_server

logger = logging.getLogger(__name__)


@asynccontextmanager
async def _lifespan(server: FastMCP):
    """Startup/shutdown hook: tracing, provider/storage clients, SQLite."""
    tracing.setup()
    yield {}
    await reset_pipeline()
    closed = await GeminiClient.close_all()
    tracing.shutdown()
    logger.info("Lifespan shutdown: closed %d Gemini client(s)", closed)


app = FastMCP(
    "recipe-media",
    instructions=(
        "Recipe media generation — step photos, step videos, a quality-gated "
        "vertical short video and a composite final video, metered by a "
        "per-user credit ledger."
    ),
    lifespan=_lifespan,
)

app.mount(media_server)
app.mount(credits_server)
app.mount(infra_server)


def main() -> None:
    """Entry-point for ``recipe-media-mcp`` console script."""
    app.run()


if __name__ == "__main__":
    main()
