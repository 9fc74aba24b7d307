"""Composite video assembly — concatenate step videos with ffmpeg.

Step clips share codec and resolution (same model, same ratio), so the
concat demuxer can stream-copy them; re-encoding is the fallback when a
stream copy fails.
"""

from __future__ import annotations

import asyncio
import logging
import shutil
import tempfile
from collections.abc import Sequence
from pathlib import Path
from urllib.parse import unquote, urlparse

from .config import get_config
from .errors import CompositionError
from .storage import VIDEO_MIME, ObjectStore, normalize_key
from .url_policy import download_bytes

logger = logging.getLogger(__name__)


async def _fetch(url: str) -> bytes:
    """Read a stored step video (local ``file://`` or remote HTTPS)."""
    if url.startswith("file://"):
        return Path(unquote(urlparse(url).path)).read_bytes()
    return await download_bytes(url, max_bytes=get_config().max_download_bytes)


class FfmpegComposer:
    """Concatenates step videos in order into one mp4."""

    def __init__(self, ffmpeg_bin: str = "ffmpeg", timeout: float = 300.0) -> None:
        self._bin = ffmpeg_bin
        self._timeout = timeout

    async def _run(self, cmd: list[str]) -> tuple[int, str]:
        process = await asyncio.create_subprocess_exec(
            *cmd,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        try:
            _, stderr = await asyncio.wait_for(process.communicate(), timeout=self._timeout)
        except asyncio.TimeoutError as exc:
            process.kill()
            await process.wait()
            raise CompositionError(f"ffmpeg timed out after {self._timeout:g}s") from exc
        return process.returncode, stderr.decode(errors="replace")

    async def compose(self, urls: Sequence[str]) -> bytes:
        """Download *urls* and return the concatenated mp4 bytes.

        Raises:
            CompositionError: ffmpeg missing, failed, or a clip could not be read.
        """
        if not urls:
            raise CompositionError("No step videos to compose")
        if shutil.which(self._bin) is None:
            raise CompositionError("ffmpeg not found on PATH")

        with tempfile.TemporaryDirectory(prefix="recipe-compose-") as tmp:
            workdir = Path(tmp)
            concat_file = workdir / "concat_list.txt"
            lines = []
            for i, url in enumerate(urls):
                clip = workdir / f"clip_{i:03d}.mp4"
                try:
                    clip.write_bytes(await _fetch(url))
                except Exception as exc:
                    raise CompositionError(f"Could not read step video {i}: {exc}") from exc
                lines.append(f"file '{clip}'\n")
            concat_file.write_text("".join(lines), encoding="utf-8")

            output = workdir / "final.mp4"
            base = [self._bin, "-y", "-f", "concat", "-safe", "0", "-i", str(concat_file)]
            code, stderr = await self._run([*base, "-c", "copy", str(output)])
            if code != 0:
                logger.warning("Stream-copy concat failed, re-encoding: %s", stderr[-500:])
                code, stderr = await self._run(
                    [*base, "-c:v", "libx264", "-c:a", "aac", str(output)]
                )
            if code != 0 or not output.exists():
                raise CompositionError(f"ffmpeg concat failed: {stderr[-500:]}")
            data = output.read_bytes()

        logger.info("Composed %d step video(s) into %d bytes", len(urls), len(data))
        return data


async def compose_and_store(
    composer: FfmpegComposer,
    store: ObjectStore,
    recipe_id: str,
    urls: Sequence[str],
) -> str:
    """Return the composite's permanent URL; a single clip is used as-is."""
    if len(urls) == 1:
        return urls[0]
    data = await composer.compose(urls)
    return await store.put(normalize_key(f"final-videos/{recipe_id}/final.mp4"), data, VIDEO_MIME)
