"""Generation provider client (Runway-compatible REST API).

``submit`` starts one paid remote job and is never retried automatically;
``poll`` is an idempotent read and goes through :func:`retry.with_retry`.
"""

from __future__ import annotations

import logging
from typing import Protocol

import httpx

from .config import ServerConfig, get_config
from .errors import ProviderError, ValidationError
from .models.media import GenerationTask, MediaKind, TaskPoll, TaskStatus
from .retry import wait_for_task, with_retry
from .url_policy import normalize_source_image

logger = logging.getLogger(__name__)

_ENDPOINTS = {
    MediaKind.IMAGE_FROM_TEXT: "/v1/text_to_image",
    MediaKind.IMAGE_TO_VIDEO: "/v1/image_to_video",
}


def _json_object(resp: httpx.Response, action: str) -> dict:
    """Decode a 2xx body, which must be a JSON object."""
    try:
        data = resp.json()
    except ValueError as exc:
        raise ProviderError(
            f"{action} returned a non-JSON body ({resp.status_code}): {resp.text[:200]}"
        ) from exc
    if not isinstance(data, dict):
        raise ProviderError(f"{action} returned {type(data).__name__}, expected an object")
    return data


class GenerationProvider(Protocol):
    """The two calls the engine needs from any provider."""

    async def submit(
        self,
        kind: MediaKind,
        *,
        prompt: str,
        source_image_url: str | None = None,
        duration_seconds: int | None = None,
        aspect_ratio: str | None = None,
        model: str | None = None,
    ) -> str: ...

    async def poll(self, task_id: str) -> TaskPoll: ...


class RunwayProvider:
    """Async client for the provider's task API."""

    def __init__(
        self,
        config: ServerConfig | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._cfg = config or get_config()
        self._client = httpx.AsyncClient(
            base_url=self._cfg.runway_base_url,
            headers={
                "Authorization": f"Bearer {self._cfg.runway_api_key}",
                "X-Runway-Version": self._cfg.runway_api_version,
                "Content-Type": "application/json",
            },
            timeout=httpx.Timeout(30.0, connect=10.0),
            transport=transport,
        )

    def _default_model(self, kind: MediaKind) -> str:
        if kind == MediaKind.IMAGE_FROM_TEXT:
            return self._cfg.image_model
        return self._cfg.step_video_model

    def _build_body(
        self,
        kind: MediaKind,
        prompt: str,
        source_image_url: str | None,
        duration_seconds: int | None,
        aspect_ratio: str | None,
        model: str | None,
    ) -> dict:
        body: dict = {
            "model": model or self._default_model(kind),
            "promptText": prompt,
        }
        if kind == MediaKind.IMAGE_TO_VIDEO:
            body["promptImage"] = normalize_source_image(source_image_url)
            body["duration"] = duration_seconds or self._cfg.step_video_duration
            body["ratio"] = aspect_ratio or self._cfg.step_video_ratio
        else:
            body["ratio"] = aspect_ratio or self._cfg.image_ratio
        return body

    async def submit(
        self,
        kind: MediaKind,
        *,
        prompt: str,
        source_image_url: str | None = None,
        duration_seconds: int | None = None,
        aspect_ratio: str | None = None,
        model: str | None = None,
    ) -> str:
        """Start a generation task and return its id.

        Raises:
            ValidationError: Empty prompt or unacceptable source image.
            ProviderError: Transport failure or HTTP >= 400.
        """
        if not prompt or not prompt.strip():
            raise ValidationError("Prompt must not be empty")
        body = self._build_body(
            kind, prompt, source_image_url, duration_seconds, aspect_ratio, model,
        )
        try:
            resp = await self._client.post(_ENDPOINTS[kind], json=body)
        except httpx.HTTPError as exc:
            raise ProviderError(f"Submit failed: {exc}") from exc
        if resp.status_code >= 400:
            raise ProviderError(
                f"Submit rejected ({resp.status_code}): {resp.text[:200]}",
                status_code=resp.status_code,
            )
        task_id = _json_object(resp, "Submit").get("id")
        if not task_id or not isinstance(task_id, str):
            raise ProviderError("Submit response carried no task id")
        logger.info("Created %s task %s (model=%s)", kind.value, task_id, body["model"])
        return task_id

    async def _get_task(self, task_id: str) -> dict:
        try:
            resp = await self._client.get(f"/v1/tasks/{task_id}")
        except httpx.HTTPError as exc:
            raise ProviderError(f"Poll failed: {exc}") from exc
        if resp.status_code >= 400:
            raise ProviderError(
                f"Poll rejected ({resp.status_code}): {resp.text[:200]}",
                status_code=resp.status_code,
            )
        return _json_object(resp, "Poll")

    async def poll(self, task_id: str) -> TaskPoll:
        """Read the task's current status. Terminal failures are returned, not raised.

        Raises:
            ProviderError: Transport failure, HTTP >= 400, or a body that does
                not look like a task.
        """
        data = await with_retry(lambda: self._get_task(task_id))
        output = data.get("output") or []
        if not isinstance(output, list) or not all(isinstance(u, str) for u in output):
            raise ProviderError(
                f"Poll for task {task_id} returned malformed output: {output!r:.200}"
            )
        failure = data.get("failure") or data.get("failureCode")
        try:
            return TaskPoll(
                status=TaskStatus.from_provider(data.get("status")),
                output_url=output[0] if output else None,
                failure_reason=str(failure) if failure else None,
                progress=data.get("progress"),
            )
        except ValueError as exc:
            raise ProviderError(
                f"Poll for task {task_id} returned an unreadable task: {exc}"
            ) from exc

    async def aclose(self) -> None:
        await self._client.aclose()


async def submit_and_wait(
    provider: GenerationProvider,
    kind: MediaKind,
    prompt: str,
    *,
    source_image_url: str | None = None,
    duration_seconds: int | None = None,
    aspect_ratio: str | None = None,
    model: str | None = None,
    timeout: float | None = None,
    poll_interval: float | None = None,
    attempt: int = 1,
) -> str:
    """Submit one task and block (cooperatively) until it yields an output URL.

    *attempt* is the retry controller's 1-based attempt number; it is only
    recorded on the :class:`GenerationTask` for this submission.
    """
    cfg = get_config()
    task_id = await provider.submit(
        kind,
        prompt=prompt,
        source_image_url=source_image_url,
        duration_seconds=duration_seconds,
        aspect_ratio=aspect_ratio,
        model=model,
    )
    task = GenerationTask(id=task_id, kind=kind, attempt=attempt)
    try:
        return await wait_for_task(
            provider,
            task_id,
            timeout=timeout or cfg.attempt_timeout_seconds,
            poll_interval=poll_interval or cfg.poll_interval_seconds,
            task=task,
        )
    finally:
        logger.debug(
            "Task %s (attempt %d) ended %s after %.1fs",
            task.id, task.attempt, task.status.value, task.elapsed_seconds,
        )
