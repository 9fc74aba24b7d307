"""Retry and polling for long-running generation tasks.

Two layers:

1. ``with_retry`` — jittered exponential backoff for transient HTTP errors on
   idempotent calls (task polls, storage uploads).
2. ``wait_for_task`` + ``run_with_retry`` — the per-generation controller:
   poll one task to a terminal state within a time budget, and repeat whole
   submit-and-wait attempts with fixed exponential backoff, yielding a
   tagged ``Generated | GenerationFailed`` instead of raising.
"""

from __future__ import annotations

import asyncio
import logging
import math
import random
import time
from collections.abc import Awaitable, Callable
from typing import Protocol, TypeVar

import httpx

from .config import get_config
from .errors import GenerationTimeoutError, ProviderError, ValidationError
from .models.media import (
    Generated,
    GenerationFailed,
    GenerationOutcome,
    GenerationTask,
    TaskPoll,
    TaskStatus,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

_RETRYABLE_PATTERNS: tuple[str, ...] = (
    "429",
    "quota",
    "resource_exhausted",
    "timeout",
    "503",
    "service unavailable",
)


class TaskPoller(Protocol):
    async def poll(self, task_id: str) -> TaskPoll: ...


def _is_retryable(exc: Exception) -> bool:
    """Check if an exception message matches known transient patterns."""
    msg = str(exc).lower()
    return any(p in msg for p in _RETRYABLE_PATTERNS)


async def with_retry(coro_factory: Callable[[], Awaitable[T]]) -> T:
    """Execute an async callable with exponential backoff on transient errors.

    Args:
        coro_factory: Zero-arg callable that returns a fresh awaitable each attempt.

    Returns:
        The result of the first successful call.

    Raises:
        The last exception if all attempts are exhausted or non-retryable.
    """
    cfg = get_config()
    max_attempts = cfg.retry_max_attempts
    base_delay = cfg.retry_base_delay
    max_delay = cfg.retry_max_delay

    last_exc: Exception | None = None
    for attempt in range(max_attempts):
        try:
            return await coro_factory()
        except Exception as exc:
            last_exc = exc
            if not _is_retryable(exc) or attempt == max_attempts - 1:
                raise
            delay = min(base_delay * (2 ** attempt) + random.random(), max_delay)
            logger.warning(
                "Retry %d/%d after %.1fs: %s", attempt + 1, max_attempts, delay, exc,
            )
            await asyncio.sleep(delay)
    raise last_exc  # unreachable but satisfies type checker


async def wait_for_task(
    provider: TaskPoller,
    task_id: str,
    *,
    timeout: float = 180.0,
    poll_interval: float = 5.0,
    task: GenerationTask | None = None,
) -> str:
    """Poll *task_id* until it reaches a terminal status.

    The first poll happens immediately. The loop is bounded both by wall
    clock and by ``ceil(timeout / poll_interval)`` extra polls. When *task*
    is given, its ``status`` and ``last_error`` follow every poll.

    Returns:
        The output URL of the succeeded task.

    Raises:
        ProviderError: Task failed, was cancelled, or succeeded without output.
        GenerationTimeoutError: No terminal status within *timeout*.
    """
    deadline = time.monotonic() + timeout
    max_polls = max(1, math.ceil(timeout / poll_interval))
    last_error = ""

    for poll_no in range(max_polls + 1):
        try:
            result = await provider.poll(task_id)
        except (ProviderError, httpx.HTTPError) as exc:
            last_error = str(exc) or type(exc).__name__
            logger.warning("Poll %d for task %s failed: %s", poll_no + 1, task_id, exc)
        else:
            if task is not None:
                task.status = result.status
            if result.status.is_terminal:
                if result.status != TaskStatus.SUCCEEDED:
                    last_error = result.failure_reason or result.status.value
                elif not result.output_url:
                    last_error = "succeeded without an output URL"
                else:
                    logger.info("Task %s succeeded after %d poll(s)", task_id, poll_no + 1)
                    return result.output_url
                if task is not None:
                    task.last_error = last_error
                raise ProviderError(f"Task {task_id} {result.status.value}: {last_error}")
            logger.debug("Task %s is %s (progress=%s)", task_id, result.status.value, result.progress)

        if task is not None:
            task.last_error = last_error
        if poll_no == max_polls or time.monotonic() >= deadline:
            break
        await asyncio.sleep(poll_interval)

    raise GenerationTimeoutError(task_id, timeout, last_error=last_error)


async def run_with_retry(
    attempt_fn: Callable[..., Awaitable[str]],
    *,
    max_retries: int = 2,
    backoff_base: float = 5.0,
    label: str = "generation",
) -> GenerationOutcome:
    """Run *attempt_fn* up to ``max_retries + 1`` times.

    Each call receives the 1-based attempt number as the ``attempt`` keyword.
    After a failed attempt with attempts left, sleeps ``backoff_base * 2**n``
    where n is the zero-based index of the failed attempt (5s, 10s, 20s...).
    Provider, timeout and transport errors are absorbed into
    :class:`GenerationFailed`; input validation errors propagate.

    Raises:
        ValidationError: From *attempt_fn*, never retried.
        ValueError: If *max_retries* is negative or *backoff_base* not positive.
    """
    if max_retries < 0:
        raise ValueError("max_retries must be >= 0")
    if backoff_base <= 0:
        raise ValueError("backoff_base must be > 0")

    total = max_retries + 1
    reason = ""
    for attempt in range(total):
        try:
            url = await attempt_fn(attempt=attempt + 1)
            if attempt:
                logger.info("%s succeeded on attempt %d/%d", label, attempt + 1, total)
            return Generated(url=url, attempts=attempt + 1)
        except ValidationError:
            raise
        except (ProviderError, GenerationTimeoutError, httpx.HTTPError) as exc:
            reason = str(exc) or type(exc).__name__
            logger.warning("%s attempt %d/%d failed: %s", label, attempt + 1, total, reason)
        if attempt < total - 1:
            delay = backoff_base * (2 ** attempt)
            logger.info("%s backing off %.0fs before retry", label, delay)
            await asyncio.sleep(delay)

    return GenerationFailed(reason=reason, attempts=total)
