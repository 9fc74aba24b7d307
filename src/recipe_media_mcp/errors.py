"""Structured error handling — exception taxonomy, classification, and tool error model."""

from __future__ import annotations

from enum import Enum

import httpx
from pydantic import BaseModel


class MediaError(Exception):
    """Base class for every error raised by the generation engine."""


class ValidationError(MediaError):
    """Malformed input (URL, prompt, recipe) rejected before any network call."""


class ProviderError(MediaError):
    """Transport failure or 4xx/5xx answer from the generation provider."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(message)


class GenerationTimeoutError(MediaError, TimeoutError):
    """No terminal task status within the per-attempt budget."""

    def __init__(self, task_id: str, timeout: float, *, last_error: str = "") -> None:
        self.task_id = task_id
        self.timeout = timeout
        self.last_error = last_error
        message = f"Task {task_id} timed out after {timeout:g}s"
        if last_error:
            message += f" (last poll error: {last_error})"
        super().__init__(message)


class QualityError(MediaError):
    """Generated artifact failed the size/reachability heuristic."""


class PersistenceError(MediaError):
    """Storage write failed after a generation was already paid for."""

    def __init__(
        self,
        message: str,
        *,
        recipe_id: str = "",
        step_index: int | None = None,
        provider_url: str = "",
    ) -> None:
        self.recipe_id = recipe_id
        self.step_index = step_index
        self.provider_url = provider_url
        super().__init__(message)


class CompositionError(MediaError):
    """Concatenating step videos into the composite failed."""


class ErrorCategory(str, Enum):
    """Categories of errors for diagnostics."""

    INPUT_INVALID = "INPUT_INVALID"
    PROVIDER_AUTH = "PROVIDER_AUTH"
    PROVIDER_QUOTA_EXCEEDED = "PROVIDER_QUOTA_EXCEEDED"
    PROVIDER_ERROR = "PROVIDER_ERROR"
    GENERATION_TIMEOUT = "GENERATION_TIMEOUT"
    QUALITY_GATE_FAILED = "QUALITY_GATE_FAILED"
    PERSISTENCE_FAILED = "PERSISTENCE_FAILED"
    COMPOSITION_FAILED = "COMPOSITION_FAILED"
    PERMISSION_DENIED = "PERMISSION_DENIED"
    NETWORK_ERROR = "NETWORK_ERROR"
    UNKNOWN = "UNKNOWN"


class ToolError(BaseModel):
    """Structured error returned from any tool."""

    error: str
    category: str
    hint: str
    retryable: bool = False
    retry_after_seconds: int | None = None


def categorize_error(error: Exception) -> tuple[ErrorCategory, str]:
    """Map an exception to an ErrorCategory + human-readable hint."""
    s = str(error).lower()

    if isinstance(error, ValidationError):
        return (
            ErrorCategory.INPUT_INVALID,
            "Input rejected before submission — source images must be https://, "
            "data:image/ or runway:// references",
        )
    if isinstance(error, GenerationTimeoutError):
        return (
            ErrorCategory.GENERATION_TIMEOUT,
            "Provider did not finish in time — the task may still complete remotely",
        )
    if isinstance(error, ProviderError):
        if error.status_code in (401, 403):
            return (
                ErrorCategory.PROVIDER_AUTH,
                "Provider rejected the credentials — check RUNWAY_API_KEY",
            )
        if error.status_code == 429 or "quota" in s:
            return (
                ErrorCategory.PROVIDER_QUOTA_EXCEEDED,
                "Provider rate limit hit — wait and retry",
            )
        return (
            ErrorCategory.PROVIDER_ERROR,
            "Provider request failed — check the task input and provider status",
        )
    if isinstance(error, QualityError):
        return (
            ErrorCategory.QUALITY_GATE_FAILED,
            "Generated artifact looks truncated or unreachable",
        )
    if isinstance(error, PersistenceError):
        return (
            ErrorCategory.PERSISTENCE_FAILED,
            "Generation succeeded but storing it failed — recover from the logged provider URL",
        )
    if isinstance(error, CompositionError):
        if "ffmpeg not found" in s:
            return (
                ErrorCategory.COMPOSITION_FAILED,
                "FFmpeg not found — install via 'brew install ffmpeg' or equivalent",
            )
        return (
            ErrorCategory.COMPOSITION_FAILED,
            "Concatenating step videos failed — check that every step video is reachable",
        )
    if isinstance(error, PermissionError):
        return (ErrorCategory.PERMISSION_DENIED, str(error))
    if isinstance(error, (TimeoutError, httpx.TimeoutException)):
        return (
            ErrorCategory.NETWORK_ERROR,
            "Request timed out — try again or check connectivity",
        )
    if isinstance(error, httpx.TransportError):
        return (
            ErrorCategory.NETWORK_ERROR,
            "Network failure — check connectivity",
        )
    if isinstance(error, ValueError):
        return (ErrorCategory.INPUT_INVALID, "Bad request — check input format")

    return (ErrorCategory.UNKNOWN, str(error))


def make_tool_error(error: Exception) -> dict:
    """Create a serialisable ToolError dict from an exception."""
    cat, hint = categorize_error(error)
    retryable = cat in {
        ErrorCategory.PROVIDER_QUOTA_EXCEEDED,
        ErrorCategory.GENERATION_TIMEOUT,
        ErrorCategory.NETWORK_ERROR,
        ErrorCategory.PERSISTENCE_FAILED,
    }
    return ToolError(
        error=str(error),
        category=cat.value,
        hint=hint,
        retryable=retryable,
        retry_after_seconds=60 if cat == ErrorCategory.PROVIDER_QUOTA_EXCEEDED else None,
    ).model_dump(mode="json")
