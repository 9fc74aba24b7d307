"""Generation engine models — remote tasks, per-step results, recipe media state.

GenerationTask and TaskPoll describe one remote provider job. StepMediaResult
and BatchResult are what the batch sequencer produces; RecipeMediaState is the
persisted view of everything generated for one recipe.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Literal, Union

from pydantic import BaseModel, Field


class MediaKind(str, Enum):
    """Which provider endpoint a task runs against."""

    IMAGE_FROM_TEXT = "image_from_text"
    IMAGE_TO_VIDEO = "image_to_video"


class TaskStatus(str, Enum):
    """Lifecycle of one remote generation task."""

    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (TaskStatus.SUCCEEDED, TaskStatus.FAILED, TaskStatus.CANCELLED)

    @classmethod
    def from_provider(cls, raw: str | None) -> TaskStatus:
        """Map a provider status string onto the five known states.

        Anything unrecognised (``THROTTLED``, ``QUEUED``...) counts as pending.
        """
        value = raw.strip().lower() if isinstance(raw, str) else ""
        aliases = {"in_progress": "running", "canceled": "cancelled", "success": "succeeded"}
        value = aliases.get(value, value)
        try:
            return cls(value)
        except ValueError:
            return cls.PENDING


class StepStatus(str, Enum):
    PENDING = "pending"
    GENERATING = "generating"
    COMPLETED = "completed"
    FAILED = "failed"


class ArtifactKind(str, Enum):
    """Artifacts tracked per recipe."""

    STEP_IMAGES = "step_images"
    STEP_VIDEOS = "step_videos"
    FINAL_VIDEO = "final_video"
    SHORT_VIDEO = "short_video"

    @property
    def is_step_set(self) -> bool:
        return self in (ArtifactKind.STEP_IMAGES, ArtifactKind.STEP_VIDEOS)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class GenerationTask(BaseModel):
    """One remote job, created per controller attempt and discarded after."""

    id: str
    kind: MediaKind
    status: TaskStatus = TaskStatus.PENDING
    attempt: int = Field(default=1, ge=1)
    submitted_at: datetime = Field(default_factory=utcnow)
    last_error: str = ""

    @property
    def elapsed_seconds(self) -> float:
        return (utcnow() - self.submitted_at).total_seconds()


class TaskPoll(BaseModel):
    """A single poll answer from the provider."""

    status: TaskStatus
    output_url: str | None = None
    failure_reason: str | None = None
    progress: float | None = None


class StepMediaResult(BaseModel):
    """Outcome for one cooking step. Immutable once ``completed``."""

    step_index: int = Field(ge=0)
    media_url: str | None = None
    status: StepStatus = StepStatus.PENDING
    error: str | None = None
    provider_url: str | None = Field(
        default=None,
        description="Time-limited provider URL, kept only when storing a paid artifact failed",
    )


class BatchResult(BaseModel):
    """Aggregate outcome of one batch run over a recipe's steps."""

    recipe_id: str
    artifact: ArtifactKind
    status: Literal["completed", "failed"]
    items: list[StepMediaResult] = Field(default_factory=list)

    @property
    def completed_count(self) -> int:
        return sum(1 for r in self.items if r.status == StepStatus.COMPLETED)

    @property
    def failed_count(self) -> int:
        return sum(1 for r in self.items if r.status == StepStatus.FAILED)

    @property
    def summary(self) -> str:
        noun = "step photos" if self.artifact == ArtifactKind.STEP_IMAGES else "step videos"
        return f"generated {self.completed_count} of {len(self.items)} {noun}"


class Generated(BaseModel):
    """Tagged success outcome of the retry controller."""

    ok: Literal[True] = True
    url: str
    attempts: int


class GenerationFailed(BaseModel):
    """Tagged failure outcome: retries exhausted, reason of the last attempt."""

    ok: Literal[False] = False
    reason: str
    attempts: int


GenerationOutcome = Union[Generated, GenerationFailed]


class RecipeMediaState(BaseModel):
    """Everything generated for one recipe, as persisted."""

    recipe_id: str
    step_images: list[StepMediaResult] = Field(default_factory=list)
    step_videos: list[StepMediaResult] = Field(default_factory=list)
    final_video_url: str | None = None
    short_video_url: str | None = None
    generated_at: datetime | None = None

    def to_document(self) -> dict:
        """Render the caller-facing sub-document."""
        return {
            "stepImages": [
                {"stepIndex": r.step_index, "imageUrl": r.media_url}
                for r in self.step_images
                if r.status == StepStatus.COMPLETED
            ],
            "stepVideos": [
                {"stepIndex": r.step_index, "videoUrl": r.media_url, "status": r.status.value}
                for r in self.step_videos
            ],
            "finalVideoUrl": self.final_video_url,
            "shortVideoUrl": self.short_video_url,
        }


class ShortVideoResult(BaseModel):
    """Outcome of the single-artifact short video flow."""

    recipe_id: str
    success: bool
    video_url: str | None = None
    prompt: str = ""
    regenerated: bool = False
    passed_quality_gate: bool = False
    from_cache: bool = False
    charged: bool = False
    error: str | None = None
    provider_url: str | None = None


class GenerationReport(BaseModel):
    """What the pipeline hands back for a step photo/video request."""

    recipe_id: str
    artifact: ArtifactKind
    status: Literal["completed", "failed"]
    summary: str
    items: list[StepMediaResult] = Field(default_factory=list)
    from_cache: bool = False
    charged: bool = False
    credit: dict | None = None
