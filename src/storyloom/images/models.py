"""Pydantic models for embedded image artifacts and scene selection."""

from __future__ import annotations

from datetime import UTC, datetime
from enum import StrEnum

from pydantic import BaseModel, Field, field_validator


class ImageStatus(StrEnum):
    """Lifecycle of an embedded image: pending -> generating -> complete | failed."""

    PENDING = "pending"
    GENERATING = "generating"
    COMPLETE = "complete"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (ImageStatus.COMPLETE, ImageStatus.FAILED)


# Allowed forward moves; terminal states have none
STATUS_TRANSITIONS: dict[ImageStatus, frozenset[ImageStatus]] = {
    ImageStatus.PENDING: frozenset({ImageStatus.GENERATING, ImageStatus.FAILED}),
    ImageStatus.GENERATING: frozenset({ImageStatus.COMPLETE, ImageStatus.FAILED}),
    ImageStatus.COMPLETE: frozenset(),
    ImageStatus.FAILED: frozenset(),
}


class SceneType(StrEnum):
    """Kind of moment an imageable scene depicts."""

    ACTION = "action"
    CHARACTER = "character"
    ENVIRONMENT = "environment"
    ITEM = "item"
    EMOTIONAL = "emotional"


MIN_PRIORITY = 1
MAX_PRIORITY = 10


class ImageableScene(BaseModel):
    """A moment in a passage worth illustrating."""

    source_text: str = Field(min_length=1, description="Excerpt of the passage the image depicts")
    prompt: str = Field(min_length=1, description="Self-contained image generation prompt")
    scene_type: SceneType = Field(description="Kind of moment depicted")
    priority: int = Field(
        description="1 = nice to have, 10 = must illustrate",
        json_schema_extra={"minimum": MIN_PRIORITY, "maximum": MAX_PRIORITY},
    )

    @field_validator("priority")
    @classmethod
    def clamp_priority(cls, v: int) -> int:
        """Clamp scores into 1..10."""
        return max(MIN_PRIORITY, min(MAX_PRIORITY, v))


class SceneSelection(BaseModel):
    """Structured output of the scene identification call."""

    scenes: list[ImageableScene] = Field(
        default_factory=list, description="Imageable scenes, most important first"
    )


class EmbeddedImage(BaseModel):
    """Persisted image artifact attached to a story entry.

    ``image_data`` stays empty until the image is complete; ``error_message``
    is only set when it failed.
    """

    id: str
    story_id: str
    entry_id: str
    source_text: str
    prompt: str
    style_id: str
    model: str
    image_data: str = ""
    width: int
    height: int
    status: ImageStatus = ImageStatus.PENDING
    error_message: str | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


class CharacterDescriptor(BaseModel):
    """A character on stage, with the traits an illustrator needs."""

    name: str
    visual_descriptors: list[str] = Field(default_factory=list)
