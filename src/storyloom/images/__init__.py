"""Embedded image pipeline: scene selection, artifact lifecycle, notifications."""

from storyloom.images.events import ImageEventBus, ImageQueued, ImageReady
from storyloom.images.models import (
    CharacterDescriptor,
    EmbeddedImage,
    ImageableScene,
    ImageStatus,
    SceneSelection,
    SceneType,
)
from storyloom.images.scenes import ImagePromptContext, ScenePromptService, select_scenes
from storyloom.images.service import ImageGenerationContext, ImageGenerationService
from storyloom.images.store import ImageStore, InMemoryImageStore
from storyloom.images.styles import (
    DEFAULT_STYLES,
    PromptStyleSource,
    StyleTemplateSource,
    resolve_style_prompt,
)

__all__ = [
    "DEFAULT_STYLES",
    "CharacterDescriptor",
    "EmbeddedImage",
    "ImageEventBus",
    "ImageGenerationContext",
    "ImageGenerationService",
    "ImagePromptContext",
    "ImageQueued",
    "ImageReady",
    "ImageStatus",
    "ImageStore",
    "ImageableScene",
    "InMemoryImageStore",
    "PromptStyleSource",
    "SceneSelection",
    "SceneType",
    "ScenePromptService",
    "StyleTemplateSource",
    "resolve_style_prompt",
    "select_scenes",
]
