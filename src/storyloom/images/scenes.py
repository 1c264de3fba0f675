"""Scene selection: find the moments of a passage worth illustrating.

Identification is a structured-output call through the generation façade;
selection is a deterministic ranking of what came back.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from storyloom.images.models import CharacterDescriptor, ImageableScene, SceneSelection
from storyloom.observability.logging import get_logger
from storyloom.prompts.loader import PromptLoader

if TYPE_CHECKING:
    from storyloom.providers.generate import Generator

log = get_logger(__name__)

SCENES_TEMPLATE = "image-scenes"


@dataclass
class ImagePromptContext:
    """Inputs for scene identification.

    Attributes:
        narrative_response: The passage to illustrate.
        user_action: The player input that produced the passage.
        present_characters: Characters on stage.
        style_prompt: Art style the prompts are written for.
        max_images: Requested cap (0 = unlimited), passed to the model as guidance.
        current_location: Where the scene takes place, if known.
        chat_history: Full story history for context.
        lorebook_context: Activated lorebook entries.
    """

    narrative_response: str
    user_action: str
    style_prompt: str
    max_images: int = 3
    present_characters: list[CharacterDescriptor] = field(default_factory=list)
    current_location: str | None = None
    chat_history: str | None = None
    lorebook_context: str | None = None


def with_visual_descriptors(
    characters: list[CharacterDescriptor],
) -> list[CharacterDescriptor]:
    """Keep only characters that carry at least one visual descriptor."""
    return [c for c in characters if c.visual_descriptors]


def format_characters(characters: list[CharacterDescriptor]) -> str:
    if not characters:
        return "(none)"
    return "\n".join(f"- {c.name}: {', '.join(c.visual_descriptors)}" for c in characters)


def select_scenes(scenes: list[ImageableScene], max_images: int) -> list[ImageableScene]:
    """Rank scenes by descending priority and apply the per-message cap.

    Equal priorities keep their input order. ``max_images == 0`` means no cap.
    """
    ranked = sorted(scenes, key=lambda s: s.priority, reverse=True)
    if max_images > 0:
        return ranked[:max_images]
    return ranked


def compose_image_prompt(style_prompt: str, scene_prompt: str) -> str:
    """Prepend the style description to a scene prompt."""
    if not style_prompt:
        return scene_prompt
    return f"{style_prompt.strip()}\n\n{scene_prompt.strip()}"


class ScenePromptService:
    """Identifies imageable scenes with a dedicated preset."""

    def __init__(
        self,
        generator: Generator,
        preset_id: str = "image-prompt",
        loader: PromptLoader | None = None,
    ) -> None:
        self._generator = generator
        self.preset_id = preset_id
        self._loader = loader or PromptLoader()

    async def identify_scenes(
        self,
        context: ImagePromptContext,
        signal: asyncio.Event | None = None,
    ) -> list[ImageableScene]:
        """Ask the model for imageable scenes in ``context.narrative_response``.

        Raises:
            ProviderError: If the call fails or the output does not validate.
        """
        template = self._loader.load(SCENES_TEMPLATE)
        characters = with_visual_descriptors(context.present_characters)

        system = template.render_system(
            max_images=context.max_images,
            style_prompt=context.style_prompt,
        )
        prompt = template.render_user(
            characters=format_characters(characters),
            location=context.current_location or "(unknown)",
            chat_history=context.chat_history or "(none)",
            lorebook_context=context.lorebook_context or "(none)",
            user_action=context.user_action,
            narrative=context.narrative_response,
        )

        selection = await self._generator.generate_structured(
            self.preset_id,
            system,
            prompt,
            SceneSelection,
            signal=signal,
        )

        log.debug(
            "scenes_identified",
            count=len(selection.scenes),
            types=[s.scene_type.value for s in selection.scenes],
        )
        return selection.scenes
