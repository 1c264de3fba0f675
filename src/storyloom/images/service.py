"""Image generation service: narrative passage in, embedded image artifacts out.

Pipeline for one narrative turn:

1. Identify imageable scenes with the scene selection stage.
2. Rank and cap them by the per-message limit.
3. For each selected scene create a ``pending`` record, emit ``ImageQueued``
   and start generation as an independent asyncio task.

Each task moves its record ``pending -> generating -> complete | failed`` and
finishes with ``ImageReady``. Task failures stay inside the task: they are
recorded on the artifact and never reach the caller or sibling tasks. The
whole turn is best-effort: ``generate_for_narrative`` never raises.
"""

from __future__ import annotations

import asyncio
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from storyloom.images.events import ImageEventBus
from storyloom.images.models import (
    CharacterDescriptor,
    EmbeddedImage,
    ImageableScene,
    ImageStatus,
)
from storyloom.images.scenes import (
    ImagePromptContext,
    ScenePromptService,
    compose_image_prompt,
    select_scenes,
    with_visual_descriptors,
)
from storyloom.images.styles import resolve_style_prompt
from storyloom.observability.logging import get_logger
from storyloom.providers.image import ImageGenerationRequest, ImageProviderError
from storyloom.providers.image_factory import create_image_provider

if TYPE_CHECKING:
    from storyloom.images.store import ImageStore
    from storyloom.images.styles import StyleTemplateSource
    from storyloom.prompts.loader import PromptLoader
    from storyloom.providers.generate import Generator
    from storyloom.providers.image import ImageProvider
    from storyloom.settings.loader import SettingsSource
    from storyloom.settings.models import ImageGenerationSettings

log = get_logger(__name__)

ImageProviderFactory = Callable[["ImageGenerationSettings"], "ImageProvider"]

_FALLBACK_DIMENSION = 512


@dataclass
class ImageGenerationContext:
    """A finished narrative turn to illustrate."""

    story_id: str
    entry_id: str
    narrative_response: str
    user_action: str
    present_characters: list[CharacterDescriptor] = field(default_factory=list)
    current_location: str | None = None
    chat_history: str | None = None
    lorebook_context: str | None = None


def image_dimensions(size: str) -> tuple[int, int]:
    """Parse a ``WxH`` size string, falling back to 512x512."""
    try:
        width, height = (int(part) for part in size.lower().split("x", 1))
    except ValueError:
        return _FALLBACK_DIMENSION, _FALLBACK_DIMENSION
    if width <= 0 or height <= 0:
        return _FALLBACK_DIMENSION, _FALLBACK_DIMENSION
    return width, height


def _default_provider_factory(settings: ImageGenerationSettings) -> ImageProvider:
    return create_image_provider(settings.provider, api_key=settings.api_key)


async def _close_provider(provider: ImageProvider, image_id: str) -> None:
    """Release the provider's client; a failing close is logged, not raised."""
    aclose = getattr(provider, "aclose", None)
    if aclose is None:
        return
    try:
        await aclose()
    except Exception as e:
        log.warning("image_provider_close_failed", image_id=image_id, error=str(e))


class ImageGenerationService:
    """Creates image artifacts for narrative turns and drives their lifecycle.

    Args:
        settings_source: Source of the settings in effect.
        generator: Generation façade used for scene identification.
        store: Record store for embedded images.
        events: Notification channel; a private bus is created if omitted.
        styles: Style customization source.
        provider_factory: Builds an image provider from image settings.
        loader: Prompt loader for the scene identification template.
    """

    def __init__(
        self,
        settings_source: SettingsSource,
        generator: Generator,
        store: ImageStore,
        events: ImageEventBus | None = None,
        styles: StyleTemplateSource | None = None,
        provider_factory: ImageProviderFactory | None = None,
        loader: PromptLoader | None = None,
    ) -> None:
        self._settings_source = settings_source
        self._generator = generator
        self._store = store
        self.events = events or ImageEventBus()
        self._styles = styles
        self._provider_factory = provider_factory or _default_provider_factory
        self._loader = loader
        self._tasks: set[asyncio.Task[None]] = set()

    def is_enabled(self) -> bool:
        """Whether image generation is switched on and has a usable credential."""
        image_settings = self._settings_source.current().image_generation
        if not image_settings.enabled:
            return False
        return bool(image_settings.api_key) or image_settings.provider == "placeholder"

    @property
    def pending_tasks(self) -> int:
        """Number of generation tasks still running."""
        return len(self._tasks)

    async def wait_idle(self) -> None:
        """Wait until every started generation task has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def generate_for_narrative(self, context: ImageGenerationContext) -> list[str]:
        """Queue images for a narrative turn.

        Returns once every selected scene has a pending record and a running
        task, not when images are ready. Never raises.

        Returns:
            Ids of the queued images (empty when disabled, nothing was found,
            or scene identification failed).
        """
        image_settings = self._settings_source.current().image_generation
        if not image_settings.enabled:
            log.debug("image_generation_disabled")
            return []

        log.info(
            "image_generation_start",
            story_id=context.story_id,
            entry_id=context.entry_id,
            narrative_length=len(context.narrative_response),
            present_characters=len(context.present_characters),
        )

        queued: list[str] = []
        try:
            style_prompt = resolve_style_prompt(image_settings.style_id, self._styles)
            max_images = image_settings.max_images_per_message

            prompt_context = ImagePromptContext(
                narrative_response=context.narrative_response,
                user_action=context.user_action,
                style_prompt=style_prompt,
                max_images=max_images,
                present_characters=with_visual_descriptors(context.present_characters),
                current_location=context.current_location,
                chat_history=context.chat_history,
                lorebook_context=context.lorebook_context,
            )
            scene_service = ScenePromptService(
                self._generator, image_settings.prompt_preset_id, self._loader
            )
            scenes = await scene_service.identify_scenes(prompt_context)

            if not scenes:
                log.info("no_imageable_scenes", entry_id=context.entry_id)
                return []

            selected = select_scenes(scenes, max_images)
            log.info(
                "scenes_selected",
                total=len(scenes),
                selected=len(selected),
                max_allowed=max_images,
            )

            for scene in selected:
                styled = scene.model_copy(
                    update={"prompt": compose_image_prompt(style_prompt, scene.prompt)}
                )
                image_id = await self.enqueue(
                    context.story_id, context.entry_id, styled, image_settings
                )
                queued.append(image_id)

        except Exception as e:
            # Illustration is optional; the narrative turn must not fail because of it
            log.warning(
                "image_generation_failed",
                entry_id=context.entry_id,
                queued=len(queued),
                error=str(e),
            )
            return queued

        log.info("images_queued", entry_id=context.entry_id, count=len(queued))
        return queued

    async def enqueue(
        self,
        story_id: str,
        entry_id: str,
        scene: ImageableScene,
        settings: ImageGenerationSettings,
    ) -> str:
        """Create a pending record and start generating it in the background.

        Returns:
            The new image id. Generation continues after this returns.
        """
        image_id = str(uuid.uuid4())
        width, height = image_dimensions(settings.size)

        await self._store.create(
            EmbeddedImage(
                id=image_id,
                story_id=story_id,
                entry_id=entry_id,
                source_text=scene.source_text,
                prompt=scene.prompt,
                style_id=settings.style_id,
                model=settings.model,
                width=width,
                height=height,
                status=ImageStatus.PENDING,
            )
        )
        log.debug("image_record_created", image_id=image_id, entry_id=entry_id)

        self.events.emit_queued(image_id, entry_id)

        task = asyncio.create_task(
            self.execute(image_id, scene.prompt, settings, entry_id),
            name=f"image-{image_id}",
        )
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return image_id

    def _task_done(self, task: asyncio.Task[None]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            log.info("image_task_cancelled", task=task.get_name())
            return
        exc = task.exception()
        if exc is not None:
            log.error("image_task_crashed", task=task.get_name(), error=str(exc))

    async def execute(
        self,
        image_id: str,
        prompt: str,
        settings: ImageGenerationSettings,
        entry_id: str,
    ) -> None:
        """Generate one image and record the outcome. Never raises."""
        try:
            await self._store.update(image_id, status=ImageStatus.GENERATING)

            provider = self._provider_factory(settings)
            try:
                response = await provider.generate(
                    ImageGenerationRequest(
                        prompt=prompt,
                        model=settings.model,
                        size=settings.size,
                        response_format="b64_json",
                    )
                )
            finally:
                await _close_provider(provider, image_id)

            payload = response.first_payload()
            if not payload:
                raise ImageProviderError(settings.provider, "No image data returned")

            await self._store.update(
                image_id,
                image_data=payload,
                status=ImageStatus.COMPLETE,
                error_message=None,
            )
        except Exception as e:
            error_message = str(e) or type(e).__name__
            log.warning("image_generation_item_failed", image_id=image_id, error=error_message)
            try:
                await self._store.update(
                    image_id,
                    image_data="",
                    status=ImageStatus.FAILED,
                    error_message=error_message,
                )
            except Exception as store_error:
                log.error(
                    "image_failure_not_recorded",
                    image_id=image_id,
                    error=str(store_error),
                )
            self.events.emit_ready(image_id, entry_id, False)
            return

        log.info("image_generated", image_id=image_id, entry_id=entry_id)
        self.events.emit_ready(image_id, entry_id, True)
