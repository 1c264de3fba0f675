"""Tests for the image generation service."""

from __future__ import annotations

import asyncio
import base64
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from storyloom.images.events import ImageQueued, ImageReady
from storyloom.images.models import (
    CharacterDescriptor,
    ImageableScene,
    ImageStatus,
    SceneSelection,
    SceneType,
)
from storyloom.images.service import (
    ImageGenerationContext,
    ImageGenerationService,
    image_dimensions,
)
from storyloom.images.store import InMemoryImageStore
from storyloom.images.styles import DEFAULT_STYLES
from storyloom.providers.base import ProviderConnectionError
from storyloom.providers.image import (
    GeneratedImage,
    ImageGenerationRequest,
    ImageGenerationResponse,
    ImageProviderError,
)
from storyloom.settings import StaticSettingsSource

PNG_B64 = base64.b64encode(b"\x89PNG fake").decode()


class FakeImageProvider:
    """Records requests; fails for prompts containing ``fail``; waits on ``gate`` if set."""

    def __init__(self, gate: asyncio.Event | None = None, payload: str | None = PNG_B64) -> None:
        self.gate = gate
        self.payload = payload
        self.requests: list[ImageGenerationRequest] = []
        self.closed = 0

    async def generate(self, request: ImageGenerationRequest) -> ImageGenerationResponse:
        self.requests.append(request)
        if self.gate is not None:
            await self.gate.wait()
        if "fail" in request.prompt:
            raise ImageProviderError("fake", "content rejected")
        return ImageGenerationResponse(images=[GeneratedImage(b64_json=self.payload)])

    async def aclose(self) -> None:
        self.closed += 1


class BrokenCloseProvider(FakeImageProvider):
    async def aclose(self) -> None:
        raise ProviderConnectionError("fake", "socket already closed")


def _scene(label: str, priority: int = 5) -> ImageableScene:
    return ImageableScene(
        source_text=f"{label} text",
        prompt=f"{label} prompt",
        scene_type=SceneType.ENVIRONMENT,
        priority=priority,
    )


def _generator(scenes: list[ImageableScene] | None = None, error: Exception | None = None) -> Any:
    generator = MagicMock()
    if error is not None:
        generator.generate_structured = AsyncMock(side_effect=error)
    else:
        generator.generate_structured = AsyncMock(
            return_value=SceneSelection(scenes=scenes or [])
        )
    return generator


def _context(**kwargs: Any) -> ImageGenerationContext:
    defaults: dict[str, Any] = {
        "story_id": "story-1",
        "entry_id": "entry-1",
        "narrative_response": "The tower burned against a violet sky.",
        "user_action": "I look up",
    }
    defaults.update(kwargs)
    return ImageGenerationContext(**defaults)


@pytest.fixture
def store() -> InMemoryImageStore:
    return InMemoryImageStore()


@pytest.fixture
def provider() -> FakeImageProvider:
    return FakeImageProvider()


def _service(
    settings_source: StaticSettingsSource,
    generator: Any,
    store: InMemoryImageStore,
    provider: FakeImageProvider | None = None,
) -> tuple[ImageGenerationService, list[object]]:
    service = ImageGenerationService(
        settings_source=settings_source,
        generator=generator,
        store=store,
        provider_factory=(lambda _settings: provider) if provider is not None else None,
    )
    events: list[object] = []
    service.events.subscribe(events.append)
    return service, events


class TestImageDimensions:
    def test_parses_size(self) -> None:
        assert image_dimensions("1024x768") == (1024, 768)

    @pytest.mark.parametrize("size", ["", "big", "0x0", "-5x10"])
    def test_fallback(self, size: str) -> None:
        assert image_dimensions(size) == (512, 512)


class TestIsEnabled:
    def test_enabled_with_key(self, settings_source: StaticSettingsSource) -> None:
        service, _ = _service(settings_source, _generator(), InMemoryImageStore())
        assert service.is_enabled()

    def test_disabled_flag(self, settings_factory: Any) -> None:
        source = StaticSettingsSource(
            settings_factory(image_generation={"enabled": False, "api_key": "k"})
        )
        service, _ = _service(source, _generator(), InMemoryImageStore())
        assert not service.is_enabled()

    def test_missing_key(self, settings_factory: Any) -> None:
        source = StaticSettingsSource(settings_factory(image_generation={"enabled": True}))
        service, _ = _service(source, _generator(), InMemoryImageStore())
        assert not service.is_enabled()

    def test_placeholder_needs_no_key(self, settings_factory: Any) -> None:
        source = StaticSettingsSource(
            settings_factory(image_generation={"enabled": True, "provider": "placeholder"})
        )
        service, _ = _service(source, _generator(), InMemoryImageStore())
        assert service.is_enabled()


class TestGenerateForNarrative:
    @pytest.mark.asyncio()
    async def test_disabled_has_no_side_effects(
        self, settings_factory: Any, store: InMemoryImageStore, provider: FakeImageProvider
    ) -> None:
        source = StaticSettingsSource(settings_factory(image_generation={"enabled": False}))
        generator = _generator([_scene("a")])
        service, events = _service(source, generator, store, provider)

        assert await service.generate_for_narrative(_context()) == []

        generator.generate_structured.assert_not_called()
        assert store.all() == []
        assert events == []

    @pytest.mark.asyncio()
    async def test_no_scenes_creates_nothing(
        self,
        settings_source: StaticSettingsSource,
        store: InMemoryImageStore,
        provider: FakeImageProvider,
    ) -> None:
        service, events = _service(settings_source, _generator([]), store, provider)

        assert await service.generate_for_narrative(_context()) == []
        await service.wait_idle()

        assert store.all() == []
        assert events == []
        assert provider.requests == []

    @pytest.mark.asyncio()
    async def test_scene_identification_failure_is_swallowed(
        self,
        settings_source: StaticSettingsSource,
        store: InMemoryImageStore,
        provider: FakeImageProvider,
    ) -> None:
        generator = _generator(error=ProviderConnectionError("openrouter", "down"))
        service, events = _service(settings_source, generator, store, provider)

        assert await service.generate_for_narrative(_context()) == []
        assert store.all() == []
        assert events == []

    @pytest.mark.asyncio()
    async def test_records_are_pending_before_generation_finishes(
        self, settings_source: StaticSettingsSource, store: InMemoryImageStore
    ) -> None:
        gate = asyncio.Event()
        provider = FakeImageProvider(gate=gate)
        service, events = _service(
            settings_source, _generator([_scene("a"), _scene("b")]), store, provider
        )

        image_ids = await service.generate_for_narrative(_context())

        assert len(image_ids) == 2
        records = store.all()
        assert {r.id for r in records} == set(image_ids)
        assert all(not r.status.is_terminal for r in records)
        assert [type(e) for e in events] == [ImageQueued, ImageQueued]
        assert service.pending_tasks == 2

        gate.set()
        await service.wait_idle()

        assert service.pending_tasks == 0
        assert all(r.status is ImageStatus.COMPLETE for r in store.all())

    @pytest.mark.asyncio()
    async def test_caps_to_highest_priority_scenes(
        self,
        settings_source: StaticSettingsSource,
        store: InMemoryImageStore,
        provider: FakeImageProvider,
    ) -> None:
        scenes = [_scene(f"s{p}", p) for p in (2, 9, 4, 7, 5)]
        service, _ = _service(settings_source, _generator(scenes), store, provider)

        await service.generate_for_narrative(_context())
        await service.wait_idle()

        assert sorted(r.source_text for r in store.all()) == ["s5 text", "s7 text", "s9 text"]

    @pytest.mark.asyncio()
    async def test_zero_cap_is_unlimited(
        self, settings_factory: Any, store: InMemoryImageStore, provider: FakeImageProvider
    ) -> None:
        source = StaticSettingsSource(
            settings_factory(
                image_generation={"enabled": True, "api_key": "k", "max_images_per_message": 0}
            )
        )
        scenes = [_scene(f"s{i}") for i in range(6)]
        service, _ = _service(source, _generator(scenes), store, provider)

        assert len(await service.generate_for_narrative(_context())) == 6
        await service.wait_idle()

    @pytest.mark.asyncio()
    async def test_failing_image_does_not_affect_sibling(
        self,
        settings_source: StaticSettingsSource,
        store: InMemoryImageStore,
        provider: FakeImageProvider,
    ) -> None:
        service, events = _service(
            settings_source, _generator([_scene("good", 8), _scene("fail", 6)]), store, provider
        )

        await service.generate_for_narrative(_context())
        await service.wait_idle()

        by_source = {r.source_text: r for r in store.all()}
        good, bad = by_source["good text"], by_source["fail text"]

        assert good.status is ImageStatus.COMPLETE
        assert good.image_data == PNG_B64
        assert good.error_message is None

        assert bad.status is ImageStatus.FAILED
        assert bad.image_data == ""
        assert "content rejected" in (bad.error_message or "")

        ready = {e.image_id: e.success for e in events if isinstance(e, ImageReady)}
        assert ready == {good.id: True, bad.id: False}

    @pytest.mark.asyncio()
    async def test_queued_precedes_ready_for_each_image(
        self,
        settings_source: StaticSettingsSource,
        store: InMemoryImageStore,
        provider: FakeImageProvider,
    ) -> None:
        service, events = _service(
            settings_source, _generator([_scene("a"), _scene("b"), _scene("c")]), store, provider
        )

        image_ids = await service.generate_for_narrative(_context())
        await service.wait_idle()

        for image_id in image_ids:
            kinds = [type(e) for e in events if e.image_id == image_id]  # type: ignore[attr-defined]
            assert kinds == [ImageQueued, ImageReady]

    @pytest.mark.asyncio()
    async def test_style_and_settings_applied_to_requests(
        self,
        settings_source: StaticSettingsSource,
        store: InMemoryImageStore,
        provider: FakeImageProvider,
    ) -> None:
        service, _ = _service(settings_source, _generator([_scene("a")]), store, provider)

        await service.generate_for_narrative(_context())
        await service.wait_idle()

        style = DEFAULT_STYLES["image-style-soft-anime"]
        (request,) = provider.requests
        assert request.prompt == f"{style}\n\na prompt"
        assert request.model == "z-image-turbo"
        assert request.size == "1024x1024"
        assert request.response_format == "b64_json"

        (record,) = store.all()
        assert record.prompt == request.prompt
        assert record.style_id == "image-style-soft-anime"
        assert (record.width, record.height) == (1024, 1024)
        assert record.story_id == "story-1"
        assert record.entry_id == "entry-1"
        assert provider.closed == 1

    @pytest.mark.asyncio()
    async def test_empty_payload_marks_failed(
        self, settings_source: StaticSettingsSource, store: InMemoryImageStore
    ) -> None:
        provider = FakeImageProvider(payload=None)
        service, events = _service(settings_source, _generator([_scene("a")]), store, provider)

        await service.generate_for_narrative(_context())
        await service.wait_idle()

        (record,) = store.all()
        assert record.status is ImageStatus.FAILED
        assert "No image data returned" in (record.error_message or "")
        assert events[-1] == ImageReady(image_id=record.id, entry_id="entry-1", success=False)

    @pytest.mark.asyncio()
    async def test_close_failure_keeps_generation_error(
        self, settings_source: StaticSettingsSource, store: InMemoryImageStore
    ) -> None:
        provider = BrokenCloseProvider()
        service, _ = _service(
            settings_source, _generator([_scene("good", 8), _scene("fail", 6)]), store, provider
        )

        await service.generate_for_narrative(_context())
        await service.wait_idle()

        by_source = {r.source_text: r for r in store.all()}
        assert by_source["good text"].status is ImageStatus.COMPLETE
        bad = by_source["fail text"]
        assert bad.status is ImageStatus.FAILED
        assert "content rejected" in (bad.error_message or "")
        assert "socket" not in (bad.error_message or "")

    @pytest.mark.asyncio()
    async def test_provider_construction_failure_marks_failed(
        self, settings_source: StaticSettingsSource, store: InMemoryImageStore
    ) -> None:
        def _factory(_settings: Any) -> Any:
            raise ImageProviderError("nanogpt", "API key required for image generation")

        service = ImageGenerationService(
            settings_source, _generator([_scene("a")]), store, provider_factory=_factory
        )

        assert len(await service.generate_for_narrative(_context())) == 1
        await service.wait_idle()

        (record,) = store.all()
        assert record.status is ImageStatus.FAILED
        assert "API key required" in (record.error_message or "")

    @pytest.mark.asyncio()
    async def test_characters_without_descriptors_are_not_sent(
        self,
        settings_source: StaticSettingsSource,
        store: InMemoryImageStore,
        provider: FakeImageProvider,
    ) -> None:
        generator = _generator([])
        service, _ = _service(settings_source, generator, store, provider)

        await service.generate_for_narrative(
            _context(
                present_characters=[
                    CharacterDescriptor(name="Ash", visual_descriptors=["grey coat"]),
                    CharacterDescriptor(name="Ghost"),
                ]
            )
        )

        preset_id, _system, prompt, _schema = generator.generate_structured.call_args.args
        assert preset_id == "image-prompt"
        assert "Ash: grey coat" in prompt
        assert "Ghost" not in prompt

    @pytest.mark.asyncio()
    async def test_placeholder_provider_end_to_end(
        self, settings_factory: Any, store: InMemoryImageStore
    ) -> None:
        source = StaticSettingsSource(
            settings_factory(
                image_generation={"enabled": True, "provider": "placeholder", "size": "256x256"}
            )
        )
        service = ImageGenerationService(source, _generator([_scene("a")]), store)

        await service.generate_for_narrative(_context())
        await service.wait_idle()

        (record,) = store.all()
        assert record.status is ImageStatus.COMPLETE
        assert base64.b64decode(record.image_data)[:4] == b"\x89PNG"
