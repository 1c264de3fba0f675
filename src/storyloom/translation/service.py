"""Translation of narration, player input and world-state labels.

Narration and input translation propagate failures to the caller. Batch UI
translation is cosmetic: any failure returns the input unchanged.
"""

from __future__ import annotations

import asyncio
import json
from typing import TYPE_CHECKING, Literal

from pydantic import BaseModel, TypeAdapter, ValidationError

from storyloom.observability.logging import get_logger
from storyloom.prompts.loader import PromptLoader
from storyloom.providers.structured_output import parse_json_text

if TYPE_CHECKING:
    from storyloom.providers.generate import Generator
    from storyloom.settings.models import TranslationSettings

log = get_logger(__name__)

LANGUAGE_NAMES: dict[str, str] = {
    "ar": "Arabic",
    "bg": "Bulgarian",
    "bn": "Bangla",
    "cs": "Czech",
    "da": "Danish",
    "de": "German",
    "el": "Greek",
    "en": "English",
    "es": "Spanish",
    "et": "Estonian",
    "fi": "Finnish",
    "fil": "Filipino",
    "fr": "French",
    "he": "Hebrew",
    "hi": "Hindi",
    "hr": "Croatian",
    "hu": "Hungarian",
    "id": "Indonesian",
    "it": "Italian",
    "ja": "Japanese",
    "ko": "Korean",
    "lt": "Lithuanian",
    "lv": "Latvian",
    "ms": "Malay",
    "nl": "Dutch",
    "no": "Norwegian",
    "pl": "Polish",
    "pt": "Portuguese",
    "ro": "Romanian",
    "ru": "Russian",
    "sk": "Slovak",
    "sl": "Slovenian",
    "sv": "Swedish",
    "ta": "Tamil",
    "te": "Telugu",
    "th": "Thai",
    "tr": "Turkish",
    "uk": "Ukrainian",
    "vi": "Vietnamese",
    "zh": "Chinese",
}


def language_display_name(code: str) -> str:
    """Human-readable language name; unknown codes are returned as-is."""
    if code == "auto":
        return "Auto-detect"
    return LANGUAGE_NAMES.get(code, code)


def supported_languages() -> list[tuple[str, str]]:
    """Supported ``(code, name)`` pairs sorted by name."""
    return sorted(LANGUAGE_NAMES.items(), key=lambda item: item[1])


class TranslationResult(BaseModel):
    translated_content: str
    detected_language: str | None = None


class UITranslationItem(BaseModel):
    """One world-state label or description to translate."""

    id: str
    text: str
    type: Literal["name", "description", "title"]


_ITEMS_ADAPTER = TypeAdapter(list[UITranslationItem])


class TranslationService:
    """Translates story text with a dedicated preset."""

    def __init__(
        self,
        generator: Generator,
        preset_id: str = "translation",
        loader: PromptLoader | None = None,
    ) -> None:
        self._generator = generator
        self.preset_id = preset_id
        self._loader = loader or PromptLoader()

    async def translate_narration(
        self,
        content: str,
        target_language: str,
        signal: asyncio.Event | None = None,
    ) -> TranslationResult:
        """Translate generated narration into ``target_language``.

        English targets are returned unchanged without a model call.
        """
        if target_language == "en":
            return TranslationResult(translated_content=content)

        template = self._loader.load("translate-narration")
        translated = await self._generator.generate_plain_text(
            self.preset_id,
            template.render_system(target_language=language_display_name(target_language)),
            template.render_user(content=content),
            signal=signal,
        )
        log.debug(
            "narration_translated",
            original_length=len(content),
            translated_length=len(translated),
            target_language=target_language,
        )
        return TranslationResult(translated_content=translated.strip())

    async def translate_input(
        self,
        content: str,
        source_language: str,
        signal: asyncio.Event | None = None,
    ) -> TranslationResult:
        """Translate player input into English."""
        source = (
            "the detected language"
            if source_language == "auto"
            else language_display_name(source_language)
        )
        template = self._loader.load("translate-input")
        translated = await self._generator.generate_plain_text(
            self.preset_id,
            template.render_system(source_language=source),
            template.render_user(content=content),
            signal=signal,
        )
        log.debug("input_translated", original_length=len(content), source_language=source_language)
        return TranslationResult(translated_content=translated.strip())

    async def translate_ui_elements(
        self,
        items: list[UITranslationItem],
        target_language: str,
    ) -> list[UITranslationItem]:
        """Batch-translate world-state elements.

        Returns the input unchanged for English targets and on any failure.
        """
        if not items:
            return []
        if target_language == "en":
            return items

        template = self._loader.load("translate-ui")
        elements_json = json.dumps([item.model_dump() for item in items], indent=2)
        try:
            response = await self._generator.generate_plain_text(
                self.preset_id,
                template.render_system(target_language=language_display_name(target_language)),
                template.render_user(elements_json=elements_json),
            )
        except Exception as e:
            log.warning("ui_translation_failed", error=str(e), items=len(items))
            return items

        try:
            translated = _ITEMS_ADAPTER.validate_python(parse_json_text(response))
        except (ValueError, ValidationError) as e:
            log.warning("ui_translation_unparseable", error=str(e))
            return items

        log.debug("ui_elements_translated", input_count=len(items), output_count=len(translated))
        return translated

    @staticmethod
    def should_translate(settings: TranslationSettings) -> bool:
        return settings.enabled and settings.target_language != "en"

    @staticmethod
    def should_translate_input(settings: TranslationSettings) -> bool:
        return settings.enabled and settings.translate_user_input

    @staticmethod
    def should_translate_narration(settings: TranslationSettings) -> bool:
        return (
            settings.enabled
            and settings.translate_narration
            and settings.target_language != "en"
        )

    @staticmethod
    def should_translate_world_state(settings: TranslationSettings) -> bool:
        return (
            settings.enabled
            and settings.translate_world_state
            and settings.target_language != "en"
        )
