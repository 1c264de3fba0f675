"""Settings data model: provider profiles, generation presets, feature settings.

Settings are plain dataclasses built from dictionaries (usually parsed YAML).
Presets and profiles are frozen so a value looked up for one call cannot be
mutated underneath it; the settings container itself is replaced wholesale
when configuration changes.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

DEFAULT_MODEL = "deepseek/deepseek-v3.2"
DEFAULT_TEMPERATURE = 0.8
DEFAULT_MAX_TOKENS = 8192
DEFAULT_IMAGE_MODEL = "z-image-turbo"
DEFAULT_IMAGE_SIZE = "1024x1024"
DEFAULT_IMAGE_STYLE = "image-style-soft-anime"
DEFAULT_MAX_IMAGES_PER_MESSAGE = 3


class ProviderKind(StrEnum):
    """Closed set of provider API families a profile can point at."""

    OPENROUTER = "openrouter"
    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    GOOGLE = "google"


class ReasoningEffort(StrEnum):
    """Qualitative thinking budget requested from a provider."""

    OFF = "off"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


# Environment fallbacks for profiles that omit an explicit key
PROVIDER_API_KEY_ENV: dict[ProviderKind, str] = {
    ProviderKind.OPENROUTER: "OPENROUTER_API_KEY",
    ProviderKind.OPENAI: "OPENAI_API_KEY",
    ProviderKind.ANTHROPIC: "ANTHROPIC_API_KEY",
    ProviderKind.GOOGLE: "GOOGLE_API_KEY",
}

IMAGE_API_KEY_ENV = "NANOGPT_API_KEY"


class SettingsError(Exception):
    """Raised when settings are missing, unreadable or invalid."""


def _parse_effort(value: Any) -> ReasoningEffort:
    if value is None or value == "":
        return ReasoningEffort.OFF
    try:
        return ReasoningEffort(str(value).lower())
    except ValueError:
        valid = sorted(e.value for e in ReasoningEffort)
        msg = f"reasoning_effort must be one of {valid}, got '{value}'"
        raise SettingsError(msg) from None


def _parse_float(value: Any, name: str) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        raise SettingsError(f"{name} must be a number, got '{value}'") from None


def _parse_int(value: Any, name: str) -> int:
    if isinstance(value, bool):
        raise SettingsError(f"{name} must be an integer, got '{value}'")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise SettingsError(f"{name} must be an integer, got '{value}'") from None


def _parse_str_list(value: Any, name: str) -> tuple[str, ...]:
    """Accept a list of names or a single name."""
    if value is None or value == "":
        return ()
    if isinstance(value, str):
        return (value,)
    if not isinstance(value, list | tuple):
        raise SettingsError(f"{name} must be a list of strings, got '{value}'")
    return tuple(str(item) for item in value)


def _parse_kind(value: Any) -> ProviderKind:
    try:
        return ProviderKind(str(value).lower())
    except ValueError:
        valid = sorted(k.value for k in ProviderKind)
        msg = f"provider must be one of {valid}, got '{value}'"
        raise SettingsError(msg) from None


@dataclass(frozen=True)
class GenerationPreset:
    """Named bundle of generation parameters.

    Attributes:
        id: Preset identifier (e.g. ``image-prompt``, ``translation``).
        model: Model identifier passed to the provider.
        profile_id: Profile to call through. None means the main narrative profile.
        temperature: Sampling temperature.
        max_tokens: Output token limit.
        reasoning_effort: Thinking budget; ``off`` adds no reasoning options.
        provider_only: Upstream vendors allowed by the routing gateway.
        manual_body: JSON object text merged into the request body.
    """

    id: str
    model: str
    name: str = ""
    description: str = ""
    profile_id: str | None = None
    temperature: float = DEFAULT_TEMPERATURE
    max_tokens: int = DEFAULT_MAX_TOKENS
    reasoning_effort: ReasoningEffort = ReasoningEffort.OFF
    provider_only: tuple[str, ...] = ()
    manual_body: str = ""

    @classmethod
    def from_dict(cls, preset_id: str, data: dict[str, Any]) -> GenerationPreset:
        """Create a preset from a settings mapping.

        Raises:
            SettingsError: If required fields are missing or out of range.
        """
        model = data.get("model")
        if not model:
            raise SettingsError(f"Preset '{preset_id}' has no model")

        temperature = _parse_float(
            data.get("temperature", DEFAULT_TEMPERATURE), f"Preset '{preset_id}': temperature"
        )
        if temperature < 0:
            raise SettingsError(f"Preset '{preset_id}': temperature must be non-negative")

        max_tokens = _parse_int(
            data.get("max_tokens", DEFAULT_MAX_TOKENS), f"Preset '{preset_id}': max_tokens"
        )
        if max_tokens <= 0:
            raise SettingsError(f"Preset '{preset_id}': max_tokens must be positive")

        return cls(
            id=preset_id,
            name=data.get("name", preset_id),
            description=data.get("description", ""),
            model=str(model),
            profile_id=data.get("profile") or data.get("profile_id"),
            temperature=temperature,
            max_tokens=max_tokens,
            reasoning_effort=_parse_effort(data.get("reasoning_effort")),
            provider_only=_parse_str_list(
                data.get("provider_only"), f"Preset '{preset_id}': provider_only"
            ),
            manual_body=data.get("manual_body") or "",
        )


@dataclass(frozen=True)
class APIProfile:
    """One configured provider account/endpoint."""

    id: str
    provider_kind: ProviderKind
    api_key: str = field(default="", repr=False)
    name: str = ""
    base_url: str | None = None

    @classmethod
    def from_dict(cls, profile_id: str, data: dict[str, Any]) -> APIProfile:
        """Create a profile, falling back to the provider's env var for the key."""
        kind = _parse_kind(data.get("provider"))
        api_key = data.get("api_key") or os.getenv(PROVIDER_API_KEY_ENV[kind], "")
        return cls(
            id=profile_id,
            name=data.get("name", profile_id),
            provider_kind=kind,
            api_key=api_key,
            base_url=data.get("base_url"),
        )


@dataclass(frozen=True)
class APISettings:
    """Top-level defaults used for main narrative generation."""

    main_narrative_profile_id: str | None = None
    default_model: str = DEFAULT_MODEL
    temperature: float = DEFAULT_TEMPERATURE
    max_tokens: int = DEFAULT_MAX_TOKENS
    reasoning_effort: ReasoningEffort = ReasoningEffort.OFF

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> APISettings:
        return cls(
            main_narrative_profile_id=data.get("main_narrative_profile"),
            default_model=data.get("default_model", DEFAULT_MODEL),
            temperature=_parse_float(
                data.get("temperature", DEFAULT_TEMPERATURE), "api.temperature"
            ),
            max_tokens=_parse_int(data.get("max_tokens", DEFAULT_MAX_TOKENS), "api.max_tokens"),
            reasoning_effort=_parse_effort(data.get("reasoning_effort")),
        )


@dataclass(frozen=True)
class ImageGenerationSettings:
    """Settings for embedded image generation.

    Attributes:
        enabled: Master switch for the image pipeline.
        api_key: Image provider credential.
        provider: Image provider spec (``nanogpt`` or ``placeholder``).
        model: Image model identifier.
        style_id: Style template prepended to scene prompts.
        size: Requested image size (``WxH``).
        max_images_per_message: Cap on images per narrative turn; 0 means unlimited.
        prompt_preset_id: Preset used for scene identification.
    """

    enabled: bool = False
    api_key: str = field(default="", repr=False)
    provider: str = "nanogpt"
    model: str = DEFAULT_IMAGE_MODEL
    style_id: str = DEFAULT_IMAGE_STYLE
    size: str = DEFAULT_IMAGE_SIZE
    max_images_per_message: int = DEFAULT_MAX_IMAGES_PER_MESSAGE
    prompt_preset_id: str = "image-prompt"

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ImageGenerationSettings:
        max_images = _parse_int(
            data.get("max_images_per_message", DEFAULT_MAX_IMAGES_PER_MESSAGE),
            "image_generation.max_images_per_message",
        )
        if max_images < 0:
            raise SettingsError("max_images_per_message must be >= 0 (0 means unlimited)")
        return cls(
            enabled=bool(data.get("enabled", False)),
            api_key=data.get("api_key") or os.getenv(IMAGE_API_KEY_ENV, ""),
            provider=data.get("provider", "nanogpt"),
            model=data.get("model", DEFAULT_IMAGE_MODEL),
            style_id=data.get("style_id", DEFAULT_IMAGE_STYLE),
            size=data.get("size", DEFAULT_IMAGE_SIZE),
            max_images_per_message=max_images,
            prompt_preset_id=data.get("prompt_preset", "image-prompt"),
        )


@dataclass(frozen=True)
class TranslationSettings:
    """Settings for narration, input and world-state translation."""

    enabled: bool = False
    target_language: str = "en"
    translate_user_input: bool = True
    translate_narration: bool = True
    translate_world_state: bool = True
    preset_id: str = "translation"

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TranslationSettings:
        return cls(
            enabled=bool(data.get("enabled", False)),
            target_language=data.get("target_language", "en"),
            translate_user_input=bool(data.get("translate_user_input", True)),
            translate_narration=bool(data.get("translate_narration", True)),
            translate_world_state=bool(data.get("translate_world_state", True)),
            preset_id=data.get("preset", "translation"),
        )


@dataclass(frozen=True)
class AppSettings:
    """Complete application settings snapshot."""

    presets: dict[str, GenerationPreset] = field(default_factory=dict)
    profiles: dict[str, APIProfile] = field(default_factory=dict)
    api: APISettings = field(default_factory=APISettings)
    image_generation: ImageGenerationSettings = field(default_factory=ImageGenerationSettings)
    translation: TranslationSettings = field(default_factory=TranslationSettings)

    def get_preset(self, preset_id: str) -> GenerationPreset:
        """Look up a preset by id.

        Raises:
            SettingsError: If no preset has that id.
        """
        preset = self.presets.get(preset_id)
        if preset is None:
            raise SettingsError(f"Unknown generation preset: {preset_id}")
        return preset

    def get_profile(self, profile_id: str | None) -> APIProfile | None:
        if profile_id is None:
            return None
        return self.profiles.get(profile_id)

    def main_narrative_profile(self) -> APIProfile | None:
        return self.get_profile(self.api.main_narrative_profile_id)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AppSettings:
        """Create settings from a parsed settings document.

        Args:
            data: Mapping with optional ``profiles``, ``presets``, ``api``,
                ``image_generation`` and ``translation`` sections.

        Returns:
            AppSettings instance.

        Raises:
            SettingsError: If any section is invalid.
        """
        profiles = {
            pid: APIProfile.from_dict(pid, dict(pdata or {}))
            for pid, pdata in dict(data.get("profiles") or {}).items()
        }
        presets = {
            pid: GenerationPreset.from_dict(pid, dict(pdata or {}))
            for pid, pdata in dict(data.get("presets") or {}).items()
        }
        return cls(
            presets=presets,
            profiles=profiles,
            api=APISettings.from_dict(dict(data.get("api") or {})),
            image_generation=ImageGenerationSettings.from_dict(
                dict(data.get("image_generation") or {})
            ),
            translation=TranslationSettings.from_dict(dict(data.get("translation") or {})),
        )
