"""Resolve a preset id (or the main narrative settings) to a ready model.

This is the single place that goes from "which preset" to "which provider,
model and options". Nothing is memoized: settings are read from the source
on every call so edits apply to the next request.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from storyloom.observability.logging import get_logger
from storyloom.providers.base import ProviderConfigError
from storyloom.providers.factory import create_chat_model
from storyloom.providers.options import build_provider_options
from storyloom.settings.models import (
    APIProfile,
    GenerationPreset,
    ProviderKind,
    SettingsError,
)

if TYPE_CHECKING:
    from langchain_core.language_models import BaseChatModel

    from storyloom.settings.loader import SettingsSource

log = get_logger(__name__)

NARRATIVE_PRESET_ID = "_narrative"


@dataclass(frozen=True)
class ResolvedConfig:
    """Everything needed for one generation call.

    Attributes:
        preset: Preset the call runs with (synthesized for narrative calls).
        profile: Profile the preset resolved to.
        provider_kind: Provider family of the profile.
        model: Chat model bound to the profile and preset parameters.
        provider_options: Provider-specific options, or None.
    """

    preset: GenerationPreset
    profile: APIProfile
    provider_kind: ProviderKind
    model: BaseChatModel
    provider_options: dict[str, Any] | None


class ConfigResolver:
    """Resolves presets against the settings currently in effect."""

    def __init__(self, settings_source: SettingsSource) -> None:
        self._settings_source = settings_source

    def resolve(self, preset_id: str) -> ResolvedConfig:
        """Resolve a preset to a model.

        Args:
            preset_id: Preset identifier.

        Returns:
            ResolvedConfig for this call.

        Raises:
            ProviderConfigError: If the preset or its profile is not configured.
        """
        settings = self._settings_source.current()
        try:
            preset = settings.get_preset(preset_id)
        except SettingsError as e:
            raise ProviderConfigError("settings", str(e)) from e

        profile_id = preset.profile_id or settings.api.main_narrative_profile_id
        profile = settings.get_profile(profile_id)
        if profile is None:
            log.error("profile_not_found", preset_id=preset_id, profile_id=profile_id)
            raise ProviderConfigError("settings", f"Profile not found: {profile_id}")

        return self._build(preset, profile)

    def resolve_narrative(self) -> ResolvedConfig:
        """Resolve the main narrative profile with the top-level defaults.

        Raises:
            ProviderConfigError: If no main narrative profile is configured.
        """
        settings = self._settings_source.current()
        profile = settings.main_narrative_profile()
        if profile is None:
            log.error(
                "main_profile_not_configured",
                profile_id=settings.api.main_narrative_profile_id,
            )
            raise ProviderConfigError(
                "settings",
                "Main narrative profile not configured. "
                "Set up an API profile in settings and select it as the main profile.",
            )

        api = settings.api
        preset = GenerationPreset(
            id=NARRATIVE_PRESET_ID,
            name="Narrative",
            description="Main narrative generation",
            profile_id=profile.id,
            model=api.default_model,
            temperature=api.temperature,
            max_tokens=api.max_tokens,
            reasoning_effort=api.reasoning_effort,
        )
        return self._build(preset, profile)

    def _build(self, preset: GenerationPreset, profile: APIProfile) -> ResolvedConfig:
        provider_options = build_provider_options(preset, profile.provider_kind)
        model = create_chat_model(
            profile,
            preset.model,
            temperature=preset.temperature,
            max_tokens=preset.max_tokens,
            provider_options=provider_options,
        )
        return ResolvedConfig(
            preset=preset,
            profile=profile,
            provider_kind=profile.provider_kind,
            model=model,
            provider_options=provider_options,
        )
