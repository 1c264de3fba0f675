"""Application settings: profiles, presets and feature toggles."""

from storyloom.settings.loader import (
    FileSettingsSource,
    SettingsSource,
    StaticSettingsSource,
    load_settings,
)
from storyloom.settings.models import (
    APIProfile,
    APISettings,
    AppSettings,
    GenerationPreset,
    ImageGenerationSettings,
    ProviderKind,
    ReasoningEffort,
    SettingsError,
    TranslationSettings,
)

__all__ = [
    "APIProfile",
    "APISettings",
    "AppSettings",
    "FileSettingsSource",
    "GenerationPreset",
    "ImageGenerationSettings",
    "ProviderKind",
    "ReasoningEffort",
    "SettingsError",
    "SettingsSource",
    "StaticSettingsSource",
    "TranslationSettings",
    "load_settings",
]
