"""Pytest configuration and shared fixtures."""

from __future__ import annotations

from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from storyloom.settings import AppSettings, StaticSettingsSource

PROVIDER_KEY_ENV_VARS = (
    "OPENROUTER_API_KEY",
    "OPENAI_API_KEY",
    "ANTHROPIC_API_KEY",
    "GOOGLE_API_KEY",
    "NANOGPT_API_KEY",
)


@pytest.fixture(autouse=True)
def clear_provider_keys(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep credentials from the developer's environment out of tests."""
    for name in PROVIDER_KEY_ENV_VARS:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def project_root() -> Path:
    """Return the project root directory."""
    return Path(__file__).parent.parent


def make_settings(**overrides: Any) -> AppSettings:
    """Build settings from a document with one openrouter profile and two presets.

    Top-level sections given as keyword arguments replace the defaults.
    """
    data: dict[str, Any] = {
        "profiles": {
            "main": {"provider": "openrouter", "api_key": "sk-or-test"},
        },
        "api": {"main_narrative_profile": "main", "default_model": "narrator-model"},
        "presets": {
            "image-prompt": {"model": "scene-model", "profile": "main", "temperature": 0.3},
            "translation": {"model": "translate-model", "profile": "main"},
        },
        "image_generation": {
            "enabled": True,
            "api_key": "nano-test",
            "max_images_per_message": 3,
        },
    }
    data.update(overrides)
    return AppSettings.from_dict(data)


@pytest.fixture
def settings() -> AppSettings:
    return make_settings()


@pytest.fixture
def settings_source(settings: AppSettings) -> StaticSettingsSource:
    return StaticSettingsSource(settings)


def fake_chat_model(content: Any = "ok", chunks: list[Any] | None = None) -> MagicMock:
    """Chat model double: ``ainvoke`` answers ``content``, ``astream`` yields ``chunks``."""
    model = MagicMock()
    model.ainvoke = AsyncMock(return_value=MagicMock(content=content))

    async def _astream(_messages: Any) -> Any:
        for chunk in chunks or []:
            yield MagicMock(content=chunk)

    model.astream = MagicMock(side_effect=_astream)
    return model


@pytest.fixture
def settings_factory() -> Any:
    """Factory fixture for ``make_settings``."""
    return make_settings


@pytest.fixture
def chat_model_factory() -> Any:
    """Factory fixture for ``fake_chat_model``."""
    return fake_chat_model
