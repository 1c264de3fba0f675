"""Settings sources.

Callers never hold on to an ``AppSettings`` between generation calls: they
ask a ``SettingsSource`` for the current snapshot every time so that live
edits take effect on the next call.
"""

from __future__ import annotations

from pathlib import Path  # noqa: TC003 - used at runtime
from typing import Protocol, runtime_checkable

from ruamel.yaml import YAML
from ruamel.yaml.error import YAMLError

from storyloom.observability.logging import get_logger
from storyloom.settings.models import AppSettings, SettingsError

log = get_logger(__name__)


@runtime_checkable
class SettingsSource(Protocol):
    """Provides the settings in effect right now."""

    def current(self) -> AppSettings:
        """Return the latest settings snapshot."""
        ...


class StaticSettingsSource:
    """In-process settings holder; ``replace`` swaps the snapshot atomically."""

    def __init__(self, settings: AppSettings | None = None) -> None:
        self._settings = settings or AppSettings()

    def current(self) -> AppSettings:
        return self._settings

    def replace(self, settings: AppSettings) -> None:
        self._settings = settings


def load_settings(path: Path) -> AppSettings:
    """Load settings from a YAML file.

    Args:
        path: Path to the settings file.

    Returns:
        Parsed AppSettings.

    Raises:
        SettingsError: If the file is missing, empty or invalid.
    """
    if not path.exists():
        raise SettingsError(f"Settings file not found: {path}")

    yaml = YAML(typ="safe")
    try:
        with path.open("r", encoding="utf-8") as f:
            data = yaml.load(f)
    except (OSError, YAMLError) as e:
        raise SettingsError(f"Failed to read settings at {path}: {e}") from e

    if data is None:
        raise SettingsError(f"Settings file is empty: {path}")
    if not isinstance(data, dict):
        raise SettingsError(f"Settings file must contain a mapping: {path}")

    try:
        settings = AppSettings.from_dict(data)
    except (TypeError, ValueError, AttributeError) as e:
        # Malformed sections, e.g. a scalar where a mapping belongs
        raise SettingsError(f"Invalid settings in {path}: {e}") from e
    log.debug(
        "settings_loaded",
        path=str(path),
        presets=len(settings.presets),
        profiles=len(settings.profiles),
    )
    return settings


class FileSettingsSource:
    """Settings backed by a YAML file, re-read whenever the file changes.

    A broken edit keeps the last good snapshot in effect and logs a warning;
    the very first load propagates its error.
    """

    def __init__(self, path: Path) -> None:
        self.path = path
        self._mtime_ns: int | None = None
        self._settings: AppSettings | None = None

    def current(self) -> AppSettings:
        try:
            mtime_ns = self.path.stat().st_mtime_ns
        except OSError as e:
            if self._settings is None:
                raise SettingsError(f"Settings file not found: {self.path}") from e
            log.warning("settings_file_unavailable", path=str(self.path), error=str(e))
            return self._settings

        if self._settings is None or mtime_ns != self._mtime_ns:
            try:
                self._settings = load_settings(self.path)
            except SettingsError as e:
                if self._settings is None:
                    raise
                log.warning("settings_reload_failed", path=str(self.path), error=str(e))
            self._mtime_ns = mtime_ns

        return self._settings
