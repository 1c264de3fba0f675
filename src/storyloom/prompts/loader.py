"""Prompt template loading and rendering.

A template is a YAML mapping with ``system`` and ``user`` text using
``{{ variable }}`` placeholders. Placeholders with no value render empty.
Directories given to :class:`PromptLoader` shadow the packaged templates,
which is how users restyle scene prompts or add image styles.
"""

from __future__ import annotations

import re
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, ValidationError
from ruamel.yaml import YAML
from ruamel.yaml.error import YAMLError

PACKAGED_TEMPLATES = Path(__file__).parent / "templates"

_PLACEHOLDER = re.compile(r"\{\{\s*(\w+)\s*\}\}")


def render(text: str, variables: dict[str, Any]) -> str:
    """Fill ``{{ name }}`` placeholders in ``text`` from ``variables``."""
    return _PLACEHOLDER.sub(lambda m: _as_text(variables.get(m.group(1))), text)


def _as_text(value: Any) -> str:
    return "" if value is None else str(value)


class PromptTemplate(BaseModel):
    """System and user prompt text loaded from one template file."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    name: str
    description: str = ""
    system: str = ""
    user: str = ""

    def render_system(self, **variables: Any) -> str:
        return render(self.system, variables)

    def render_user(self, **variables: Any) -> str:
        return render(self.user, variables)


class TemplateNotFoundError(Exception):
    """No search directory holds ``<name>.yaml``."""

    def __init__(self, template_name: str, paths: list[Path]) -> None:
        self.template_name = template_name
        self.paths = paths
        where = ", ".join(map(str, paths))
        super().__init__(f"Template not found: {template_name} (searched {where})")


class TemplateParseError(Exception):
    """A template file exists but is not a usable template."""

    def __init__(self, template_name: str, reason: str) -> None:
        self.template_name = template_name
        self.reason = reason
        super().__init__(f"Failed to parse template '{template_name}': {reason}")


class PromptLoader:
    """Resolve template names against an ordered list of directories.

    Loaded templates are cached per loader; call :meth:`clear_cache` to
    pick up edits on disk.
    """

    def __init__(self, *extra_paths: Path) -> None:
        self.search_paths: list[Path] = [*extra_paths, PACKAGED_TEMPLATES]
        self._yaml = YAML(typ="safe")
        self._cache: dict[str, PromptTemplate] = {}

    def _locate(self, template_name: str) -> Path | None:
        candidates = (d / f"{template_name}.yaml" for d in self.search_paths)
        return next((p for p in candidates if p.is_file()), None)

    def exists(self, template_name: str) -> bool:
        return self._locate(template_name) is not None

    def load(self, template_name: str) -> PromptTemplate:
        """Return the template called ``template_name``.

        Raises:
            TemplateNotFoundError: No search path has the template.
            TemplateParseError: The file is not valid YAML or not a mapping.
        """
        cached = self._cache.get(template_name)
        if cached is not None:
            return cached

        path = self._locate(template_name)
        if path is None:
            raise TemplateNotFoundError(template_name, self.search_paths)

        try:
            data = self._yaml.load(path.read_text(encoding="utf-8"))
        except (OSError, YAMLError) as e:
            raise TemplateParseError(template_name, str(e)) from e
        if not isinstance(data, dict):
            raise TemplateParseError(template_name, "Template must be a mapping")

        try:
            template = PromptTemplate.model_validate({"name": template_name, **data})
        except ValidationError as e:
            raise TemplateParseError(template_name, str(e)) from e

        self._cache[template_name] = template
        return template

    def clear_cache(self) -> None:
        self._cache.clear()
