"""Image style descriptions prepended to scene prompts.

Styles are looked up from a ``StyleTemplateSource`` (user-customizable
templates). When the lookup finds nothing or fails, one of the built-in
styles is used, defaulting to soft anime.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

from storyloom.observability.logging import get_logger
from storyloom.prompts.loader import TemplateNotFoundError

if TYPE_CHECKING:
    from storyloom.prompts.loader import PromptLoader

log = get_logger(__name__)

DEFAULT_STYLE_ID = "image-style-soft-anime"

DEFAULT_STYLES: dict[str, str] = {
    "image-style-soft-anime": (
        "Soft cel-shaded anime illustration. Muted pastel color palette with low "
        "saturation. Diffused ambient lighting, subtle linework blending into colors. "
        "Smooth gradients, slight bloom effect on highlights. Dreamy, airy atmosphere. "
        "Studio Ghibli-inspired. Soft shadows, watercolor texture hints in background."
    ),
    "image-style-semi-realistic": (
        "Semi-realistic anime art with refined, detailed rendering. Realistic "
        "proportions with anime influence. Detailed hair strands, subtle skin tones, "
        "fabric folds. Naturalistic lighting with clear direction and soft falloff. "
        "Cinematic composition with depth of field. Rich, slightly desaturated colors "
        "with intentional color grading. Painterly quality with polished edges. "
        "Atmospheric and grounded mood."
    ),
    "image-style-photorealistic": (
        "Photorealistic digital art. True-to-life rendering with natural lighting. "
        "Detailed textures, accurate proportions. Professional photography aesthetic. "
        "Cinematic depth of field. High dynamic range. Realistic materials and surfaces."
    ),
}


@runtime_checkable
class StyleTemplateSource(Protocol):
    """Source of user-customized style descriptions."""

    def get_style(self, style_id: str) -> str | None:
        """Return the style text for ``style_id``, or None if not customized."""
        ...


class PromptStyleSource:
    """Styles stored as prompt templates; the ``system`` text is the style."""

    def __init__(self, loader: PromptLoader) -> None:
        self._loader = loader

    def get_style(self, style_id: str) -> str | None:
        try:
            template = self._loader.load(style_id)
        except TemplateNotFoundError:
            return None
        return template.system.strip() or None


def resolve_style_prompt(style_id: str, source: StyleTemplateSource | None = None) -> str:
    """Return the style description for ``style_id``.

    Args:
        style_id: Style identifier from image settings.
        source: Optional customization source consulted first.

    Returns:
        Customized style text, else the built-in style, else the default style.
    """
    if source is not None:
        try:
            customized = source.get_style(style_id)
        except Exception as e:
            log.warning("style_lookup_failed", style_id=style_id, error=str(e))
            customized = None
        if customized:
            return customized

    return DEFAULT_STYLES.get(style_id, DEFAULT_STYLES[DEFAULT_STYLE_ID])
