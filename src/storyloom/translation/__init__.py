"""Story translation built on the generation façade."""

from storyloom.translation.service import (
    TranslationResult,
    TranslationService,
    UITranslationItem,
    language_display_name,
    supported_languages,
)

__all__ = [
    "TranslationResult",
    "TranslationService",
    "UITranslationItem",
    "language_display_name",
    "supported_languages",
]
