"""Text and image provider integrations.

Text generation goes through LangChain chat models resolved from presets;
image generation goes through the ``ImageProvider`` protocol.
"""

from storyloom.providers.base import (
    GenerationCancelledError,
    ProviderConfigError,
    ProviderConnectionError,
    ProviderError,
    StructuredOutputError,
)
from storyloom.providers.factory import create_chat_model
from storyloom.providers.generate import Generator, StructuredStream, TextStream
from storyloom.providers.image import (
    GeneratedImage,
    ImageContentPolicyError,
    ImageGenerationRequest,
    ImageGenerationResponse,
    ImageProvider,
    ImageProviderConnectionError,
    ImageProviderError,
)
from storyloom.providers.image_factory import create_image_provider
from storyloom.providers.options import build_provider_options, effort_to_budget
from storyloom.providers.resolver import ConfigResolver, ResolvedConfig

__all__ = [
    "ConfigResolver",
    "GeneratedImage",
    "GenerationCancelledError",
    "Generator",
    "ImageContentPolicyError",
    "ImageGenerationRequest",
    "ImageGenerationResponse",
    "ImageProvider",
    "ImageProviderConnectionError",
    "ImageProviderError",
    "ProviderConfigError",
    "ProviderConnectionError",
    "ProviderError",
    "ResolvedConfig",
    "StructuredOutputError",
    "StructuredStream",
    "TextStream",
    "build_provider_options",
    "create_chat_model",
    "create_image_provider",
    "effort_to_budget",
]
