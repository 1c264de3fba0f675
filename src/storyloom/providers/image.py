"""Image generation provider protocol and types.

LangChain has no image model abstraction, so image backends implement this
thin protocol: one request in, a list of generated images out. Payloads are
kept base64-encoded because that is how artifacts are persisted.

Implementations:
    - NanoGPTImageProvider (image_nanogpt.py): OpenAI-compatible images API
    - PlaceholderImageProvider (image_placeholder.py): offline solid colours
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal, Protocol, runtime_checkable


@dataclass(frozen=True)
class ImageGenerationRequest:
    """Parameters for one image generation call.

    Attributes:
        prompt: Full text prompt, style description included.
        model: Image model identifier.
        size: Requested size as ``WxH``.
        response_format: Desired encoding of the returned image.
    """

    prompt: str
    model: str
    size: str = "1024x1024"
    response_format: Literal["b64_json", "url"] = "b64_json"


@dataclass(frozen=True)
class GeneratedImage:
    """One image in a provider response; either field may be missing."""

    b64_json: str | None = None
    url: str | None = None
    revised_prompt: str | None = None


@dataclass(frozen=True)
class ImageGenerationResponse:
    """Provider response: zero or more generated images."""

    images: list[GeneratedImage] = field(default_factory=list)

    def first_payload(self) -> str | None:
        """Return the first image's base64 payload, if there is one."""
        if not self.images:
            return None
        return self.images[0].b64_json or None


@runtime_checkable
class ImageProvider(Protocol):
    """Protocol for image generation backends."""

    async def generate(self, request: ImageGenerationRequest) -> ImageGenerationResponse:
        """Generate images for ``request``.

        Raises:
            ImageProviderError: If generation fails.
        """
        ...


class ImageProviderError(Exception):
    """Base exception for image provider errors."""

    def __init__(self, provider: str, message: str) -> None:
        self.provider = provider
        super().__init__(f"[{provider}] {message}")


class ImageContentPolicyError(ImageProviderError):
    """Raised when image generation is rejected by content policy."""


class ImageProviderConnectionError(ImageProviderError):
    """Raised when the image provider is unreachable."""
