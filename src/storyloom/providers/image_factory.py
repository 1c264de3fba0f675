"""Image provider factory.

Creates image providers from a spec string (``nanogpt``, ``placeholder``).
Implementations are imported lazily.
"""

from __future__ import annotations

from typing import Any

from storyloom.providers.image import ImageProvider, ImageProviderError


def create_image_provider(provider_spec: str, api_key: str = "", **kwargs: Any) -> ImageProvider:
    """Create an image provider.

    Args:
        provider_spec: Provider name, optionally followed by ``/<anything>``
            (the suffix is ignored; the model travels with each request).
        api_key: Provider credential, where the provider needs one.
        **kwargs: Extra constructor options.

    Returns:
        Configured image provider.

    Raises:
        ImageProviderError: If the provider is unknown or the credential is missing.
    """
    provider = provider_spec.split("/", 1)[0].lower()

    if provider == "placeholder":
        from storyloom.providers.image_placeholder import PlaceholderImageProvider

        return PlaceholderImageProvider()

    if provider == "nanogpt":
        from storyloom.providers.image_nanogpt import NanoGPTImageProvider

        return NanoGPTImageProvider(api_key, **kwargs)

    raise ImageProviderError(provider, f"Unknown image provider: {provider}")
