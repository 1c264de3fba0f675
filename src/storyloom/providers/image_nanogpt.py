"""NanoGPT image generation provider.

NanoGPT exposes an OpenAI-compatible ``/v1/images/generations`` endpoint.
Requests go through a shared ``httpx.AsyncClient``; the API key is sent as a
bearer token.
"""

from __future__ import annotations

from typing import Any

import httpx

from storyloom.observability.logging import get_logger
from storyloom.providers.image import (
    GeneratedImage,
    ImageContentPolicyError,
    ImageGenerationRequest,
    ImageGenerationResponse,
    ImageProviderConnectionError,
    ImageProviderError,
)

log = get_logger(__name__)

NANOGPT_BASE_URL = "https://nano-gpt.com/api"
_DEFAULT_TIMEOUT = 120.0


class NanoGPTImageProvider:
    """Image generation via NanoGPT.

    Args:
        api_key: NanoGPT API key.
        base_url: API root; ``/v1/images/generations`` is appended.
        timeout: Request timeout in seconds.

    Raises:
        ImageProviderError: If no API key is given.
    """

    def __init__(
        self,
        api_key: str,
        base_url: str = NANOGPT_BASE_URL,
        timeout: float = _DEFAULT_TIMEOUT,
    ) -> None:
        if not api_key:
            raise ImageProviderError("nanogpt", "API key required for image generation")
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._client = httpx.AsyncClient(
            timeout=timeout,
            headers={"Authorization": f"Bearer {api_key}"},
        )

    async def aclose(self) -> None:
        """Close the HTTP client."""
        await self._client.aclose()

    async def generate(self, request: ImageGenerationRequest) -> ImageGenerationResponse:
        """Generate an image.

        Raises:
            ImageProviderConnectionError: If NanoGPT is unreachable or times out.
            ImageContentPolicyError: If the prompt is rejected by moderation.
            ImageProviderError: On other API errors or malformed responses.
        """
        payload: dict[str, Any] = {
            "prompt": request.prompt,
            "model": request.model,
            "n": 1,
            "size": request.size,
            "response_format": request.response_format,
        }
        url = f"{self._base_url}/v1/images/generations"

        log.debug(
            "nanogpt_generate_start",
            model=request.model,
            size=request.size,
            prompt_length=len(request.prompt),
        )

        try:
            response = await self._client.post(url, json=payload)
        except httpx.TimeoutException as e:
            log.error("nanogpt_timeout", timeout=self._timeout)
            raise ImageProviderConnectionError(
                "nanogpt", f"Request timed out after {self._timeout}s: {e}"
            ) from e
        except httpx.HTTPError as e:
            log.error("nanogpt_connect_error", error=str(e))
            raise ImageProviderConnectionError("nanogpt", f"Connection error: {e}") from e

        if response.status_code != 200:
            body_preview = response.text[:200]
            log.error(
                "nanogpt_http_error",
                status_code=response.status_code,
                body_preview=body_preview,
            )
            if response.status_code == 400 and "content_policy" in body_preview.lower():
                raise ImageContentPolicyError(
                    "nanogpt", f"Content policy rejection: {body_preview}"
                )
            raise ImageProviderError(
                "nanogpt", f"API error (HTTP {response.status_code}): {body_preview}"
            )

        try:
            data = response.json()
        except ValueError as e:
            raise ImageProviderError("nanogpt", "Response is not valid JSON") from e

        items = data.get("data") if isinstance(data, dict) else None
        if not isinstance(items, list):
            raise ImageProviderError("nanogpt", "Response missing 'data' list")

        images = [
            GeneratedImage(
                b64_json=item.get("b64_json"),
                url=item.get("url"),
                revised_prompt=item.get("revised_prompt"),
            )
            for item in items
            if isinstance(item, dict)
        ]

        log.info("nanogpt_generate_complete", model=request.model, images=len(images))
        return ImageGenerationResponse(images=images)
