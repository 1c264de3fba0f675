"""Offline image provider.

Returns a flat-colour PNG for every request, so the illustration pipeline
can run without credentials or network. The colour is derived from the
prompt, which keeps repeated runs over the same passage stable.
"""

from __future__ import annotations

import base64
import hashlib
import struct
import zlib

from storyloom.providers.image import (
    GeneratedImage,
    ImageGenerationRequest,
    ImageGenerationResponse,
)

PNG_SIGNATURE = b"\x89PNG\r\n\x1a\n"

# Requested dimensions are divided by this
_DOWNSCALE = 8
_DEFAULT_DIMENSIONS = (64, 64)

# Muted tones that read as "image pending" next to real illustrations
_SWATCHES: tuple[tuple[int, int, int], ...] = (
    (72, 84, 112),
    (112, 72, 84),
    (84, 112, 72),
    (120, 104, 76),
    (70, 110, 108),
    (98, 76, 118),
    (60, 60, 66),
)


def _png_chunk(tag: bytes, body: bytes) -> bytes:
    checksum = zlib.crc32(tag + body) & 0xFFFFFFFF
    return struct.pack(">I", len(body)) + tag + body + struct.pack(">I", checksum)


def _make_png(width: int, height: int, r: int, g: int, b: int) -> bytes:
    """Encode a ``width`` x ``height`` 8-bit RGB PNG filled with one colour."""
    header = struct.pack(">2I5B", width, height, 8, 2, 0, 0, 0)
    # Each scanline starts with filter type 0
    scanline = b"\x00" + bytes((r, g, b)) * width
    pixels = zlib.compress(scanline * height, level=9)
    return b"".join(
        (
            PNG_SIGNATURE,
            _png_chunk(b"IHDR", header),
            _png_chunk(b"IDAT", pixels),
            _png_chunk(b"IEND", b""),
        )
    )


def _placeholder_size(size: str) -> tuple[int, int]:
    """Scale a ``WxH`` size string down; malformed sizes get a fixed default."""
    width_text, _, height_text = size.lower().partition("x")
    if not (width_text.isdigit() and height_text.isdigit()):
        return _DEFAULT_DIMENSIONS
    width, height = int(width_text), int(height_text)
    if not width or not height:
        return _DEFAULT_DIMENSIONS
    return max(1, width // _DOWNSCALE), max(1, height // _DOWNSCALE)


def _swatch_for(prompt: str) -> tuple[int, int, int]:
    digest = hashlib.sha256(prompt.encode("utf-8")).digest()
    return _SWATCHES[digest[0] % len(_SWATCHES)]


class PlaceholderImageProvider:
    """Image provider that never leaves the process."""

    async def generate(self, request: ImageGenerationRequest) -> ImageGenerationResponse:
        width, height = _placeholder_size(request.size)
        png = _make_png(width, height, *_swatch_for(request.prompt))
        image = GeneratedImage(
            b64_json=base64.b64encode(png).decode("ascii"),
            revised_prompt=request.prompt[:80],
        )
        return ImageGenerationResponse(images=[image])
