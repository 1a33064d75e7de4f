"""Placeholder image provider for development and tests.

Generates small solid-color PNGs in pure Python: no network, no cost.
"""

from __future__ import annotations

import hashlib
import struct
import zlib

from dreamcard.providers.image import GenerationParams, ImageResult

# Requested sizes are scaled down by this factor to keep test images tiny.
_SCALE_DIVISOR = 8

# Muted colors, picked by prompt hash so each panel is visually distinct.
_PALETTE: list[tuple[int, int, int]] = [
    (88, 101, 130),  # slate blue
    (130, 88, 101),  # dusty rose
    (101, 130, 88),  # sage green
    (130, 118, 88),  # warm sand
    (88, 130, 125),  # teal
    (118, 88, 130),  # muted purple
]


def _make_png(width: int, height: int, r: int, g: int, b: int) -> bytes:
    """Encode a solid-color RGB PNG with no filtering."""

    def _chunk(chunk_type: bytes, data: bytes) -> bytes:
        payload = chunk_type + data
        crc = struct.pack(">I", zlib.crc32(payload) & 0xFFFFFFFF)
        return struct.pack(">I", len(data)) + payload + crc

    signature = b"\x89PNG\r\n\x1a\n"
    ihdr = _chunk(b"IHDR", struct.pack(">IIBBBBB", width, height, 8, 2, 0, 0, 0))
    row = bytes([0]) + bytes([r, g, b]) * width
    idat = _chunk(b"IDAT", zlib.compress(row * height))
    iend = _chunk(b"IEND", b"")
    return signature + ihdr + idat + iend


class PlaceholderImageProvider:
    """Image provider returning one deterministic solid-color PNG per call.

    The same prompt always yields the same color. Dimensions follow the
    requested aspect, scaled down.
    """

    def __init__(self) -> None:
        self.calls: int = 0

    async def generate(
        self,
        prompt: str,
        *,
        negative_prompt: str | None = None,  # noqa: ARG002
        params: GenerationParams | None = None,
    ) -> list[ImageResult]:
        params = params or GenerationParams()
        self.calls += 1
        width = max(1, params.width // _SCALE_DIVISOR)
        height = max(1, params.height // _SCALE_DIVISOR)

        idx = int(hashlib.md5(prompt.encode()).hexdigest(), 16) % len(_PALETTE)
        r, g, b = _PALETTE[idx]

        return [
            ImageResult(
                image_data=_make_png(width, height, r, g, b),
                content_type="image/png",
                provider_metadata={
                    "quality": "placeholder",
                    "size": f"{width}x{height}",
                    "color": f"#{r:02x}{g:02x}{b:02x}",
                    "prompt_preview": prompt[:80],
                },
            )
        ]
