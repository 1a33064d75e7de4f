"""Image generation provider protocol and types.

LangChain has no image-model base class, so the renderer talks to this
thin protocol instead.

Implementations:
    - ReplicateImageProvider (image_replicate.py): SDXL via Replicate predictions
    - A1111ImageProvider (image_a1111.py): self-hosted Stable Diffusion WebUI
    - OpenAIImageProvider (image_openai.py): gpt-image-1 / dall-e-3
    - PlaceholderImageProvider (image_placeholder.py): solid colors, no network
"""

from __future__ import annotations

import base64
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

_FORMAT_TO_CONTENT_TYPE: dict[str, str] = {
    "png": "image/png",
    "jpeg": "image/jpeg",
    "jpg": "image/jpeg",
    "webp": "image/webp",
}


def content_type_for(output_format: str) -> str:
    """MIME type for an output format name, defaulting to PNG."""
    return _FORMAT_TO_CONTENT_TYPE.get(output_format.lower(), "image/png")


@dataclass(frozen=True)
class GenerationParams:
    """Sampling parameters for one image request.

    Providers map these onto their own API; unsupported fields are ignored.
    """

    width: int = 768
    height: int = 1024
    steps: int = 35
    guidance_scale: float = 9.0
    scheduler: str = "DPMSolverMultistep"
    output_format: str = "png"
    output_quality: int = 95
    seed: int | None = None

    @property
    def size(self) -> str:
        return f"{self.width}x{self.height}"


@dataclass(frozen=True)
class ImageResult:
    """One generated image: inline bytes, a remote URL, or both.

    Attributes:
        image_data: Raw image bytes (empty when only a URL is available).
        url: Remote locator returned by hosted providers.
        content_type: MIME type (e.g., ``image/png``).
        provider_metadata: Provider-specific metadata (model, seed, ...).
    """

    image_data: bytes = b""
    url: str | None = None
    content_type: str = "image/png"
    provider_metadata: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.image_data and not self.url:
            raise ValueError("ImageResult needs image_data or url")

    @property
    def size_bytes(self) -> int:
        return len(self.image_data)

    @property
    def is_remote(self) -> bool:
        """True when the bytes still have to be fetched from ``url``."""
        return not self.image_data

    @classmethod
    def from_base64(
        cls,
        b64_data: str,
        content_type: str = "image/png",
        **metadata: Any,
    ) -> ImageResult:
        """Create from base64-encoded image data."""
        return cls(
            image_data=base64.b64decode(b64_data),
            content_type=content_type,
            provider_metadata=metadata,
        )


@runtime_checkable
class ImageProvider(Protocol):
    """Protocol for image generation backends."""

    async def generate(
        self,
        prompt: str,
        *,
        negative_prompt: str | None = None,
        params: GenerationParams | None = None,
    ) -> list[ImageResult]:
        """Generate images from a text prompt.

        Args:
            prompt: Positive text prompt.
            negative_prompt: Things to avoid (provider support varies).
            params: Sampling parameters; provider defaults when None.

        Returns:
            Generated images; may be empty if the provider produced nothing.

        Raises:
            ImageProviderError: If generation fails after the provider's own retries.
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
    """Raised when the image provider is unreachable or times out."""
