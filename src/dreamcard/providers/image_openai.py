"""OpenAI image generation provider.

Supports gpt-image-1 (and legacy dall-e-3) via the OpenAI Images API.
Neither model accepts arbitrary sizes, so the requested width/height is
mapped onto the closest supported orientation.
"""

from __future__ import annotations

import os
from typing import TYPE_CHECKING, Any, NoReturn

from openai import APIConnectionError, APIStatusError, AsyncOpenAI

from dreamcard.observability.logging import get_logger
from dreamcard.providers.image import (
    GenerationParams,
    ImageContentPolicyError,
    ImageProviderConnectionError,
    ImageProviderError,
    ImageResult,
    content_type_for,
)

if TYPE_CHECKING:
    from openai.types import ImagesResponse

log = get_logger(__name__)

# orientation -> size
_GPT_IMAGE_SIZES: dict[str, str] = {
    "square": "1024x1024",
    "landscape": "1536x1024",
    "portrait": "1024x1536",
}

_DALLE3_SIZES: dict[str, str] = {
    "square": "1024x1024",
    "landscape": "1792x1024",
    "portrait": "1024x1792",
}

_OUTPUT_FORMATS = frozenset({"png", "jpeg", "webp"})


def _orientation(params: GenerationParams) -> str:
    if params.width == params.height:
        return "square"
    return "landscape" if params.width > params.height else "portrait"


class OpenAIImageProvider:
    """Image generation via OpenAI's Images API.

    Args:
        model: Model name (``gpt-image-1`` or ``dall-e-3``).
        api_key: OpenAI API key. Falls back to ``OPENAI_API_KEY``.
    """

    def __init__(self, model: str = "gpt-image-1", api_key: str | None = None) -> None:
        self._model = model
        api_key = api_key or os.getenv("OPENAI_API_KEY")
        if not api_key:
            raise ImageProviderError(
                "openai", "API key required. Set OPENAI_API_KEY environment variable."
            )
        self._is_gpt_image = model.startswith("gpt-image")
        self._sizes = _GPT_IMAGE_SIZES if self._is_gpt_image else _DALLE3_SIZES
        self._client = AsyncOpenAI(api_key=api_key)

    async def generate(
        self,
        prompt: str,
        *,
        negative_prompt: str | None = None,
        params: GenerationParams | None = None,
    ) -> list[ImageResult]:
        """Generate one image.

        OpenAI has no negative prompt parameter, so negative content is
        appended to the prompt as an avoidance clause.

        Raises:
            ImageProviderError: On API errors.
            ImageContentPolicyError: On content policy rejection.
            ImageProviderConnectionError: On network errors.
        """
        params = params or GenerationParams()
        effective_prompt = prompt
        if negative_prompt:
            effective_prompt = f"{prompt}\n\nAvoid: {negative_prompt}"

        size = self._sizes[_orientation(params)]
        output_format = params.output_format if params.output_format in _OUTPUT_FORMATS else "png"

        api_kwargs: dict[str, Any] = {
            "model": self._model,
            "prompt": effective_prompt,
            "n": 1,
            "size": size,
        }
        if self._is_gpt_image:
            api_kwargs["quality"] = "high"
            api_kwargs["output_format"] = output_format
        else:
            api_kwargs["quality"] = "hd"
            api_kwargs["response_format"] = "b64_json"
            output_format = "png"

        log.debug("openai_image_start", model=self._model, size=size, prompt_length=len(prompt))
        try:
            response: ImagesResponse = await self._client.images.generate(**api_kwargs)
        except Exception as e:
            self._handle_error(e)

        results: list[ImageResult] = []
        for item in response.data or []:
            metadata: dict[str, Any] = {"model": self._model, "size": size}
            revised_prompt = getattr(item, "revised_prompt", None)
            if revised_prompt:
                metadata["revised_prompt"] = revised_prompt
            if item.b64_json:
                results.append(
                    ImageResult.from_base64(
                        item.b64_json, content_type=content_type_for(output_format), **metadata
                    )
                )
            elif item.url:
                results.append(
                    ImageResult(
                        url=item.url,
                        content_type=content_type_for(output_format),
                        provider_metadata=metadata,
                    )
                )

        log.info("openai_image_complete", model=self._model, images=len(results))
        return results

    def _handle_error(self, error: Exception) -> NoReturn:
        """Convert OpenAI exceptions to image provider exceptions."""
        if isinstance(error, APIConnectionError):
            raise ImageProviderConnectionError("openai", f"Connection error: {error}") from error
        if isinstance(error, APIStatusError):
            status = error.status_code
            if status == 400 and "content_policy" in str(error).lower():
                raise ImageContentPolicyError(
                    "openai", f"Content policy rejection: {error}"
                ) from error
            raise ImageProviderError("openai", f"API error (HTTP {status}): {error}") from error
        raise ImageProviderError("openai", f"Image generation failed: {error}") from error
