"""Image provider factory.

Creates image provider instances from spec strings (e.g., ``replicate``,
``a1111/dreamshaper_8``). Implementations are imported lazily so the
OpenAI SDK is only loaded when that provider is selected.
"""

from __future__ import annotations

from typing import Any

from dreamcard.providers.image import ImageProvider, ImageProviderError

IMAGE_PROVIDERS = ("replicate", "a1111", "openai", "placeholder")


def create_image_provider(provider_spec: str, **kwargs: Any) -> ImageProvider:
    """Create an image provider from a spec string.

    Args:
        provider_spec: ``provider`` or ``provider/model``. Everything after the
            first ``/`` is the model, so ``replicate/owner/name:version`` works.
        **kwargs: Extra options forwarded to the provider constructor.

    Raises:
        ImageProviderError: If the provider is unknown or misconfigured.
    """
    provider, _, model = provider_spec.partition("/")
    provider_lower = provider.strip().lower()
    model_name = model.strip() or None

    if provider_lower == "placeholder":
        from dreamcard.providers.image_placeholder import PlaceholderImageProvider

        return PlaceholderImageProvider()

    if provider_lower == "replicate":
        from dreamcard.providers.image_replicate import ReplicateImageProvider

        return ReplicateImageProvider(model=model_name, **kwargs)

    if provider_lower == "a1111":
        from dreamcard.providers.image_a1111 import A1111ImageProvider

        return A1111ImageProvider(model=model_name, **kwargs)

    if provider_lower == "openai":
        from dreamcard.providers.image_openai import OpenAIImageProvider

        if model_name:
            return OpenAIImageProvider(model=model_name, **kwargs)
        return OpenAIImageProvider(**kwargs)

    raise ImageProviderError(provider_lower, f"Unknown image provider: {provider_lower}")
