"""LLM and image provider adapters."""

from dreamcard.providers.base import ProviderError
from dreamcard.providers.factory import (
    PROVIDER_DEFAULTS,
    PROVIDER_ENV_VARS,
    create_chat_model,
    create_chat_model_from_spec,
    parse_provider_spec,
)
from dreamcard.providers.image import (
    GenerationParams,
    ImageContentPolicyError,
    ImageProvider,
    ImageProviderConnectionError,
    ImageProviderError,
    ImageResult,
)
from dreamcard.providers.image_factory import IMAGE_PROVIDERS, create_image_provider

__all__ = [
    "IMAGE_PROVIDERS",
    "PROVIDER_DEFAULTS",
    "PROVIDER_ENV_VARS",
    "GenerationParams",
    "ImageContentPolicyError",
    "ImageProvider",
    "ImageProviderConnectionError",
    "ImageProviderError",
    "ImageResult",
    "ProviderError",
    "create_chat_model",
    "create_chat_model_from_spec",
    "create_image_provider",
    "parse_provider_spec",
]
