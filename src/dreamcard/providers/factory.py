"""Factory for LangChain chat models used by the dream interpreter.

Uses LangChain's ``init_chat_model`` for unified instantiation. Provider
specifics (API keys from the environment, the OpenRouter endpoint) are
resolved before the unified call so a misconfiguration fails at startup
with a :class:`ProviderError` instead of on the first job.
"""

from __future__ import annotations

import os
from typing import TYPE_CHECKING, Any

from dreamcard.observability.logging import get_logger
from dreamcard.providers.base import ProviderError

if TYPE_CHECKING:
    from langchain_core.language_models import BaseChatModel

log = get_logger(__name__)

OPENROUTER_BASE_URL = "https://openrouter.ai/api/v1"

PROVIDER_DEFAULTS: dict[str, str | None] = {
    "openrouter": "meta-llama/llama-3.3-70b-instruct",
    "openai": "gpt-4o-mini",
    "anthropic": "claude-sonnet-4-20250514",
    "ollama": None,  # must be explicit
}

_KNOWN_PROVIDERS = frozenset(PROVIDER_DEFAULTS)

_PACKAGES: dict[str, str] = {
    "openrouter": "langchain-openai",
    "openai": "langchain-openai",
    "anthropic": "langchain-anthropic",
    "ollama": "langchain-ollama",
}

# Environment variable holding the credential (or host) per provider.
PROVIDER_ENV_VARS: dict[str, str] = {
    "openrouter": "OPENROUTER_API_KEY",
    "openai": "OPENAI_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
    "ollama": "OLLAMA_HOST",
}


def parse_provider_spec(spec: str) -> tuple[str, str]:
    """Split ``provider/model`` into its parts, filling in the default model.

    Only the first ``/`` separates provider from model, so OpenRouter model
    ids such as ``meta-llama/llama-3.3-70b-instruct`` survive intact.

    Raises:
        ProviderError: If the provider is unknown or has no default model.
    """
    provider, _, model = spec.partition("/")
    provider = provider.strip().lower()
    if provider not in _KNOWN_PROVIDERS:
        raise ProviderError(provider, f"Unknown provider: {provider}")
    model = model.strip() or (PROVIDER_DEFAULTS.get(provider) or "")
    if not model:
        raise ProviderError(provider, "Model must be specified, e.g. 'ollama/qwen3:8b'")
    return provider, model


def create_chat_model(provider_name: str, model: str, **kwargs: Any) -> BaseChatModel:
    """Create a LangChain chat model.

    Args:
        provider_name: One of openrouter, openai, anthropic, ollama.
        model: Model name/identifier.
        **kwargs: Extra options (temperature, max_tokens, api_key, host, ...).

    Returns:
        Configured BaseChatModel.

    Raises:
        ProviderError: If the provider is unknown, misconfigured or its
            LangChain integration package is not installed.
    """
    provider = provider_name.strip().lower()
    if provider not in _KNOWN_PROVIDERS:
        log.error("provider_unknown", provider=provider)
        raise ProviderError(provider, f"Unknown provider: {provider}")

    kwargs = _preprocess_provider_kwargs(provider, kwargs)
    provider_for_init = "openai" if provider == "openrouter" else provider

    try:
        from langchain.chat_models import init_chat_model

        chat_model: BaseChatModel = init_chat_model(
            model=model, model_provider=provider_for_init, **kwargs
        )
    except ImportError as e:
        package = _PACKAGES[provider]
        log.error("provider_import_error", provider=provider, package=package)
        raise ProviderError(provider, f"{package} not installed. Run: pip install {package}") from e

    log.info("chat_model_created", provider=provider, model=model)
    return chat_model


def create_chat_model_from_spec(spec: str, **kwargs: Any) -> BaseChatModel:
    """Create a chat model from a ``provider/model`` spec string."""
    provider, model = parse_provider_spec(spec)
    return create_chat_model(provider, model, **kwargs)


def _preprocess_provider_kwargs(provider: str, kwargs: dict[str, Any]) -> dict[str, Any]:
    """Resolve credentials and endpoints from kwargs or the environment.

    Raises:
        ProviderError: If a required key or host is missing.
    """
    kwargs = dict(kwargs)
    env_var = PROVIDER_ENV_VARS[provider]

    if provider == "ollama":
        host = kwargs.pop("host", None) or os.getenv(env_var)
        if not host:
            log.error("provider_config_error", provider=provider, missing=env_var)
            raise ProviderError(provider, f"{env_var} not configured.")
        kwargs["base_url"] = host
        # ChatOllama calls the output cap num_predict
        if "max_tokens" in kwargs:
            kwargs["num_predict"] = kwargs.pop("max_tokens")
        return kwargs

    api_key = kwargs.get("api_key") or os.getenv(env_var)
    if not api_key:
        log.error("provider_config_error", provider=provider, missing=env_var)
        raise ProviderError(provider, f"API key required. Set {env_var} environment variable.")
    kwargs["api_key"] = api_key

    if provider == "openrouter":
        kwargs.setdefault("base_url", OPENROUTER_BASE_URL)
        kwargs.setdefault(
            "default_headers",
            {"HTTP-Referer": "https://dreamcard.app", "X-Title": "DreamCard"},
        )

    return kwargs
