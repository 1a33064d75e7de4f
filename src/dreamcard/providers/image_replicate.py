"""Replicate image provider.

Runs text-to-image models hosted on Replicate through its HTTP API: create a
prediction, then poll it until it reaches a terminal state. Requires
``REPLICATE_API_TOKEN``.

The provider spec string selects the model, optionally pinned to a version::

    replicate                                   # stability-ai/sdxl, pinned version
    replicate/black-forest-labs/flux-dev        # latest version of a model
    replicate/stability-ai/sdxl:<version-id>    # explicit version
"""

from __future__ import annotations

import asyncio
import os
from typing import Any

import httpx

from dreamcard.observability.logging import get_logger
from dreamcard.providers.image import (
    GenerationParams,
    ImageContentPolicyError,
    ImageProviderConnectionError,
    ImageProviderError,
    ImageResult,
    content_type_for,
)

log = get_logger(__name__)

API_BASE_URL = "https://api.replicate.com/v1"
DEFAULT_MODEL = (
    "stability-ai/sdxl:39ed52f2a78e934b3ba6e2a89f5b1c712de7dfea535525255b1aa35c5565e08b"
)

_TERMINAL = frozenset({"succeeded", "failed", "canceled"})
_RETRYABLE_STATUS = frozenset({429, 500, 502, 503, 504})
_POLICY_MARKERS = ("nsfw", "content policy", "safety")


class ReplicateImageProvider:
    """Image provider backed by Replicate predictions.

    Args:
        model: ``owner/name`` or ``owner/name:version``. Defaults to pinned SDXL.
        api_token: Replicate token. Falls back to ``REPLICATE_API_TOKEN``.
        poll_interval: Seconds between status polls.
        timeout: Upper bound in seconds for one prediction, polling included.
        max_retries: Retries for transient HTTP failures (429, 5xx, network).
        client: Pre-built HTTP client (for testing).
    """

    def __init__(
        self,
        model: str | None = None,
        api_token: str | None = None,
        *,
        poll_interval: float = 1.0,
        timeout: float = 300.0,
        max_retries: int = 2,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        token = api_token or os.getenv("REPLICATE_API_TOKEN")
        if not token:
            raise ImageProviderError(
                "replicate", "API token required. Set REPLICATE_API_TOKEN environment variable."
            )
        model = model or DEFAULT_MODEL
        self._model, _, self._version = model.partition(":")
        self._poll_interval = poll_interval
        self._timeout = timeout
        self._max_retries = max_retries
        self._client = client or httpx.AsyncClient(base_url=API_BASE_URL, timeout=60.0)
        self._headers = {"Authorization": f"Bearer {token}", "Content-Type": "application/json"}

    async def aclose(self) -> None:
        await self._client.aclose()

    def _build_input(
        self, prompt: str, negative_prompt: str | None, params: GenerationParams
    ) -> dict[str, Any]:
        model_input: dict[str, Any] = {
            "prompt": prompt,
            "width": params.width,
            "height": params.height,
            "num_inference_steps": params.steps,
            "guidance_scale": params.guidance_scale,
            "scheduler": params.scheduler,
            "output_format": params.output_format,
            "output_quality": params.output_quality,
        }
        if negative_prompt:
            model_input["negative_prompt"] = negative_prompt
        if params.seed is not None:
            model_input["seed"] = params.seed
        return model_input

    async def _request(self, method: str, url: str, **kwargs: Any) -> dict[str, Any]:
        """Send a request, retrying transient failures with exponential backoff.

        Raises:
            ImageProviderConnectionError: If the API stays unreachable.
            ImageProviderError: On non-retryable HTTP errors.
        """
        attempt = 0
        while True:
            try:
                response = await self._client.request(
                    method, url, headers=self._headers, **kwargs
                )
            except httpx.TransportError as e:
                if attempt >= self._max_retries:
                    raise ImageProviderConnectionError(
                        "replicate", f"Cannot reach Replicate: {e}"
                    ) from e
                error: str = str(e)
            else:
                if response.status_code < 400:
                    result: dict[str, Any] = response.json()
                    return result
                if response.status_code not in _RETRYABLE_STATUS or attempt >= self._max_retries:
                    raise ImageProviderError(
                        "replicate",
                        f"HTTP {response.status_code}: {response.text[:200]}",
                    )
                error = f"HTTP {response.status_code}"

            attempt += 1
            delay = self._poll_interval * 2 ** (attempt - 1)
            log.warning("replicate_retry", attempt=attempt, delay=delay, error=error)
            await asyncio.sleep(delay)

    async def _create_prediction(self, model_input: dict[str, Any]) -> dict[str, Any]:
        if self._version:
            return await self._request(
                "POST", "/predictions", json={"version": self._version, "input": model_input}
            )
        return await self._request(
            "POST", f"/models/{self._model}/predictions", json={"input": model_input}
        )

    async def _wait(self, prediction: dict[str, Any]) -> dict[str, Any]:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self._timeout
        while prediction.get("status") not in _TERMINAL:
            if loop.time() >= deadline:
                raise ImageProviderConnectionError(
                    "replicate",
                    f"Prediction {prediction.get('id')} did not finish within {self._timeout}s",
                )
            await asyncio.sleep(self._poll_interval)
            prediction = await self._request("GET", f"/predictions/{prediction['id']}")
        return prediction

    async def generate(
        self,
        prompt: str,
        *,
        negative_prompt: str | None = None,
        params: GenerationParams | None = None,
    ) -> list[ImageResult]:
        """Run one prediction and return its output URLs as image results.

        Raises:
            ImageContentPolicyError: If the model's safety checker rejected the output.
            ImageProviderConnectionError: On network failure or timeout.
            ImageProviderError: If the prediction failed or was canceled.
        """
        params = params or GenerationParams()
        model_input = self._build_input(prompt, negative_prompt, params)

        log.debug("replicate_generate_start", model=self._model, size=params.size)
        prediction = await self._wait(await self._create_prediction(model_input))

        status = prediction.get("status")
        if status != "succeeded":
            message = str(prediction.get("error") or f"prediction {status}")
            log.error("replicate_prediction_failed", status=status, error=message)
            if any(marker in message.lower() for marker in _POLICY_MARKERS):
                raise ImageContentPolicyError("replicate", message)
            raise ImageProviderError("replicate", message)

        output = prediction.get("output") or []
        urls = [output] if isinstance(output, str) else [u for u in output if u]
        metadata = {
            "model": self._model,
            "version": self._version or prediction.get("version"),
            "prediction_id": prediction.get("id"),
            "size": params.size,
        }
        log.info("replicate_generate_complete", model=self._model, images=len(urls))
        return [
            ImageResult(
                url=url,
                content_type=content_type_for(params.output_format),
                provider_metadata=dict(metadata),
            )
            for url in urls
        ]
