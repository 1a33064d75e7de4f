"""Automatic1111 (Stable Diffusion WebUI) image provider.

Generates images via the A1111 REST API (``/sdapi/v1/txt2img``). Requires
``A1111_HOST`` pointing at a running WebUI instance
(e.g., ``http://athena:7860``).

The provider spec string selects the SD checkpoint::

    a1111                   # Use whatever checkpoint is loaded
    a1111/dreamshaper_8     # Override to dreamshaper_8
"""

from __future__ import annotations

import json
import os
from typing import Any

import httpx

from dreamcard.observability.logging import get_logger
from dreamcard.providers.image import (
    GenerationParams,
    ImageProviderConnectionError,
    ImageProviderError,
    ImageResult,
)

log = get_logger(__name__)

_DEFAULT_TIMEOUT = 180.0  # SDXL at high res can be slow on consumer GPUs

# Diffusers scheduler names -> (A1111 sampler, A1111 noise schedule).
_SAMPLER_MAP: dict[str, tuple[str, str]] = {
    "DPMSolverMultistep": ("DPM++ 2M", "karras"),
    "K_EULER": ("Euler", "automatic"),
    "K_EULER_ANCESTRAL": ("Euler a", "automatic"),
    "DDIM": ("DDIM", "automatic"),
    "HeunDiscrete": ("Heun", "automatic"),
}


def _resolve_sampler(scheduler: str) -> tuple[str, str]:
    return _SAMPLER_MAP.get(scheduler, _SAMPLER_MAP["DPMSolverMultistep"])


class A1111ImageProvider:
    """Image provider using Automatic1111 Stable Diffusion WebUI.

    Args:
        model: Optional SD checkpoint name (e.g., ``dreamshaper_8``). When set,
            the request includes ``override_settings.sd_model_checkpoint``.
        host: WebUI base URL. Falls back to ``A1111_HOST`` env var.
        timeout: Request timeout in seconds.
    """

    def __init__(
        self,
        model: str | None = None,
        host: str | None = None,
        *,
        timeout: float = _DEFAULT_TIMEOUT,
    ) -> None:
        host = host or os.environ.get("A1111_HOST")
        if not host:
            raise ImageProviderError(
                "a1111",
                "A1111_HOST environment variable is required. "
                "Set it to the WebUI URL (e.g., http://localhost:7860).",
            )
        self._host = host.rstrip("/")
        self._model = model
        self._timeout = timeout
        self._client = httpx.AsyncClient(timeout=timeout)

    async def aclose(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()

    async def generate(
        self,
        prompt: str,
        *,
        negative_prompt: str | None = None,
        params: GenerationParams | None = None,
    ) -> list[ImageResult]:
        """Generate images via the txt2img endpoint.

        Raises:
            ImageProviderConnectionError: If A1111 is unreachable or times out.
            ImageProviderError: On HTTP errors.
        """
        params = params or GenerationParams()
        sampler, schedule = _resolve_sampler(params.scheduler)

        payload: dict[str, Any] = {
            "prompt": prompt,
            "negative_prompt": negative_prompt or "",
            "width": params.width,
            "height": params.height,
            "steps": params.steps,
            "cfg_scale": params.guidance_scale,
            "sampler_name": sampler,
            "scheduler": schedule,
        }
        if params.seed is not None:
            payload["seed"] = params.seed
        if self._model:
            payload["override_settings"] = {"sd_model_checkpoint": self._model}

        url = f"{self._host}/sdapi/v1/txt2img"
        log.debug(
            "a1111_generate_start",
            host=self._host,
            model=self._model,
            size=params.size,
            steps=params.steps,
        )

        try:
            response = await self._client.post(url, json=payload)
        except httpx.ConnectError as e:
            log.error("a1111_connect_error", host=self._host, error=str(e))
            raise ImageProviderConnectionError(
                "a1111", f"Cannot connect to A1111 at {self._host}: {e}"
            ) from e
        except httpx.TimeoutException as e:
            log.error("a1111_timeout", host=self._host, timeout=self._timeout)
            raise ImageProviderConnectionError(
                "a1111", f"Request to A1111 timed out after {self._timeout}s: {e}"
            ) from e

        if response.status_code != 200:
            body_preview = response.text[:200]
            log.error("a1111_http_error", status_code=response.status_code, body=body_preview)
            raise ImageProviderError(
                "a1111", f"A1111 returned HTTP {response.status_code}: {body_preview}"
            )

        data = response.json()
        images: list[str] = data.get("images") or []

        seed = None
        active_model = self._model
        info_str = data.get("info")
        if info_str:
            try:
                info = json.loads(info_str) if isinstance(info_str, str) else info_str
                seed = info.get("seed")
                if not self._model:
                    active_model = info.get("sd_model_name")
            except (json.JSONDecodeError, TypeError, AttributeError) as e:
                log.warning("a1111_info_parse_failed", error=str(e))

        metadata: dict[str, Any] = {
            "model": active_model,
            "size": params.size,
            "steps": params.steps,
            "sampler": sampler,
        }
        if seed is not None:
            metadata["seed"] = seed

        log.info("a1111_generate_complete", model=active_model, images=len(images), seed=seed)
        return [
            ImageResult.from_base64(image, content_type="image/png", **metadata)
            for image in images
        ]
