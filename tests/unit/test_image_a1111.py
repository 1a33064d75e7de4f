"""Tests for A1111 (Automatic1111) image provider."""

from __future__ import annotations

import base64
import json
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from dreamcard.providers.image import (
    GenerationParams,
    ImageProviderConnectionError,
    ImageProviderError,
)
from dreamcard.providers.image_a1111 import A1111ImageProvider, _resolve_sampler


def _fake_response(
    image_b64: str = "",
    seed: int = 42,
    status_code: int = 200,
    sd_model_name: str = "Dreamshaper",
) -> httpx.Response:
    """Build a fake httpx.Response mimicking A1111 txt2img output."""
    if not image_b64:
        image_b64 = base64.b64encode(b"fake_png_data").decode()
    body = {
        "images": [image_b64],
        "info": json.dumps({"seed": seed, "sd_model_name": sd_model_name}),
    }
    return httpx.Response(status_code, json=body)


class TestA1111Provider:
    @pytest.mark.asyncio()
    async def test_generate_returns_image(self) -> None:
        provider = A1111ImageProvider(host="http://localhost:7860")

        with patch.object(
            provider._client, "post", new_callable=AsyncMock, return_value=_fake_response()
        ):
            results = await provider.generate("a lantern in fog")

        assert len(results) == 1
        assert results[0].image_data == b"fake_png_data"
        assert results[0].content_type == "image/png"
        assert results[0].provider_metadata["seed"] == 42
        assert results[0].provider_metadata["model"] == "Dreamshaper"

    @pytest.mark.asyncio()
    async def test_payload_maps_generation_params(self) -> None:
        provider = A1111ImageProvider(host="http://localhost:7860/")
        mock_post = AsyncMock(return_value=_fake_response())
        params = GenerationParams(width=512, height=768, steps=20, guidance_scale=7.0, seed=3)

        with patch.object(provider._client, "post", mock_post):
            await provider.generate("test prompt", negative_prompt="faces", params=params)

        assert mock_post.call_args.args[0] == "http://localhost:7860/sdapi/v1/txt2img"
        payload = mock_post.call_args.kwargs["json"]
        assert payload["negative_prompt"] == "faces"
        assert (payload["width"], payload["height"], payload["steps"]) == (512, 768, 20)
        assert payload["cfg_scale"] == 7.0
        assert payload["seed"] == 3
        assert payload["sampler_name"] == "DPM++ 2M"
        assert payload["scheduler"] == "karras"

    @pytest.mark.asyncio()
    async def test_checkpoint_override(self) -> None:
        provider = A1111ImageProvider(model="dreamshaper_8", host="http://localhost:7860")
        mock_post = AsyncMock(return_value=_fake_response())

        with patch.object(provider._client, "post", mock_post):
            results = await provider.generate("test prompt")

        payload = mock_post.call_args.kwargs["json"]
        assert payload["override_settings"]["sd_model_checkpoint"] == "dreamshaper_8"
        assert results[0].provider_metadata["model"] == "dreamshaper_8"

    @pytest.mark.asyncio()
    async def test_no_checkpoint_when_unset(self) -> None:
        provider = A1111ImageProvider(host="http://localhost:7860")
        mock_post = AsyncMock(return_value=_fake_response())

        with patch.object(provider._client, "post", mock_post):
            await provider.generate("test prompt")

        payload = mock_post.call_args.kwargs["json"]
        assert "override_settings" not in payload
        assert "seed" not in payload
        assert payload["negative_prompt"] == ""

    @pytest.mark.asyncio()
    async def test_connect_error(self) -> None:
        provider = A1111ImageProvider(host="http://localhost:7860")

        with (
            patch.object(
                provider._client,
                "post",
                new_callable=AsyncMock,
                side_effect=httpx.ConnectError("refused"),
            ),
            pytest.raises(ImageProviderConnectionError, match="Cannot connect"),
        ):
            await provider.generate("test")

    @pytest.mark.asyncio()
    async def test_timeout(self) -> None:
        provider = A1111ImageProvider(host="http://localhost:7860", timeout=5.0)

        with (
            patch.object(
                provider._client,
                "post",
                new_callable=AsyncMock,
                side_effect=httpx.ReadTimeout("slow"),
            ),
            pytest.raises(ImageProviderConnectionError, match="timed out after 5.0s"),
        ):
            await provider.generate("test")

    @pytest.mark.asyncio()
    async def test_http_error(self) -> None:
        provider = A1111ImageProvider(host="http://localhost:7860")
        response = httpx.Response(500, text="CUDA out of memory")

        with (
            patch.object(provider._client, "post", new_callable=AsyncMock, return_value=response),
            pytest.raises(ImageProviderError, match="HTTP 500: CUDA out of memory"),
        ):
            await provider.generate("test")

    @pytest.mark.asyncio()
    async def test_malformed_info_is_ignored(self) -> None:
        provider = A1111ImageProvider(host="http://localhost:7860")
        image_b64 = base64.b64encode(b"img").decode()
        response = httpx.Response(200, json={"images": [image_b64], "info": "not json"})

        with patch.object(provider._client, "post", new_callable=AsyncMock, return_value=response):
            results = await provider.generate("test")

        assert results[0].image_data == b"img"
        assert "seed" not in results[0].provider_metadata


class TestA1111Config:
    def test_requires_host(self) -> None:
        with (
            patch.dict("os.environ", {}, clear=True),
            pytest.raises(ImageProviderError, match="A1111_HOST"),
        ):
            A1111ImageProvider()

    def test_host_from_env(self) -> None:
        with patch.dict("os.environ", {"A1111_HOST": "http://athena:7860/"}):
            provider = A1111ImageProvider()

        assert provider._host == "http://athena:7860"


@pytest.mark.parametrize(
    ("scheduler", "expected"),
    [
        ("DPMSolverMultistep", ("DPM++ 2M", "karras")),
        ("K_EULER_ANCESTRAL", ("Euler a", "automatic")),
        ("unknown", ("DPM++ 2M", "karras")),
    ],
)
def test_resolve_sampler(scheduler: str, expected: tuple[str, str]) -> None:
    assert _resolve_sampler(scheduler) == expected
