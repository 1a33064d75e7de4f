"""Artifact storage for rendered panel images.

Keys are namespaced by project (``{project_id}/panel-{i}-{uuid}.png``) and
never reused: both stores refuse to overwrite an existing object, so a
retried job always writes fresh keys instead of clobbering earlier output.
"""

from __future__ import annotations

import os
import uuid
from pathlib import Path
from typing import TYPE_CHECKING, Protocol, runtime_checkable

import httpx

from dreamcard.errors import StorageError
from dreamcard.observability.logging import get_logger

if TYPE_CHECKING:
    from dreamcard.providers.image import ImageResult

log = get_logger(__name__)

DEFAULT_BUCKET = "dreamcard-images"

_CONTENT_TYPE_TO_EXT: dict[str, str] = {
    "image/png": ".png",
    "image/jpeg": ".jpg",
    "image/webp": ".webp",
}


def artifact_key(
    project_id: str, panel_index: int, *, variant: str = "panel", content_type: str = "image/png"
) -> str:
    """Fresh, project-scoped key for a panel image.

    Args:
        project_id: Owning project.
        panel_index: Zero-based panel index.
        variant: ``panel`` for finals, ``sketch`` for two-stage sketches.
        content_type: MIME type, used for the extension.
    """
    ext = _CONTENT_TYPE_TO_EXT.get(content_type, ".png")
    return f"{project_id}/{variant}-{panel_index}-{uuid.uuid4()}{ext}"


@runtime_checkable
class ArtifactStore(Protocol):
    """Write-once object storage returning public URLs."""

    async def put(self, data: bytes, key: str, content_type: str = "image/png") -> str:
        """Store *data* under *key* and return its public URL.

        Raises:
            StorageError: If the key already exists or the write fails.
        """
        ...


async def image_bytes(image: ImageResult, client: httpx.AsyncClient) -> bytes:
    """Return the bytes of a result, downloading them when only a URL is known.

    Raises:
        StorageError: If the download fails.
    """
    if not image.is_remote:
        return image.image_data

    url = image.url or ""
    try:
        response = await client.get(url, follow_redirects=True)
        response.raise_for_status()
    except httpx.HTTPError as e:
        raise StorageError(url, f"failed to download generated image: {e}") from e
    return response.content


class LocalArtifactStore:
    """Store artifacts on the local filesystem.

    Args:
        root: Directory objects are written under.
        public_base_url: Prefix for returned URLs. ``file://`` URIs when None.
    """

    def __init__(self, root: Path, public_base_url: str | None = None) -> None:
        self.root = root
        self.public_base_url = public_base_url.rstrip("/") if public_base_url else None

    def url_for(self, key: str) -> str:
        if self.public_base_url:
            return f"{self.public_base_url}/{key}"
        return (self.root / key).resolve().as_uri()

    async def put(
        self,
        data: bytes,
        key: str,
        content_type: str = "image/png",  # noqa: ARG002
    ) -> str:
        path = self.root / key
        path.parent.mkdir(parents=True, exist_ok=True)
        try:
            # "x" mode fails if the file exists, so concurrent writers cannot overwrite
            with path.open("xb") as f:
                f.write(data)
        except FileExistsError as e:
            raise StorageError(key, "object already exists") from e
        except OSError as e:
            raise StorageError(key, str(e)) from e

        log.debug("artifact_stored", key=key, size_bytes=len(data))
        return self.url_for(key)


class SupabaseArtifactStore:
    """Store artifacts in a Supabase Storage bucket via its REST API.

    Args:
        url: Project URL. Falls back to ``SUPABASE_URL``.
        service_key: Service role key. Falls back to ``SUPABASE_SERVICE_ROLE_KEY``.
        bucket: Public bucket name.
        client: Pre-built HTTP client (for testing).
    """

    def __init__(
        self,
        url: str | None = None,
        service_key: str | None = None,
        bucket: str = DEFAULT_BUCKET,
        *,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        url = url or os.getenv("SUPABASE_URL")
        service_key = service_key or os.getenv("SUPABASE_SERVICE_ROLE_KEY")
        if not url or not service_key:
            raise StorageError(
                bucket, "SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY must be configured"
            )
        self._url = url.rstrip("/")
        self._bucket = bucket
        self._headers = {"Authorization": f"Bearer {service_key}", "apikey": service_key}
        self._client = client or httpx.AsyncClient(timeout=60.0)

    async def aclose(self) -> None:
        await self._client.aclose()

    def url_for(self, key: str) -> str:
        return f"{self._url}/storage/v1/object/public/{self._bucket}/{key}"

    async def put(self, data: bytes, key: str, content_type: str = "image/png") -> str:
        headers = {
            **self._headers,
            "Content-Type": content_type,
            "Cache-Control": "max-age=3600",
            "x-upsert": "false",
        }
        try:
            response = await self._client.post(
                f"{self._url}/storage/v1/object/{self._bucket}/{key}",
                content=data,
                headers=headers,
            )
        except httpx.HTTPError as e:
            raise StorageError(key, f"upload failed: {e}") from e

        if response.status_code >= 400:
            body = response.text[:200]
            if response.status_code == 409 or "Duplicate" in body:
                raise StorageError(key, "object already exists")
            raise StorageError(key, f"upload failed (HTTP {response.status_code}): {body}")

        log.debug("artifact_uploaded", key=key, bucket=self._bucket, size_bytes=len(data))
        return self.url_for(key)
