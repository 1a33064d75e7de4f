"""Persistence: project records and rendered artifacts."""

from dreamcard.storage.artifacts import (
    DEFAULT_BUCKET,
    ArtifactStore,
    LocalArtifactStore,
    SupabaseArtifactStore,
    artifact_key,
    image_bytes,
)
from dreamcard.storage.base import ProjectStore
from dreamcard.storage.sqlite_store import SqliteProjectStore

__all__ = [
    "DEFAULT_BUCKET",
    "ArtifactStore",
    "LocalArtifactStore",
    "ProjectStore",
    "SqliteProjectStore",
    "SupabaseArtifactStore",
    "artifact_key",
    "image_bytes",
]
