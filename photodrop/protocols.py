"""
Collaborator interfaces the ingestion session depends on.

GalleryApiClient satisfies both; PresignedTargetIssuer is an alternative TargetIssuer.
"""
from __future__ import annotations

from datetime import datetime
from typing import Protocol, runtime_checkable

from .api import PhotoRecord, UploadTargets


@runtime_checkable
class TargetIssuer(Protocol):
    """Hands out write-once upload targets for an original and its preview."""

    async def acquire_targets(self, original_filename: str, preview_filename: str) -> UploadTargets:
        ...


@runtime_checkable
class PhotoRecorder(Protocol):
    """Registers an uploaded photo with its collections."""

    async def create_photo(
        self,
        *,
        url: str,
        thumbnail: str,
        captured_at: datetime,
        collection_ids: list[str],
    ) -> PhotoRecord:
        ...
