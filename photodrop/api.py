"""HTTP adapter for the gallery backend (upload targets, photo records, collections)."""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Optional

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .media import DEFAULT_CONTENT_TYPE, PREVIEW_CONTENT_TYPE

logger = logging.getLogger("photodrop.api")

AUTH_HEADER = "X-Auth-Key"


class ApiError(RuntimeError):
    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class AcquisitionError(ApiError):
    """The backend refused (or failed) to issue upload targets."""


class RecordCreationError(ApiError):
    """The backend refused (or failed) to register an uploaded photo."""


class _Schema(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class UploadTargetsRequest(_Schema):
    filename: str = Field(min_length=1)
    thumbnail_filename: str = Field(alias="thumbnailFilename", min_length=1)


class UploadTargets(_Schema):
    """Write-once capability URLs for one original and its preview."""

    image_url: str = Field(alias="imageUrl", min_length=1)
    thumbnail_url: str = Field(alias="thumbnailUrl", min_length=1)
    image_content_type: str = Field(DEFAULT_CONTENT_TYPE, alias="imageContentType")
    thumbnail_content_type: str = Field(PREVIEW_CONTENT_TYPE, alias="thumbnailContentType")


class PhotoCreateRequest(_Schema):
    url: str = Field(min_length=1)
    thumbnail: str = Field(min_length=1)
    date: str
    collection_ids: list[str] = Field(alias="collectionIds", min_length=1)


class PhotoRecord(_Schema):
    id: str
    url: str
    thumbnail: str
    date: datetime
    created_at: Optional[datetime] = Field(None, alias="createdAt")


class Collection(_Schema):
    id: str
    name: str
    description: Optional[str] = None


def iso_utc(dt: datetime) -> str:
    """ISO-8601 in UTC with millisecond precision and a 'Z' suffix, e.g. 2024-01-15T14:30:00.000Z"""
    if dt.tzinfo is None:
        dt = dt.astimezone()
    return dt.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _error_detail(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text.strip()[:200]
    if isinstance(body, dict) and "error" in body:
        return str(body["error"])
    return str(body)[:200]


class GalleryApiClient:
    """
    HTTP client adapter for the gallery backend.

    The credential is attached per request rather than as a default header so that the
    same connection pool can PUT to storage targets without leaking it.
    """

    def __init__(
        self,
        base_url: str,
        *,
        auth_key: str | None = None,
        timeout: float = 60,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._base_url = base_url
        self._auth_key = auth_key
        self._timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def __aenter__(self) -> GalleryApiClient:
        self._client = httpx.AsyncClient(
            base_url=self._base_url, timeout=self._timeout, transport=self._transport
        )
        return self

    async def __aexit__(self, *args) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    @property
    def http(self) -> httpx.AsyncClient:
        if not self._client:
            raise RuntimeError("GalleryApiClient not initialized. Use 'async with' context.")
        return self._client

    def _auth_headers(self, error_cls: type[ApiError]) -> dict[str, str]:
        if not self._auth_key:
            raise error_cls(
                "No auth key configured.\n"
                "  Set PHOTODROP_AUTH_KEY or pass --auth-key."
            )
        return {AUTH_HEADER: self._auth_key}

    async def _post(self, endpoint: str, payload: dict[str, Any], error_cls: type[ApiError]) -> Any:
        headers = self._auth_headers(error_cls)
        try:
            response = await self.http.post(endpoint, json=payload, headers=headers)
        except httpx.RequestError as exc:
            raise error_cls(f"Network error on POST {endpoint}: {type(exc).__name__}: {exc}") from exc

        if not response.is_success:
            raise error_cls(
                f"API error {response.status_code} on POST {endpoint}: {_error_detail(response)}",
                status_code=response.status_code,
            )
        try:
            return response.json()
        except ValueError as exc:
            raise error_cls(
                f"Invalid JSON from POST {endpoint}", status_code=response.status_code
            ) from exc

    async def acquire_targets(self, original_filename: str, preview_filename: str) -> UploadTargets:
        request = UploadTargetsRequest(filename=original_filename, thumbnail_filename=preview_filename)
        body = await self._post("/api/upload", request.model_dump(by_alias=True), AcquisitionError)
        try:
            return UploadTargets.model_validate(body)
        except ValidationError as exc:
            raise AcquisitionError(f"Unexpected upload target response: {exc}") from exc

    async def create_photo(
        self,
        *,
        url: str,
        thumbnail: str,
        captured_at: datetime,
        collection_ids: list[str],
    ) -> PhotoRecord:
        try:
            request = PhotoCreateRequest(
                url=url,
                thumbnail=thumbnail,
                date=iso_utc(captured_at),
                collection_ids=list(collection_ids),
            )
        except ValidationError as exc:
            raise RecordCreationError(f"Invalid photo record request: {exc}") from exc

        body = await self._post("/api/photos", request.model_dump(by_alias=True), RecordCreationError)
        try:
            return PhotoRecord.model_validate(body)
        except ValidationError as exc:
            raise RecordCreationError(f"Unexpected photo record response: {exc}") from exc

    async def list_collections(self) -> list[Collection]:
        try:
            response = await self.http.get("/api/collections")
        except httpx.RequestError as exc:
            raise ApiError(f"Network error on GET /api/collections: {type(exc).__name__}: {exc}") from exc
        if not response.is_success:
            raise ApiError(
                f"API error {response.status_code} on GET /api/collections: {_error_detail(response)}",
                status_code=response.status_code,
            )
        try:
            body = response.json()
            if not isinstance(body, list):
                raise ApiError(f"Expected a list of collections, got {type(body).__name__}")
            return [Collection.model_validate(item) for item in body]
        except (ValueError, ValidationError) as exc:
            raise ApiError(f"Unexpected collections response: {exc}") from exc
