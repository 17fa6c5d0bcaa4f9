from __future__ import annotations

import asyncio
import logging

import boto3
from botocore.client import BaseClient
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from .api import AcquisitionError, UploadTargets
from .media import PREVIEW_CONTENT_TYPE, content_type_for

logger = logging.getLogger("photodrop.aws")


def _parse_boto3_error(error: Exception) -> str:
    """Parse a boto3/botocore error and return actionable guidance."""
    if isinstance(error, ClientError):
        error_code = error.response.get("Error", {}).get("Code", "")
        error_message = error.response.get("Error", {}).get("Message", str(error))
    else:
        error_code = type(error).__name__
        error_message = str(error)
    error_message_lower = error_message.lower()

    if error_code == "NoCredentialsError" or "credentials" in error_message_lower:
        return (
            "Storage credentials not configured.\n"
            "  Set AWS_ACCESS_KEY_ID and AWS_SECRET_ACCESS_KEY (R2 API token keys for Cloudflare R2),\n"
            "  or drop --local-sign to let the backend issue upload targets."
        )
    if "endpoint" in error_message_lower or "could not connect" in error_message_lower:
        return (
            "Storage endpoint not reachable.\n"
            "  Check PHOTODROP_S3_ENDPOINT_URL (e.g. https://<account>.r2.cloudflarestorage.com)."
        )
    return f"Error code: {error_code}"


def make_presign_client(*, endpoint_url: str | None = None) -> BaseClient:
    # R2 wants region "auto"; plain S3 resolves its own
    return boto3.client(
        "s3",
        endpoint_url=endpoint_url,
        region_name="auto" if endpoint_url else None,
        config=Config(signature_version="s3v4"),
    )


def s3_presign_put_url(
    client: BaseClient,
    *,
    bucket: str,
    key: str,
    content_type: str,
    expires_in_seconds: int,
) -> str:
    """Generate a presigned PUT URL for one object key.

    The Content-Type is part of the signature, so the upload must send exactly this type.

    Raises:
        AcquisitionError: If presigning fails
    """
    try:
        url = client.generate_presigned_url(
            "put_object",
            Params={"Bucket": bucket, "Key": key, "ContentType": content_type},
            ExpiresIn=expires_in_seconds,
            HttpMethod="PUT",
        )
    except (ClientError, BotoCoreError) as e:
        guidance = _parse_boto3_error(e)
        raise AcquisitionError(
            f"Failed to presign upload for s3://{bucket}/{key}\n\n{guidance}\n\nError: {e}"
        ) from e
    if not url:
        raise AcquisitionError(f"boto3 generate_presigned_url returned empty URL for s3://{bucket}/{key}.")
    return url


class PresignedTargetIssuer:
    """
    Issues upload targets locally with boto3 instead of asking the backend.

    Only for operators who hold storage credentials on this machine.
    """

    def __init__(
        self,
        *,
        bucket: str,
        expires_in_seconds: int = 3600,
        endpoint_url: str | None = None,
        client: BaseClient | None = None,
    ) -> None:
        self._bucket = bucket
        self._expires_in = expires_in_seconds
        self._endpoint_url = endpoint_url
        self._client = client

    def _get_client(self) -> BaseClient:
        if self._client is None:
            self._client = make_presign_client(endpoint_url=self._endpoint_url)
        return self._client

    def _issue(self, original_filename: str, preview_filename: str) -> UploadTargets:
        client = self._get_client()
        image_type = content_type_for(original_filename)
        image_url = s3_presign_put_url(
            client,
            bucket=self._bucket,
            key=original_filename,
            content_type=image_type,
            expires_in_seconds=self._expires_in,
        )
        thumbnail_url = s3_presign_put_url(
            client,
            bucket=self._bucket,
            key=preview_filename,
            content_type=PREVIEW_CONTENT_TYPE,
            expires_in_seconds=self._expires_in,
        )
        return UploadTargets(
            image_url=image_url,
            thumbnail_url=thumbnail_url,
            image_content_type=image_type,
            thumbnail_content_type=PREVIEW_CONTENT_TYPE,
        )

    async def acquire_targets(self, original_filename: str, preview_filename: str) -> UploadTargets:
        logger.debug(f"Presigning s3://{self._bucket}/{original_filename} and {preview_filename}")
        return await asyncio.to_thread(self._issue, original_filename, preview_filename)
