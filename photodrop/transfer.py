from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Callable
from urllib.parse import urlsplit

import httpx

from .cancellation import CancelToken, Cancelled

logger = logging.getLogger("photodrop.transfer")

ProgressCallback = Callable[[float], None]

DEFAULT_CHUNK_SIZE = 256 * 1024


class TransferError(RuntimeError):
    """
    Storage write failed. status_code is the remote HTTP status, or "network" when
    no response was received.
    """

    def __init__(self, status_code: int | str, message: str | None = None) -> None:
        super().__init__(message or f"Upload failed with status {status_code}")
        self.status_code = status_code


def _redact(url: str) -> str:
    # Presigned query strings are bearer credentials
    parts = urlsplit(url)
    return f"{parts.scheme}://{parts.netloc}{parts.path}"


async def _body(
    payload: bytes,
    *,
    chunk_size: int,
    on_progress: ProgressCallback | None,
    cancel: CancelToken | None,
) -> AsyncIterator[bytes]:
    # A chunk counts as sent once the connection asks for the next one; the last
    # chunk is only counted when storage answers with success.
    total = len(payload)
    for start in range(0, total, chunk_size):
        if cancel is not None and cancel.cancelled:
            raise Cancelled()
        if on_progress is not None:
            on_progress(start / total)
        yield payload[start : start + chunk_size]


async def transfer(
    client: httpx.AsyncClient,
    url: str,
    payload: bytes,
    *,
    content_type: str,
    on_progress: ProgressCallback | None = None,
    cancel: CancelToken | None = None,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
) -> None:
    """
    PUT payload to a presigned URL.

    on_progress receives the fraction of bytes written, non-decreasing in [0, 1]; 1.0 is
    only reported after a 2xx response.
    Raises TransferError on a non-2xx response or connection failure, Cancelled if the token
    is cancelled mid-transfer (no further progress is reported after that).
    """
    if cancel is not None:
        cancel.raise_if_cancelled()

    headers = {"Content-Type": content_type, "Content-Length": str(len(payload))}
    if payload:
        content = _body(payload, chunk_size=chunk_size, on_progress=on_progress, cancel=cancel)
    else:
        content = b""

    target = _redact(url)
    logger.debug(f"PUT {target} ({len(payload):,} bytes, {content_type})")
    try:
        response = await client.put(url, content=content, headers=headers)
    except Cancelled:
        logger.debug(f"PUT {target} cancelled")
        raise
    except httpx.RequestError as exc:
        if cancel is not None and cancel.cancelled:
            raise Cancelled() from exc
        raise TransferError("network", f"Upload failed: network error ({type(exc).__name__}: {exc})") from exc

    if not response.is_success:
        raise TransferError(response.status_code)
    if cancel is not None and cancel.cancelled:
        raise Cancelled()

    if on_progress is not None:
        on_progress(1.0)
    logger.debug(f"PUT {target} -> {response.status_code}")
