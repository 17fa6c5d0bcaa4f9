from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime

from .cancellation import CancelToken
from .exif_utils import resolve_capture_date
from .image_processing import DerivationError, render_webp_preview
from .models import RawFile

__all__ = ["Derived", "DerivationError", "derive", "preview_filename"]

logger = logging.getLogger("photodrop.derivation")

PREVIEW_SUFFIX = "-thumb.webp"
DEFAULT_MAX_LONG_EDGE = 800
DEFAULT_QUALITY = 80

_EXTENSION_RE = re.compile(r"\.[^.]+$")


@dataclass(frozen=True)
class Derived:
    preview: bytes = field(repr=False)
    preview_filename: str
    original_filename: str
    captured_at: datetime


def preview_filename(original_filename: str) -> str:
    """
    e.g. "HC_08466.jpg" -> "HC_08466-thumb.webp"
    """
    return _EXTENSION_RE.sub("", original_filename) + PREVIEW_SUFFIX


async def derive(
    raw: RawFile,
    *,
    max_long_edge: int = DEFAULT_MAX_LONG_EDGE,
    quality: int = DEFAULT_QUALITY,
    cancel: CancelToken | None = None,
) -> Derived:
    """
    Render the preview and resolve the capture date concurrently.

    Raises DerivationError if the preview cannot be produced, Cancelled if the token
    was cancelled before or during the work. Date resolution never fails.
    """
    if cancel is not None:
        cancel.raise_if_cancelled()

    logger.debug(f"Deriving preview for {raw.name} ({raw.size:,} bytes)")
    preview, captured_at = await asyncio.gather(
        asyncio.to_thread(
            render_webp_preview,
            raw.data,
            name=raw.name,
            max_long_edge=max_long_edge,
            quality=quality,
        ),
        asyncio.to_thread(resolve_capture_date, raw.data, last_modified=raw.last_modified),
    )

    if cancel is not None:
        cancel.raise_if_cancelled()

    derived = Derived(
        preview=preview,
        preview_filename=preview_filename(raw.name),
        original_filename=raw.name,
        captured_at=captured_at,
    )
    logger.debug(
        f"Derived {derived.preview_filename} ({len(preview):,} bytes), captured {captured_at.isoformat()}"
    )
    return derived
