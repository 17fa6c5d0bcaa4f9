from __future__ import annotations

import io
import logging
from collections.abc import Mapping
from datetime import datetime, timezone

from PIL import Image

logger = logging.getLogger("photodrop.exif")

# EXIF tag IDs, in the order they are consulted
TAG_DATETIME_ORIGINAL = 36867
TAG_DATETIME = 306
TAG_DATETIME_DIGITIZED = 36868
DATE_TAGS = (TAG_DATETIME_ORIGINAL, TAG_DATETIME, TAG_DATETIME_DIGITIZED)

EXIF_IFD_POINTER = 0x8769


def _parse_exif_datetime(s: str) -> datetime | None:
    """
    Common EXIF datetime format: 'YYYY:MM:DD HH:MM:SS' (time portion optional, midnight if absent)
    """
    s = (s or "").strip().rstrip("\x00").strip()
    if not s:
        return None
    for fmt in ("%Y:%m:%d %H:%M:%S", "%Y:%m:%d"):
        try:
            return datetime.strptime(s, fmt)
        except ValueError:
            continue
    return None


def _read_exif_tags(data: bytes) -> dict[int, object]:
    """
    IFD0 tags merged with the Exif sub-IFD (where DateTimeOriginal/DateTimeDigitized live).
    """
    with Image.open(io.BytesIO(data)) as im:
        exif = im.getexif()
        tags: dict[int, object] = dict(exif.items())
        try:
            tags.update(exif.get_ifd(EXIF_IFD_POINTER))
        except Exception as e:  # noqa: BLE001 - malformed sub-IFD should not hide IFD0 dates
            logger.debug(f"Could not read Exif sub-IFD: {e}")
        return tags


def _pick_exif_datetime(tags: Mapping[int, object]) -> str | None:
    for tag in DATE_TAGS:
        value = tags.get(tag)
        if value is None:
            continue
        if isinstance(value, bytes):
            value = value.decode("ascii", errors="replace")
        s = str(value).strip()
        if s:
            return s
    return None


def resolve_capture_date(
    data: bytes,
    *,
    last_modified: datetime | None = None,
    now: datetime | None = None,
) -> datetime:
    """
    Best-effort capture date for an image. Always returns an aware datetime.

    EXIF dates carry no zone and are taken as local time. When no usable EXIF date
    exists the file's last-modified time is used, then the current time.
    """
    try:
        raw = _pick_exif_datetime(_read_exif_tags(data))
        if raw is not None:
            parsed = _parse_exif_datetime(raw)
            if parsed is not None:
                return parsed.astimezone()
            logger.debug(f"Unparseable EXIF date {raw!r}; falling back")
    except Exception as e:  # noqa: BLE001 - metadata is best-effort, a date is always produced
        logger.warning(f"Failed to extract EXIF date: {type(e).__name__}: {e}")

    if last_modified is not None:
        return last_modified if last_modified.tzinfo is not None else last_modified.astimezone()
    return now if now is not None else datetime.now(timezone.utc)
