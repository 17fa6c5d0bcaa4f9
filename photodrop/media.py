from __future__ import annotations

from pathlib import Path


JPEG_EXTS = {".jpg", ".jpeg"}
IMAGE_EXTS = JPEG_EXTS | {".png", ".webp", ".gif", ".bmp", ".tif", ".tiff"}

PREVIEW_CONTENT_TYPE = "image/webp"
DEFAULT_CONTENT_TYPE = "image/jpeg"

_CONTENT_TYPES = {
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".webp": "image/webp",
    ".gif": "image/gif",
    ".bmp": "image/bmp",
    ".tif": "image/tiff",
    ".tiff": "image/tiff",
}


def is_image(path: Path) -> bool:
    return path.suffix.lower() in IMAGE_EXTS


def content_type_for(filename: str) -> str:
    return _CONTENT_TYPES.get(Path(filename).suffix.lower(), DEFAULT_CONTENT_TYPE)


def iter_image_files(paths: list[Path]) -> list[Path]:
    """
    Expand directories into the image files beneath them (sorted), keep explicit files as given.
    """
    out: list[Path] = []
    for p in paths:
        if p.is_dir():
            out.extend(sorted(f for f in p.rglob("*") if f.is_file() and is_image(f)))
        else:
            out.append(p)
    return out
