from __future__ import annotations

import io

from PIL import Image, ImageOps, features


class DerivationError(RuntimeError):
    pass


def fit_within(width: int, height: int, max_long_edge: int) -> tuple[int, int]:
    """
    Scale (width, height) down so both sides are <= max_long_edge, keeping aspect ratio.
    Never enlarges.
    """
    if width <= max_long_edge and height <= max_long_edge:
        return width, height
    scale = min(max_long_edge / float(width), max_long_edge / float(height))
    return max(1, round(width * scale)), max(1, round(height * scale))


def webp_supported() -> bool:
    return bool(features.check("webp"))


def render_webp_preview(
    data: bytes,
    *,
    name: str,
    max_long_edge: int,
    quality: int,
    resampling: Image.Resampling | None = None,
) -> bytes:
    """
    - Auto-orient using EXIF orientation
    - Resize to fit max_long_edge on both sides (only shrink)
    - Encode as WebP without metadata

    Args:
        data: Encoded source image
        name: Source filename (error messages only)
        max_long_edge: Maximum width and height in pixels
        quality: WebP quality (1-100)
        resampling: Resampling algorithm (default: BILINEAR for previews <=512px, LANCZOS for larger)
    """
    if not webp_supported():
        raise DerivationError(
            f"Cannot render preview for {name}: this Pillow build has no WebP encoder.\n"
            f"  Try: pip install --upgrade Pillow (wheels ship with libwebp)"
        )

    if resampling is None:
        if max_long_edge <= 512:
            resampling = Image.Resampling.BILINEAR
        else:
            resampling = Image.Resampling.LANCZOS

    try:
        with Image.open(io.BytesIO(data)) as src:
            src.load()
            im = ImageOps.exif_transpose(src)
    except Exception as e:  # noqa: BLE001 - we want a clean error surface
        raise DerivationError(
            f"Failed to decode image: {name}\n"
            f"  This file may not be a valid image, or the file is corrupted.\n"
            f"  Original error: {type(e).__name__}: {e}"
        ) from e

    try:
        if im.mode in ("RGBA", "LA") or (im.mode == "P" and "transparency" in im.info):
            im = im.convert("RGBA")
        elif im.mode != "RGB":
            im = im.convert("RGB")

        new_size = fit_within(im.width, im.height, max_long_edge)
        if new_size != im.size:
            im = im.resize(new_size, resampling)

        out = io.BytesIO()
        im.save(out, format="WEBP", quality=int(quality), method=4)
    except Exception as e:  # noqa: BLE001 - we want a clean error surface
        raise DerivationError(
            f"Failed to encode preview: {name}\n"
            f"  Original error: {type(e).__name__}: {e}"
        ) from e
    finally:
        im.close()

    encoded = out.getvalue()
    if not encoded:
        raise DerivationError(f"Failed to encode preview: {name}\n  Encoder produced no output")
    return encoded
