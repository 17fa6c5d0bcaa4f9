from __future__ import annotations

import io

import pytest
from PIL import Image

from photodrop.image_processing import DerivationError, fit_within, render_webp_preview


def _encode(img: Image.Image, fmt: str = "JPEG", **kwargs) -> bytes:
    buf = io.BytesIO()
    img.save(buf, format=fmt, **kwargs)
    return buf.getvalue()


def test_fit_within():
    assert fit_within(4000, 3000, 800) == (800, 600)
    assert fit_within(3000, 4000, 800) == (600, 800)
    assert fit_within(800, 800, 800) == (800, 800)
    assert fit_within(640, 480, 800) == (640, 480)
    # Very thin images never collapse to zero
    assert fit_within(10000, 2, 800) == (800, 1)


def test_render_webp_preview_resizes_landscape():
    data = _encode(Image.new("RGB", (2400, 1600), (120, 160, 200)))

    out = render_webp_preview(data, name="src.jpg", max_long_edge=800, quality=80)

    with Image.open(io.BytesIO(out)) as result:
        assert result.format == "WEBP"
        assert result.size == (800, 533)


def test_render_webp_preview_resizes_portrait():
    data = _encode(Image.new("RGB", (1000, 3000), (10, 20, 30)))

    out = render_webp_preview(data, name="tall.jpg", max_long_edge=800, quality=80)

    with Image.open(io.BytesIO(out)) as result:
        w, h = result.size
        assert h == 800
        assert max(w, h) <= 800
        assert abs(w / h - 1000 / 3000) < 0.01


def test_render_webp_preview_never_upscales():
    data = _encode(Image.new("RGB", (320, 200), (1, 2, 3)))

    out = render_webp_preview(data, name="small.jpg", max_long_edge=800, quality=80)

    with Image.open(io.BytesIO(out)) as result:
        assert result.size == (320, 200)


def test_render_webp_preview_grayscale_and_alpha():
    gray = _encode(Image.new("L", (900, 900), 128))
    with Image.open(io.BytesIO(render_webp_preview(gray, name="g.jpg", max_long_edge=800, quality=80))) as r:
        assert r.mode == "RGB"
        assert r.size == (800, 800)

    rgba = _encode(Image.new("RGBA", (100, 50), (0, 0, 0, 0)), fmt="PNG")
    with Image.open(io.BytesIO(render_webp_preview(rgba, name="a.png", max_long_edge=800, quality=80))) as r:
        assert r.mode == "RGBA"


def test_render_webp_preview_applies_exif_orientation():
    exif = Image.Exif()
    exif[0x0112] = 6  # rotate 90 CW on display
    data = _encode(Image.new("RGB", (1600, 800), (50, 50, 50)), exif=exif)

    out = render_webp_preview(data, name="rotated.jpg", max_long_edge=800, quality=80)

    with Image.open(io.BytesIO(out)) as result:
        assert result.size == (400, 800)


def test_render_webp_preview_rejects_garbage():
    with pytest.raises(DerivationError, match="Failed to decode image: broken.jpg"):
        render_webp_preview(b"not an image at all", name="broken.jpg", max_long_edge=800, quality=80)


def test_render_webp_preview_rejects_truncated():
    data = _encode(Image.new("RGB", (400, 400), (200, 10, 10)))
    with pytest.raises(DerivationError):
        render_webp_preview(data[: len(data) // 3], name="cut.jpg", max_long_edge=800, quality=80)


def test_render_webp_preview_without_webp_support(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setattr("photodrop.image_processing.webp_supported", lambda: False)
    data = _encode(Image.new("RGB", (10, 10)))
    with pytest.raises(DerivationError, match="WebP"):
        render_webp_preview(data, name="x.jpg", max_long_edge=800, quality=80)
