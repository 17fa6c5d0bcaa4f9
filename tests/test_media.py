from __future__ import annotations

from pathlib import Path

from photodrop.media import content_type_for, is_image, iter_image_files


def test_is_image():
    assert is_image(Path("a.jpg"))
    assert is_image(Path("a.PNG"))
    assert is_image(Path("a.webp"))
    assert is_image(Path("a.tiff"))
    assert not is_image(Path("a.txt"))
    assert not is_image(Path("a"))


def test_content_type_for():
    assert content_type_for("photo.jpg") == "image/jpeg"
    assert content_type_for("photo.JPEG") == "image/jpeg"
    assert content_type_for("shot.png") == "image/png"
    assert content_type_for("thumb.webp") == "image/webp"
    # Unknown extensions fall back to JPEG, matching what the backend signs for originals
    assert content_type_for("mystery.bin") == "image/jpeg"


def test_iter_image_files(tmp_path: Path):
    (tmp_path / "album" / "sub").mkdir(parents=True)
    (tmp_path / "album" / "b.jpg").write_bytes(b"x")
    (tmp_path / "album" / "a.png").write_bytes(b"x")
    (tmp_path / "album" / "notes.txt").write_text("x")
    (tmp_path / "album" / "sub" / "c.JPG").write_bytes(b"x")
    explicit = tmp_path / "explicit.dat"
    explicit.write_bytes(b"x")

    found = iter_image_files([tmp_path / "album", explicit])

    names = [p.name for p in found]
    assert names == ["a.png", "b.jpg", "c.JPG", "explicit.dat"]
