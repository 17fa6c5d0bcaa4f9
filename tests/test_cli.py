from __future__ import annotations

import io
import json
import logging
from pathlib import Path

import httpx
import pytest
from PIL import Image

import photodrop.cli as cli
from photodrop.api import GalleryApiClient
from photodrop.cli import _ProgressLogger, _resolve_collections, build_parser, main
from photodrop.models import FileSnapshot, FileStatus
from photodrop.session import BatchRejectedError

COLLECTIONS = [
    {"id": "landscapes", "name": "Landscapes"},
    {"id": "airshow-2024", "name": "Airshow 2024"},
]


def _write_jpeg(path: Path, size=(900, 600)) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    buf = io.BytesIO()
    Image.new("RGB", size, (30, 90, 60)).save(buf, format="JPEG")
    path.write_bytes(buf.getvalue())


class _Backend:
    def __init__(self, *, put_status: int = 200) -> None:
        self.put_status = put_status
        self.records: list[dict] = []
        self.puts: list[str] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if request.method == "GET" and path == "/api/collections":
            return httpx.Response(200, json=COLLECTIONS)
        if request.method == "POST" and path == "/api/upload":
            body = json.loads(request.content)
            return httpx.Response(
                200,
                json={
                    "imageUrl": f"https://storage.test/{body['filename']}?sig=1",
                    "thumbnailUrl": f"https://storage.test/{body['thumbnailFilename']}?sig=2",
                },
            )
        if request.method == "PUT":
            self.puts.append(path.lstrip("/"))
            return httpx.Response(self.put_status)
        if request.method == "POST" and path == "/api/photos":
            body = json.loads(request.content)
            self.records.append(body)
            return httpx.Response(201, json={"id": "p1", **body})
        return httpx.Response(404)


@pytest.fixture
def backend(monkeypatch: pytest.MonkeyPatch) -> _Backend:
    be = _Backend()
    transport = httpx.MockTransport(be)

    def _client(base_url, **kwargs):
        return GalleryApiClient(base_url, transport=transport, **kwargs)

    monkeypatch.setattr(cli, "GalleryApiClient", _client)
    monkeypatch.delenv("PHOTODROP_AUTH_KEY", raising=False)
    return be


def test_build_parser():
    parser = build_parser()
    assert parser.prog == "photodrop"

    with pytest.raises(SystemExit):
        parser.parse_args([])

    args = parser.parse_args(["upload", "a.jpg", "b/", "-c", "landscapes", "--collection", "best-of"])
    assert args.cmd == "upload"
    assert args.paths == ["a.jpg", "b/"]
    assert args.collection == ["landscapes", "best-of"]
    assert args.local_sign is False

    # A destination collection is mandatory
    with pytest.raises(SystemExit):
        parser.parse_args(["upload", "a.jpg"])

    args = parser.parse_args(["doctor", "--skip-network"])
    assert args.skip_network is True


@pytest.mark.asyncio
async def test_resolve_collections_by_id_and_name():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=COLLECTIONS)

    async with GalleryApiClient("https://g.test", transport=httpx.MockTransport(handler)) as api:
        ids = await _resolve_collections(
            api, ["landscapes", "airshow 2024", "Landscapes"], logging.getLogger("test")
        )
    assert ids == ["landscapes", "airshow-2024"]


@pytest.mark.asyncio
async def test_resolve_collections_unknown():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=COLLECTIONS)

    async with GalleryApiClient("https://g.test", transport=httpx.MockTransport(handler)) as api:
        with pytest.raises(BatchRejectedError, match="Unknown collection 'portraits'"):
            await _resolve_collections(api, ["portraits"], logging.getLogger("test"))


@pytest.mark.asyncio
async def test_resolve_collections_backend_down_uses_values():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(503)

    async with GalleryApiClient("https://g.test", transport=httpx.MockTransport(handler)) as api:
        ids = await _resolve_collections(api, ["x", "y", "x"], logging.getLogger("test"))
    assert ids == ["x", "y"]


def test_progress_logger_steps():
    records: list[str] = []

    class _Capture(logging.Handler):
        def emit(self, record: logging.LogRecord) -> None:
            records.append(record.getMessage())

    logger = logging.getLogger("test.progress")
    logger.setLevel(logging.DEBUG)
    logger.addHandler(_Capture())

    def snap(status: FileStatus, progress: float = 0.0, error: str | None = None) -> FileSnapshot:
        return FileSnapshot(
            file_id="file-1",
            name="a.jpg",
            size=10,
            status=status,
            progress=progress,
            error=error,
            has_derived=True,
            preview_filename="a-thumb.webp",
        )

    progress = _ProgressLogger(logger)
    progress(snap(FileStatus.UPLOADING, 0.0))
    progress(snap(FileStatus.UPLOADING, 10.0))
    progress(snap(FileStatus.UPLOADING, 26.0))
    progress(snap(FileStatus.UPLOADING, 30.0))
    progress(snap(FileStatus.ERROR, 50.0, "Upload failed with status 403"))

    assert records == [
        "  a.jpg: uploading",
        "  a.jpg: 26%",
        "  a.jpg: error: Upload failed with status 403",
    ]


def test_upload_no_files(tmp_path: Path, backend: _Backend):
    (tmp_path / "notes.txt").write_text("hi")
    with pytest.raises(SystemExit) as exc_info:
        main(["upload", str(tmp_path), "-c", "landscapes", "--auth-key", "k", "--log-dir", str(tmp_path / "logs")])
    assert exc_info.value.code == 2


def test_upload_requires_auth_key(tmp_path: Path, backend: _Backend):
    _write_jpeg(tmp_path / "in" / "a.jpg")
    with pytest.raises(SystemExit) as exc_info:
        main(["upload", str(tmp_path / "in"), "-c", "landscapes", "--log-dir", str(tmp_path / "logs")])
    assert exc_info.value.code == 2
    assert backend.puts == []


def test_upload_end_to_end(tmp_path: Path, backend: _Backend, capsys: pytest.CaptureFixture[str]):
    _write_jpeg(tmp_path / "in" / "a.jpg")
    _write_jpeg(tmp_path / "in" / "sub" / "b.JPG")
    (tmp_path / "in" / "readme.md").write_text("skip me")

    with pytest.raises(SystemExit) as exc_info:
        main(
            [
                "upload",
                str(tmp_path / "in"),
                "-c",
                "Landscapes",
                "--auth-key",
                "k",
                "--log-dir",
                str(tmp_path / "logs"),
                "--quiet",
            ]
        )

    assert exc_info.value.code == 0
    assert backend.puts == ["a.jpg", "a-thumb.webp", "b.JPG", "b-thumb.webp"]
    assert [r["collectionIds"] for r in backend.records] == [["landscapes"], ["landscapes"]]
    assert "Uploaded 2 of 2 file(s)" in capsys.readouterr().out
    assert (tmp_path / "logs" / "photodrop.log").exists()


def test_upload_reports_failures(tmp_path: Path, backend: _Backend, capsys: pytest.CaptureFixture[str]):
    backend.put_status = 500
    _write_jpeg(tmp_path / "in" / "a.jpg")

    with pytest.raises(SystemExit) as exc_info:
        main(["upload", str(tmp_path / "in"), "-c", "landscapes", "--auth-key", "k", "--log-dir", str(tmp_path / "logs")])

    assert exc_info.value.code == 1
    out = capsys.readouterr().out
    assert "FAILED a.jpg: Upload failed with status 500" in out
    assert backend.records == []


def test_upload_unknown_collection(tmp_path: Path, backend: _Backend):
    _write_jpeg(tmp_path / "in" / "a.jpg")
    with pytest.raises(SystemExit) as exc_info:
        main(["upload", str(tmp_path / "in"), "-c", "nope", "--auth-key", "k", "--log-dir", str(tmp_path / "logs")])
    assert exc_info.value.code == 2
    assert backend.puts == []


def test_collections_command(backend: _Backend, capsys: pytest.CaptureFixture[str]):
    with pytest.raises(SystemExit) as exc_info:
        main(["collections"])
    assert exc_info.value.code == 0
    assert capsys.readouterr().out.splitlines() == ["landscapes\tLandscapes", "airshow-2024\tAirshow 2024"]


def test_doctor_command(tmp_path: Path, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]):
    monkeypatch.delenv("PHOTODROP_AUTH_KEY", raising=False)
    with pytest.raises(SystemExit) as exc_info:
        main(["doctor", "--skip-network", "--log-dir", str(tmp_path)])
    assert exc_info.value.code == 2
    assert "[FAIL] auth_key" in capsys.readouterr().out


