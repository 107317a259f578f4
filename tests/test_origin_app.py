from __future__ import annotations

from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from mediacdn.common.settings import OriginSettings
from mediacdn.origin import app as origin_app
from mediacdn.origin import content


@pytest.fixture
def content_root(tmp_path: Path) -> Path:
    root = tmp_path / "content"
    (root / "Series1" / "docs").mkdir(parents=True)
    (root / "Series1" / "video").mkdir()
    (root / "Series2").mkdir()
    (root / ".hidden").mkdir()
    (root / "Series1" / "docs" / "doc.pdf").write_bytes(b"%PDF-1.4 body")
    (root / "Series1" / "docs" / "notes.txt").write_text("plain notes")
    (root / "Series1" / "docs" / "nested").mkdir()
    return root


@pytest.fixture
def origin_client(content_root: Path, monkeypatch: pytest.MonkeyPatch) -> TestClient:
    detected = {"doc.pdf": "application/pdf", "notes.txt": "text/plain"}
    monkeypatch.setattr(origin_app, "sniff_media_type", lambda path: detected.get(path.name))
    app = origin_app.create_app(OriginSettings(content_path=content_root))
    with TestClient(app) as client:
        yield client


def test_directory_listings(origin_client: TestClient) -> None:
    assert origin_client.get("/origin/series").json() == ["Series1", "Series2"]
    assert origin_client.get("/origin/types/Series1").json() == ["docs", "video"]
    assert origin_client.get("/origin/types/Series2").json() == []
    assert origin_client.get("/origin/list-files/Series1/docs").json() == ["doc.pdf", "notes.txt"]


def test_missing_directories_are_not_found(origin_client: TestClient) -> None:
    for path in ("/origin/types/Nope", "/origin/list-files/Series1/nope"):
        response = origin_client.get(path)
        assert response.status_code == 404
        assert response.json() == []


def test_file_is_streamed_inline_with_detected_type(origin_client: TestClient) -> None:
    response = origin_client.get("/origin/Series1/docs/doc.pdf")
    assert response.status_code == 200
    assert response.content == b"%PDF-1.4 body"
    assert response.headers["content-type"] == "application/pdf"
    assert response.headers["content-disposition"] == 'inline; filename="doc.pdf"'
    assert response.headers["cache-control"] == "max-age=3600, must-revalidate"
    assert response.headers["content-length"] == str(len(b"%PDF-1.4 body"))

    text = origin_client.get("/origin/Series1/docs/notes.txt")
    assert text.headers["content-type"] == "text/plain"


def test_missing_file(origin_client: TestClient) -> None:
    response = origin_client.get("/origin/Series1/video/missing.mp4")
    assert response.status_code == 404
    assert response.text == "File not found"
    # Directories are not servable files.
    assert origin_client.get("/origin/Series1/docs/nested").status_code == 404


def test_undetectable_media_type(origin_client: TestClient, content_root: Path) -> None:
    (content_root / "Series1" / "docs" / "mystery").write_bytes(b"\x00\x01")
    response = origin_client.get("/origin/Series1/docs/mystery")
    assert response.status_code == 400
    assert response.text == "Unable to detect media type"


def test_traversal_is_rejected(origin_client: TestClient) -> None:
    assert origin_client.get("/origin/Series1/docs/a%5Cb").status_code == 400
    assert origin_client.get("/origin/types/%FF").status_code == 400


def test_sniff_prefers_content_then_extension(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    magic = pytest.importorskip("magic")
    clip = tmp_path / "clip.mp4"
    clip.write_bytes(b"\x00" * 16)

    monkeypatch.setattr(magic, "from_file", lambda path, mime=False: "image/png")
    assert content.sniff_media_type(clip) == "image/png"

    monkeypatch.setattr(magic, "from_file", lambda path, mime=False: "application/octet-stream")
    assert content.sniff_media_type(clip) == "video/mp4"

    blob = tmp_path / "blob"
    blob.write_bytes(b"\x00")
    assert content.sniff_media_type(blob) == "application/octet-stream"


def test_sniff_gives_up_without_any_signal(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    magic = pytest.importorskip("magic")

    def broken(path, mime=False):
        raise OSError("unreadable")

    monkeypatch.setattr(magic, "from_file", broken)
    unnamed = tmp_path / "unnamed"
    unnamed.write_bytes(b"")
    assert content.sniff_media_type(unnamed) is None


def test_content_root_hides_dotfiles(content_root: Path) -> None:
    (content_root / "Series1" / "docs" / ".partial").write_bytes(b"x")
    root = content.ContentRoot(content_root)
    assert root.files("Series1", "docs") == ["doc.pdf", "notes.txt"]
    assert root.series() == ["Series1", "Series2"]
