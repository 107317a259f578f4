from __future__ import annotations

from pathlib import Path

import pytest

from mediacdn.common.settings import EdgeSettings
from mediacdn.edge.index import CacheIndex
from mediacdn.edge.store import LocalObjectStore

from utils.fakes import PDF_BYTES, FakeOrigin, OriginHandler


@pytest.fixture
def store(tmp_path: Path) -> LocalObjectStore:
    return LocalObjectStore(tmp_path / "cache")


@pytest.fixture
def index(tmp_path: Path) -> CacheIndex:
    return CacheIndex(f"sqlite+pysqlite:///{(tmp_path / 'index.db').as_posix()}")


@pytest.fixture
def fake_origin() -> FakeOrigin:
    return FakeOrigin({"Series1/docs/doc.pdf": (PDF_BYTES, "application/pdf")})


@pytest.fixture
def origin_handler() -> OriginHandler:
    return OriginHandler(
        {
            "Series1/docs/doc.pdf": (PDF_BYTES, "application/pdf"),
            "Series1/video/clip.mp4": (b"\x00\x00\x00\x18ftypmp42", "video/mp4"),
            "Series2/audio/theme.mp3": (b"ID3\x04\x00", "audio/mpeg"),
        }
    )


@pytest.fixture
def edge_settings(tmp_path: Path) -> EdgeSettings:
    return EdgeSettings(
        cache_path=tmp_path / "cache",
        origin_url="http://origin.test/origin/",
        index_database_url=str(tmp_path / "index.db"),
        origin_timeout_seconds=2.0,
    )
