from __future__ import annotations

from pathlib import Path

import httpx
import pytest

from mediacdn.cli import client


def _edge_transport(listings: dict[str, list[str]], files: dict[str, bytes]) -> httpx.MockTransport:
    def handler(request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if path in listings:
            return httpx.Response(200, json=listings[path])
        if path in files:
            return httpx.Response(200, content=files[path])
        return httpx.Response(404, json={"detail": "not found"})

    return httpx.MockTransport(handler)


def _answers(*values: str):
    remaining = list(values)
    return lambda prompt: remaining.pop(0)


@pytest.mark.asyncio
async def test_menu_downloads_selected_file(tmp_path: Path, capsys) -> None:
    transport = _edge_transport(
        {
            "/cdn/list-series": ["Series1", "Series 2"],
            "/cdn/list-types/Series 2": ["docs"],
            "/cdn/list-files/Series 2/docs": ["a.txt", "doc.pdf"],
        },
        {"/cdn/Series 2/docs/doc.pdf": b"%PDF\x00"},
    )

    code = await client.run(
        "http://edge.test/cdn/",
        tmp_path / "downloads",
        read=_answers("2", "1", "2"),
        transport=transport,
    )

    assert code == 0
    assert (tmp_path / "downloads" / "doc.pdf").read_bytes() == b"%PDF\x00"
    output = capsys.readouterr().out
    assert "1. Series1" in output
    assert "2. Series 2" in output
    assert "File fetched successfully: doc.pdf" in output


@pytest.mark.asyncio
@pytest.mark.parametrize("answer", ["0", "3", "abc", ""])
async def test_invalid_selection_exits_non_zero(tmp_path: Path, capsys, answer: str) -> None:
    transport = _edge_transport({"/cdn/list-series": ["Series1", "Series2"]}, {})

    code = await client.run("http://edge.test/cdn", tmp_path, read=_answers(answer), transport=transport)

    assert code == 1
    assert "Invalid selection." in capsys.readouterr().out


@pytest.mark.asyncio
async def test_empty_listing_stops_early(tmp_path: Path, capsys) -> None:
    transport = _edge_transport({"/cdn/list-series": ["Series1"], "/cdn/list-types/Series1": []}, {})

    code = await client.run("http://edge.test/cdn", tmp_path, read=_answers("1"), transport=transport)

    assert code == 0
    assert "No types available for the selected series." in capsys.readouterr().out


@pytest.mark.asyncio
async def test_listing_failure_is_reported(tmp_path: Path, capsys) -> None:
    transport = httpx.MockTransport(lambda request: httpx.Response(500, json=[]))

    code = await client.run("http://edge.test/cdn", tmp_path, read=_answers(), transport=transport)

    assert code == 1
    assert "Failed to fetch series list" in capsys.readouterr().out


@pytest.mark.asyncio
async def test_interrupted_download_leaves_no_partial_file(tmp_path: Path, capsys) -> None:
    async def truncated_body():
        yield b"%PDF-1.7 first chunk"
        raise httpx.ReadError("connection reset by edge")

    def handler(request: httpx.Request) -> httpx.Response:
        listings = {
            "/cdn/list-series": ["Series1"],
            "/cdn/list-types/Series1": ["docs"],
            "/cdn/list-files/Series1/docs": ["doc.pdf"],
        }
        if request.url.path in listings:
            return httpx.Response(200, json=listings[request.url.path])
        return httpx.Response(200, content=truncated_body())

    code = await client.run(
        "http://edge.test/cdn", tmp_path, read=_answers("1", "1", "1"), transport=httpx.MockTransport(handler)
    )

    assert code == 1
    assert not (tmp_path / "doc.pdf").exists()
    assert "Failed to fetch file" in capsys.readouterr().out

def test_parse_args_defaults() -> None:
    args = client.parse_args([])
    assert args.edge_url == "http://127.0.0.1:8080/cdn"
    assert args.output_dir == "downloads"
