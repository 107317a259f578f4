from __future__ import annotations

import httpx
import pytest
from fastapi.testclient import TestClient

from mediacdn.common.settings import EdgeSettings
from mediacdn.edge.app import create_app

from utils.fakes import PDF_BYTES, OriginHandler


@pytest.fixture
def edge_client(edge_settings: EdgeSettings, origin_handler: OriginHandler):
    app = create_app(edge_settings, origin_transport=httpx.MockTransport(origin_handler))
    with TestClient(app) as client:
        yield client


def test_doc_pdf_lifecycle(edge_client: TestClient, edge_settings: EdgeSettings, origin_handler: OriginHandler) -> None:
    first = edge_client.get("/cdn/Series1/docs/doc.pdf")
    assert first.status_code == 200
    assert first.content == PDF_BYTES
    assert first.headers["content-disposition"] == 'inline; filename="doc.pdf"'
    assert first.headers["content-type"] == "application/pdf"
    assert first.headers["cache-control"] == "max-age=3600, must-revalidate"
    assert first.headers["last-modified"].endswith(" GMT")
    assert first.headers["x-cache"] == "MISS"
    assert (edge_settings.cache_path / "Series1" / "docs" / "doc.pdf").read_bytes() == PDF_BYTES

    second = edge_client.get("/cdn/Series1/docs/doc.pdf")
    assert second.status_code == 200
    assert second.content == PDF_BYTES
    assert second.headers["content-disposition"] == 'attachment; filename="doc.pdf"'
    assert second.headers["x-cache"] == "HIT"
    assert origin_handler.calls["/origin/Series1/docs/doc.pdf"] == 1

    invalidated = edge_client.post("/cdn/invalidate/Series1/docs/doc.pdf")
    assert invalidated.status_code == 200
    assert invalidated.text == "invalidated"

    third = edge_client.get("/cdn/Series1/docs/doc.pdf")
    assert third.status_code == 200
    assert third.headers["x-cache"] == "MISS"
    assert origin_handler.calls["/origin/Series1/docs/doc.pdf"] == 2


def test_missing_object_is_not_found_and_not_cached(edge_client: TestClient, edge_settings: EdgeSettings) -> None:
    response = edge_client.get("/cdn/Series1/video/missing.mp4")
    assert response.status_code == 404
    assert not (edge_settings.cache_path / "Series1" / "video" / "missing.mp4").exists()


def test_invalidate_unknown_key_is_not_found(edge_client: TestClient) -> None:
    response = edge_client.post("/cdn/invalidate/Series1/docs/never-cached.pdf")
    assert response.status_code == 404
    assert "not cached" in response.json()["detail"]


@pytest.mark.parametrize("segment", ["%FF", "a%5Cb", "%2E%2E", "a%0D%0Ab", "%1B%5B2J"])
def test_hostile_keys_are_rejected_before_origin(
    edge_client: TestClient, origin_handler: OriginHandler, segment: str
) -> None:
    response = edge_client.get(f"/cdn/Series1/docs/{segment}")
    assert response.status_code == 400
    assert sum(origin_handler.calls.values()) == 0


def test_percent_encoded_names_reach_origin_encoded_once(edge_client: TestClient, origin_handler: OriginHandler) -> None:
    origin_handler.files["Series 1/docs/résumé.pdf"] = (b"cv", "application/pdf")
    response = edge_client.get("/cdn/Series%201/docs/r%C3%A9sum%C3%A9.pdf")
    assert response.status_code == 200
    assert response.content == b"cv"
    assert "filename*=UTF-8''r%C3%A9sum%C3%A9.pdf" in response.headers["content-disposition"]


def test_origin_timeout_maps_to_504(edge_client: TestClient, origin_handler: OriginHandler) -> None:
    def timeout(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("slow origin", request=request)

    origin_handler.fail_with = timeout
    assert edge_client.get("/cdn/Series1/docs/doc.pdf").status_code == 504


def test_origin_server_error_is_forwarded(edge_client: TestClient, origin_handler: OriginHandler) -> None:
    origin_handler.fail_with = lambda request: httpx.Response(503, text="busy")
    assert edge_client.get("/cdn/Series1/docs/doc.pdf").status_code == 503


def test_listings_are_proxied(edge_client: TestClient) -> None:
    assert edge_client.get("/cdn/list-series").json() == ["Series1", "Series2"]
    assert edge_client.get("/cdn/list-types/Series1").json() == ["docs", "video"]
    assert edge_client.get("/cdn/list-files/Series1/docs").json() == ["doc.pdf"]


def test_listing_errors(edge_client: TestClient, origin_handler: OriginHandler) -> None:
    missing = edge_client.get("/cdn/list-files/Series1/nothing")
    assert missing.status_code == 404
    assert missing.json() == []

    origin_handler.fail_with = lambda request: httpx.Response(500, text="boom")
    failed = edge_client.get("/cdn/list-series")
    assert failed.status_code == 500
    assert failed.json() == []


def test_status_and_metrics(edge_client: TestClient) -> None:
    edge_client.get("/cdn/Series1/docs/doc.pdf")
    edge_client.get("/cdn/Series1/docs/doc.pdf")

    status = edge_client.get("/status").json()
    assert status["backend"] == "local"
    assert status["total_entries"] == 1
    assert status["total_bytes"] == len(PDF_BYTES)
    assert status["top_entries"][0]["cache_key"] == "Series1/docs/doc.pdf"
    assert status["top_entries"][0]["total_hits"] == 1
    assert status["origin"] == "http://origin.test/origin"

    metrics = edge_client.get("/metrics").text
    assert "mediacdn_edge_cache_hits_total" in metrics
    assert "mediacdn_edge_request_latency_seconds_bucket" in metrics
    assert 'mediacdn_edge_requests_total{status_class="2xx"}' in metrics

    assert edge_client.get("/healthz").json()["status"] == "healthy"
