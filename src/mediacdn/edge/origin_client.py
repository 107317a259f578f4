"""HTTP client for the single upstream origin."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Optional

import httpx
import structlog

from ..common.errors import OriginUnavailable
from ..common.keys import ObjectKey, encode_component
from ..common.observability import get_tracer, key_span


LOGGER = structlog.get_logger("mediacdn.edge.origin")
TRACER = get_tracer("edge.origin")

DEFAULT_CONTENT_TYPE = "application/octet-stream"


@dataclass(frozen=True)
class OriginObject:
    data: bytes
    content_type: str


class OriginClient:
    """Fetches objects and listings from the origin.

    Every call, body included, must finish within ``timeout_seconds``. Nothing is retried: the first
    failure is raised to the caller as :class:`OriginUnavailable`.
    """

    def __init__(
        self,
        base_url: str,
        timeout_seconds: float = 10.0,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout_seconds = timeout_seconds
        self._client = httpx.AsyncClient(timeout=httpx.Timeout(timeout_seconds), transport=transport)

    @property
    def base_url(self) -> str:
        return self._base_url

    async def aclose(self) -> None:
        await self._client.aclose()

    async def fetch_object(self, key: ObjectKey) -> OriginObject:
        url = f"{self._base_url}/{key.url_path()}"
        with key_span(TRACER, "origin.fetch", key) as span:
            response = await self._get(url)
            content_type = response.headers.get("content-type") or DEFAULT_CONTENT_TYPE
            span.set_attribute("mediacdn.bytes", len(response.content))
            LOGGER.info("origin_fetch", cache_key=key.cache_key, bytes=len(response.content), content_type=content_type)
            return OriginObject(data=response.content, content_type=content_type)

    async def fetch_series_list(self) -> list[str]:
        return await self._get_list(f"{self._base_url}/series")

    async def fetch_types_list(self, series: str) -> list[str]:
        return await self._get_list(f"{self._base_url}/types/{encode_component(series)}")

    async def fetch_file_list(self, series: str, type_: str) -> list[str]:
        return await self._get_list(
            f"{self._base_url}/list-files/{encode_component(series)}/{encode_component(type_)}"
        )

    async def _get(self, url: str) -> httpx.Response:
        try:
            # The deadline covers connect, headers and the whole body.
            response = await asyncio.wait_for(self._client.get(url), self._timeout_seconds)
        except (asyncio.TimeoutError, httpx.TimeoutException) as exc:
            LOGGER.error("origin_timeout", url=url, error=str(exc))
            raise OriginUnavailable(f"Origin timed out: {url}", timed_out=True) from exc
        except httpx.HTTPError as exc:
            LOGGER.error("origin_unreachable", url=url, error=str(exc))
            raise OriginUnavailable(f"Origin request failed: {exc}") from exc
        if not response.is_success:
            LOGGER.warning("origin_error_status", url=url, status=response.status_code)
            raise OriginUnavailable(
                f"Origin returned {response.status_code} for {url}",
                status=response.status_code,
            )
        return response

    async def _get_list(self, url: str) -> list[str]:
        response = await self._get(url)
        if not response.content:
            return []
        try:
            payload = response.json()
        except ValueError as exc:
            raise OriginUnavailable(f"Origin returned invalid JSON for {url}", status=502) from exc
        if payload is None:
            return []
        if not isinstance(payload, list):
            raise OriginUnavailable(f"Origin returned a non-list payload for {url}", status=502)
        return [str(item) for item in payload]
