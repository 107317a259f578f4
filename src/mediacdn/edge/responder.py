"""Turns resolved objects into outbound HTTP responses."""

from __future__ import annotations

from fastapi.responses import StreamingResponse

from ..common.headers import (
    DEFAULT_FRESHNESS_SECONDS,
    Disposition,
    cache_control,
    content_disposition,
    format_http_date,
)
from .orchestrator import ServableObject


def disposition_for(obj: ServableObject) -> Disposition:
    # Locally re-served copies are forced downloads; fresh origin payloads preview inline.
    return Disposition.ATTACHMENT if obj.from_cache else Disposition.INLINE


def build_response(
    obj: ServableObject,
    disposition: Disposition | None = None,
    *,
    freshness_seconds: int = DEFAULT_FRESHNESS_SECONDS,
) -> StreamingResponse:
    disposition = disposition or disposition_for(obj)
    headers = {
        "Content-Disposition": content_disposition(disposition, obj.key.filename),
        "Cache-Control": cache_control(freshness_seconds),
        "Last-Modified": format_http_date(obj.last_modified),
        "X-Cache": "HIT" if obj.from_cache else "MISS",
    }
    if obj.size is not None:
        headers["Content-Length"] = str(obj.size)
    response = StreamingResponse(obj.chunks(), media_type=obj.content_type, headers=headers)
    # Starlette appends a charset to text/* media types; keep the type exactly as resolved.
    response.headers["content-type"] = obj.content_type
    return response
