"""Helpers for reading percent-encoded path segments straight off the request."""

from __future__ import annotations

from fastapi import Request

from .keys import ObjectKey, decode_component, encode_component, validate_component


def raw_segments(request: Request, count: int) -> list[bytes]:
    """Return the last ``count`` path segments as the bytes the client sent."""
    raw_path = request.scope.get("raw_path")
    if raw_path:
        segments = raw_path.split(b"?", 1)[0].rstrip(b"/").split(b"/")
        if len(segments) >= count:
            return segments[-count:]
    return [encode_component(str(value)).encode("ascii") for value in list(request.path_params.values())[-count:]]


def decoded_segments(request: Request, count: int) -> list[str]:
    return [validate_component(decode_component(segment)) for segment in raw_segments(request, count)]


def object_key(request: Request) -> ObjectKey:
    return ObjectKey.from_encoded(*raw_segments(request, 3))
