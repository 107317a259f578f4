"""Object keys: the (series, type, filename) triple shared by edge and origin."""

from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path
from typing import Union
from urllib.parse import quote, unquote_to_bytes

from .errors import InvalidKey


_MALFORMED_ESCAPE = re.compile(rb"%(?![0-9A-Fa-f]{2})")
_FORBIDDEN = ("/", "\\")


def decode_component(raw: Union[str, bytes]) -> str:
    """Percent-decode one path segment, rejecting malformed escapes and non UTF-8 bytes.

    Raw request-path bytes are accepted as-is, so unescaped UTF-8 decodes the
    same way as its percent-encoded form.
    """
    raw_bytes = raw.encode("utf-8") if isinstance(raw, str) else raw
    if _MALFORMED_ESCAPE.search(raw_bytes):
        raise InvalidKey(f"Malformed percent-encoding in {raw!r}")
    try:
        return unquote_to_bytes(raw_bytes).decode("utf-8")
    except UnicodeDecodeError as exc:
        raise InvalidKey(f"Path segment {raw!r} is not valid UTF-8") from exc


def validate_component(value: str) -> str:
    if not value or value in (".", ".."):
        raise InvalidKey(f"Invalid key component {value!r}")
    if any(token in value for token in _FORBIDDEN) or any(ord(ch) < 0x20 or ch == "\x7f" for ch in value):
        raise InvalidKey(f"Invalid key component {value!r}")
    return value


def encode_component(value: str) -> str:
    return quote(value, safe="")


def resolve_under(root: Path, *parts: str) -> Path:
    """Join ``parts`` below ``root`` and refuse anything that resolves outside of it."""
    base = root.resolve()
    candidate = base.joinpath(*parts).resolve(strict=False)
    if not candidate.is_relative_to(base) or candidate == base:
        raise InvalidKey("Invalid cache key")
    return candidate


@dataclass(frozen=True)
class ObjectKey:
    series: str
    type: str
    filename: str

    def __post_init__(self) -> None:
        for component in self.parts:
            validate_component(component)

    @classmethod
    def from_encoded(cls, series: Union[str, bytes], type_: Union[str, bytes], filename: Union[str, bytes]) -> "ObjectKey":
        return cls(decode_component(series), decode_component(type_), decode_component(filename))

    @property
    def parts(self) -> tuple[str, str, str]:
        return (self.series, self.type, self.filename)

    @property
    def cache_key(self) -> str:
        return "/".join(self.parts)

    def url_path(self) -> str:
        return "/".join(encode_component(part) for part in self.parts)

    def storage_path(self, root: Path) -> Path:
        return resolve_under(root, *self.parts)

    def __str__(self) -> str:
        return self.cache_key
