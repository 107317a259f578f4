"""HTTP header formatting shared by the edge node and the origin."""

from __future__ import annotations

from datetime import datetime, timezone
from email.utils import format_datetime
from enum import Enum
from urllib.parse import quote


DEFAULT_FRESHNESS_SECONDS = 3600


class Disposition(str, Enum):
    INLINE = "inline"
    ATTACHMENT = "attachment"


def format_http_date(value: datetime) -> str:
    """Format ``value`` as an IMF-fixdate, e.g. ``Sun, 06 Nov 1994 08:49:37 GMT``."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return format_datetime(value.astimezone(timezone.utc).replace(microsecond=0), usegmt=True)


def content_disposition(disposition: Disposition, filename: str) -> str:
    try:
        filename.encode("ascii")
    except UnicodeEncodeError:
        fallback = filename.encode("ascii", "replace").decode("ascii").replace('"', "")
        return f"{disposition.value}; filename=\"{fallback}\"; filename*=UTF-8''{quote(filename, safe='')}"
    escaped = filename.replace("\\", "\\\\").replace('"', '\\"')
    return f'{disposition.value}; filename="{escaped}"'


def cache_control(freshness_seconds: int = DEFAULT_FRESHNESS_SECONDS) -> str:
    return f"max-age={int(freshness_seconds)}, must-revalidate"
