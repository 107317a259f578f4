"""Error taxonomy shared by the edge node and origin server."""

from __future__ import annotations

from typing import Optional


class MediaCdnError(Exception):
    """Base class for all mediacdn failures."""

    status_code = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class InvalidKey(MediaCdnError):
    """A key component failed percent-decoding or tried to escape its namespace."""

    status_code = 400


class ObjectNotFound(MediaCdnError):
    """The key is not resident in the store."""

    status_code = 404


class StoreIOError(MediaCdnError):
    """Filesystem failure while reading, writing or deleting a stored object."""

    status_code = 500


class OriginUnavailable(MediaCdnError):
    """The origin answered with a non-2xx status, timed out, or could not be reached.

    ``status`` carries the upstream HTTP status when the origin answered at all.
    """

    def __init__(self, message: str, status: Optional[int] = None, *, timed_out: bool = False) -> None:
        super().__init__(message)
        self.status = status
        self.timed_out = timed_out

    @property
    def status_code(self) -> int:  # type: ignore[override]
        if self.status is not None:
            return self.status
        if self.timed_out:
            return 504
        return 500

    def __repr__(self) -> str:
        return f"OriginUnavailable(status={self.status!r}, message={self.message!r})"
