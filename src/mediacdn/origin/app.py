"""Origin server exposing the media directory tree under /origin/."""

from __future__ import annotations

import time
from typing import Optional

import structlog
from fastapi import Depends, FastAPI, Request, Response, status
from fastapi.responses import JSONResponse, PlainTextResponse, StreamingResponse

from ..common.errors import InvalidKey, MediaCdnError
from ..common.headers import Disposition, cache_control, content_disposition
from ..common.metrics import GLOBAL_REGISTRY, Counter, LabeledCounter
from ..common.observability import configure_observability, instrument_fastapi_app
from ..common.routing import decoded_segments, object_key
from ..common.settings import OriginSettings
from .content import ContentRoot, DirectoryMissing, iter_file, sniff_media_type


LOGGER = structlog.get_logger("mediacdn.origin")

REQUEST_COUNTER = GLOBAL_REGISTRY.register(
    LabeledCounter("mediacdn_origin_requests_total", "Origin requests by response status class", label="status_class")
)
BYTES_SERVED_COUNTER = GLOBAL_REGISTRY.register(
    Counter("mediacdn_origin_bytes_served_total", "Bytes of files streamed by the origin")
)


class OriginState:
    def __init__(self, settings: OriginSettings) -> None:
        self.settings = settings
        self.content = ContentRoot(settings.content_path)


def get_state(request: Request) -> OriginState:
    return request.app.state.origin_state  # type: ignore[attr-defined]


def _listing(loader) -> JSONResponse:
    try:
        return JSONResponse(loader())
    except DirectoryMissing as exc:
        LOGGER.warning("directory_missing", path=str(exc))
        return JSONResponse([], status_code=status.HTTP_404_NOT_FOUND)
    except InvalidKey:
        return JSONResponse([], status_code=status.HTTP_400_BAD_REQUEST)


def create_app(settings: Optional[OriginSettings] = None) -> FastAPI:
    settings = settings or OriginSettings()
    configure_observability("mediacdn.origin", settings, content_path=settings.content_path)
    app = FastAPI()
    instrument_fastapi_app(app)
    app.state.origin_state = OriginState(settings)

    @app.exception_handler(MediaCdnError)
    async def handle_cdn_error(request: Request, exc: MediaCdnError) -> JSONResponse:
        return JSONResponse({"detail": exc.message}, status_code=exc.status_code)

    @app.middleware("http")
    async def request_metrics(request: Request, call_next):  # noqa: ANN001 - FastAPI signature
        start = time.perf_counter()
        response: Response | None = None
        try:
            response = await call_next(request)
            return response
        finally:
            duration = time.perf_counter() - start
            status_code = getattr(response, "status_code", 500)
            REQUEST_COUNTER.inc(f"{status_code // 100}xx")
            LOGGER.info(
                "http_request",
                method=request.method,
                path=request.url.path,
                status=status_code,
                duration_ms=round(duration * 1000, 2),
            )

    @app.get("/origin/series")
    async def list_series(state: OriginState = Depends(get_state)) -> JSONResponse:
        return _listing(state.content.series)

    @app.get("/origin/types/{series}")
    async def list_types(series: str, request: Request, state: OriginState = Depends(get_state)) -> JSONResponse:
        return _listing(lambda: state.content.types(*decoded_segments(request, 1)))

    @app.get("/origin/list-files/{series}/{type}")
    async def list_files(series: str, type: str, request: Request, state: OriginState = Depends(get_state)) -> JSONResponse:
        return _listing(lambda: state.content.files(*decoded_segments(request, 2)))

    @app.get("/origin/{series}/{type}/{filename}")
    async def get_file(
        series: str,
        type: str,
        filename: str,
        request: Request,
        state: OriginState = Depends(get_state),
    ) -> Response:
        key = object_key(request)
        path = state.content.readable_file(key)
        if path is None:
            LOGGER.warning("file_not_found", cache_key=key.cache_key)
            return PlainTextResponse("File not found", status_code=status.HTTP_404_NOT_FOUND)

        media_type = sniff_media_type(path)
        if media_type is None:
            LOGGER.warning("media_type_unknown", cache_key=key.cache_key)
            return PlainTextResponse("Unable to detect media type", status_code=status.HTTP_400_BAD_REQUEST)

        size = path.stat().st_size
        BYTES_SERVED_COUNTER.inc(size)
        LOGGER.info("file_streamed", cache_key=key.cache_key, media_type=media_type, bytes=size)
        response = StreamingResponse(
            iter_file(path),
            media_type=media_type,
            headers={
                "Content-Disposition": content_disposition(Disposition.INLINE, key.filename),
                "Cache-Control": cache_control(state.settings.freshness_seconds),
                "Content-Length": str(size),
            },
        )
        response.headers["content-type"] = media_type
        return response

    @app.get("/metrics", response_class=PlainTextResponse)
    async def metrics_endpoint() -> PlainTextResponse:
        return PlainTextResponse(GLOBAL_REGISTRY.render())

    @app.get("/healthz", status_code=status.HTTP_200_OK)
    async def health_check(state: OriginState = Depends(get_state)) -> dict:
        return {"status": "healthy", "content_path": str(state.content.root)}

    return app
