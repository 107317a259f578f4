"""Edge node: serves /cdn/ objects from the local store, populating it from origin on a miss."""

from __future__ import annotations

import time
from contextlib import asynccontextmanager
from typing import Optional

import httpx
import structlog
from fastapi import Depends, FastAPI, HTTPException, Request, Response, status
from fastapi.responses import JSONResponse, PlainTextResponse

from ..common.errors import InvalidKey, MediaCdnError, OriginUnavailable
from ..common.metrics import GLOBAL_REGISTRY, Counter, Gauge, Histogram, LabeledCounter
from ..common.observability import configure_observability, instrument_fastapi_app
from ..common.routing import decoded_segments, object_key
from ..common.settings import EdgeSettings
from .index import CacheIndex
from .orchestrator import CacheOrchestrator
from .origin_client import OriginClient
from .responder import build_response
from .store import LocalObjectStore


REQUEST_COUNTER = GLOBAL_REGISTRY.register(
    LabeledCounter("mediacdn_edge_requests_total", "Edge node requests by response status class", label="status_class")
)
BYTES_SERVED_COUNTER = GLOBAL_REGISTRY.register(
    Counter("mediacdn_edge_bytes_served_total", "Declared bytes of object responses")
)
TOTAL_ENTRIES_GAUGE = GLOBAL_REGISTRY.register(Gauge("mediacdn_edge_cache_entries", "Number of cached objects"))
LATENCY_HISTOGRAM = GLOBAL_REGISTRY.register(
    Histogram(
        "mediacdn_edge_request_latency_seconds",
        buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0],
        description="Edge request latency",
    )
)


class EdgeState:
    def __init__(self, settings: EdgeSettings, orchestrator: CacheOrchestrator, origin: OriginClient, index: CacheIndex):
        self.settings = settings
        self.orchestrator = orchestrator
        self.origin = origin
        self.index = index
        self.logger = structlog.get_logger("mediacdn.edge").bind(origin=origin.base_url)


def get_state(request: Request) -> EdgeState:
    return request.app.state.edge_state  # type: ignore[attr-defined]


def build_orchestrator(settings: EdgeSettings, origin: OriginClient, index: CacheIndex) -> CacheOrchestrator:
    return CacheOrchestrator(
        LocalObjectStore(settings.cache_path),
        origin,
        index,
        single_flight=settings.single_flight,
        strict_cache_writes=settings.strict_cache_writes,
        max_storage_bytes=settings.max_storage_bytes,
        eviction_batch_size=settings.eviction_batch_size,
    )


def create_app(
    settings: Optional[EdgeSettings] = None,
    *,
    origin_transport: Optional[httpx.AsyncBaseTransport] = None,
) -> FastAPI:
    settings = settings or EdgeSettings()
    configure_observability(
        "mediacdn.edge",
        settings,
        origin=settings.origin_url,
        cache_path=settings.cache_path,
        single_flight=settings.single_flight,
    )
    origin = OriginClient(settings.origin_url, settings.origin_timeout_seconds, transport=origin_transport)
    index = CacheIndex(settings.index_database_url)
    state = EdgeState(settings, build_orchestrator(settings, origin, index), origin, index)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        settings.cache_path.mkdir(parents=True, exist_ok=True)
        try:
            yield
        finally:
            await origin.aclose()

    app = FastAPI(lifespan=lifespan)
    instrument_fastapi_app(app)
    app.state.edge_state = state

    @app.exception_handler(MediaCdnError)
    async def handle_cdn_error(request: Request, exc: MediaCdnError) -> JSONResponse:
        return JSONResponse({"detail": exc.message}, status_code=exc.status_code)

    @app.middleware("http")
    async def record_latency(request: Request, call_next):  # noqa: ANN001 - FastAPI middleware signature
        start = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception:
            duration = time.perf_counter() - start
            LATENCY_HISTOGRAM.observe(duration)
            REQUEST_COUNTER.inc("5xx")
            state.logger.exception(
                "http_request_error",
                method=request.method,
                path=request.url.path,
                duration_ms=round(duration * 1000, 2),
            )
            raise

        duration = time.perf_counter() - start
        LATENCY_HISTOGRAM.observe(duration)
        REQUEST_COUNTER.inc(f"{response.status_code // 100}xx")
        log_kwargs = {
            "method": request.method,
            "path": request.url.path,
            "status": response.status_code,
            "duration_ms": round(duration * 1000, 2),
        }
        if response.status_code >= 500:
            state.logger.error("http_request", **log_kwargs)
        elif duration >= 1.0:
            state.logger.warning("http_request", **log_kwargs)
        else:
            state.logger.info("http_request", **log_kwargs)
        return response

    @app.get("/cdn/list-series")
    async def list_series(state: EdgeState = Depends(get_state)) -> JSONResponse:
        try:
            names = await state.orchestrator.list_series()
        except OriginUnavailable as exc:
            state.logger.error("list_series_failed", error=exc.message, status=exc.status)
            return JSONResponse([], status_code=status.HTTP_500_INTERNAL_SERVER_ERROR)
        return JSONResponse(names)

    @app.get("/cdn/list-types/{series}")
    async def list_types(series: str, request: Request, state: EdgeState = Depends(get_state)) -> JSONResponse:
        try:
            (decoded_series,) = decoded_segments(request, 1)
        except InvalidKey:
            return JSONResponse([], status_code=status.HTTP_400_BAD_REQUEST)
        try:
            names = await state.orchestrator.list_types(decoded_series)
        except OriginUnavailable as exc:
            state.logger.error("list_types_failed", series=decoded_series, error=exc.message, status=exc.status)
            return JSONResponse([], status_code=status.HTTP_500_INTERNAL_SERVER_ERROR)
        return JSONResponse(names)

    @app.get("/cdn/list-files/{series}/{type}")
    async def list_files(series: str, type: str, request: Request, state: EdgeState = Depends(get_state)) -> JSONResponse:
        try:
            decoded_series, decoded_type = decoded_segments(request, 2)
        except InvalidKey:
            return JSONResponse([], status_code=status.HTTP_400_BAD_REQUEST)
        try:
            names = await state.orchestrator.list_files(decoded_series, decoded_type)
        except OriginUnavailable as exc:
            state.logger.error(
                "list_files_failed",
                series=decoded_series,
                type=decoded_type,
                error=exc.message,
                status=exc.status,
            )
            if exc.status is not None and 400 <= exc.status < 500:
                return JSONResponse([], status_code=exc.status)
            return JSONResponse([], status_code=status.HTTP_500_INTERNAL_SERVER_ERROR)
        return JSONResponse(names)

    @app.post("/cdn/invalidate/{series}/{type}/{filename}", response_class=PlainTextResponse)
    async def invalidate(
        series: str,
        type: str,
        filename: str,
        request: Request,
        state: EdgeState = Depends(get_state),
    ) -> PlainTextResponse:
        key = object_key(request)
        await state.orchestrator.invalidate(key)
        TOTAL_ENTRIES_GAUGE.set(float(state.index.total_entries()))
        return PlainTextResponse("invalidated")

    @app.get("/cdn/{series}/{type}/{filename}")
    async def get_object(
        series: str,
        type: str,
        filename: str,
        request: Request,
        state: EdgeState = Depends(get_state),
    ) -> Response:
        key = object_key(request)
        servable = await state.orchestrator.resolve(key)
        if servable.size is not None:
            BYTES_SERVED_COUNTER.inc(servable.size)
        return build_response(servable, freshness_seconds=state.settings.freshness_seconds)

    @app.get("/status")
    async def cache_status(state: EdgeState = Depends(get_state)) -> JSONResponse:
        payload = state.orchestrator.store.status()
        payload.update(
            {
                "origin": state.origin.base_url,
                "total_entries": state.index.total_entries(),
                "total_bytes": state.index.total_bytes(),
                "top_entries": state.index.top_entries(),
                "max_storage_bytes": state.settings.max_storage_bytes,
                "single_flight": state.settings.single_flight,
                "strict_cache_writes": state.settings.strict_cache_writes,
            }
        )
        TOTAL_ENTRIES_GAUGE.set(float(payload["total_entries"]))
        return JSONResponse(payload)

    @app.get("/metrics", response_class=PlainTextResponse)
    async def metrics_endpoint(state: EdgeState = Depends(get_state)) -> PlainTextResponse:
        TOTAL_ENTRIES_GAUGE.set(float(state.index.total_entries()))
        return PlainTextResponse(GLOBAL_REGISTRY.render())

    @app.get("/healthz", status_code=status.HTTP_200_OK)
    async def health_check(state: EdgeState = Depends(get_state)) -> dict:
        """Health check for readiness/liveness probes."""
        health: dict = {"status": "healthy", "checks": {}}
        try:
            store_status = state.orchestrator.store.status()
            health["checks"]["backend"] = store_status.get("backend", "unknown")
            health["checks"]["writable"] = store_status.get("writable", False)
        except OSError as exc:
            health["checks"]["backend"] = f"error: {exc}"
            health["status"] = "unhealthy"
        if not health["checks"].get("writable"):
            health["status"] = "unhealthy"

        if health["status"] != "healthy":
            raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=health)
        return health

    return app
