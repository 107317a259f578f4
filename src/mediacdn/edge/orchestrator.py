"""Read-through cache orchestration for the edge node.

``resolve`` walks CHECK_CACHE -> SERVE_CACHED, or CHECK_CACHE -> FETCH_ORIGIN ->
SERVE_FRESH / PROPAGATE_ORIGIN_ERROR. The hit path derives its metadata from
the stored file itself; the miss path uses what the origin declared.
"""

from __future__ import annotations

import asyncio
import mimetypes
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import AsyncIterator, Optional, Union

import structlog

from ..common.errors import ObjectNotFound, OriginUnavailable, StoreIOError
from ..common.keys import ObjectKey
from ..common.metrics import GLOBAL_REGISTRY, Counter
from ..common.observability import get_tracer, key_span
from .index import CacheIndex
from .origin_client import DEFAULT_CONTENT_TYPE, OriginClient, OriginObject
from .store import ObjectStore, ObjectStream


LOGGER = structlog.get_logger("mediacdn.edge.orchestrator")
TRACER = get_tracer("edge")

HIT_COUNTER = GLOBAL_REGISTRY.register(Counter("mediacdn_edge_cache_hits_total", "Objects served from the edge store"))
MISS_COUNTER = GLOBAL_REGISTRY.register(Counter("mediacdn_edge_cache_misses_total", "Objects fetched from origin"))
COALESCED_COUNTER = GLOBAL_REGISTRY.register(
    Counter("mediacdn_edge_coalesced_fetches_total", "Misses that joined an in-flight origin fetch")
)
BYTES_WRITTEN_COUNTER = GLOBAL_REGISTRY.register(
    Counter("mediacdn_edge_bytes_written_total", "Bytes written into the edge store")
)
WRITE_FAILURE_COUNTER = GLOBAL_REGISTRY.register(
    Counter("mediacdn_edge_cache_write_failures_total", "Cache population writes that failed")
)
ORIGIN_ERROR_COUNTER = GLOBAL_REGISTRY.register(
    Counter("mediacdn_edge_origin_errors_total", "Origin fetches that failed")
)
INVALIDATION_COUNTER = GLOBAL_REGISTRY.register(
    Counter("mediacdn_edge_invalidations_total", "Objects removed by explicit invalidation")
)
EVICTION_COUNTER = GLOBAL_REGISTRY.register(
    Counter("mediacdn_edge_evictions_total", "Objects evicted to enforce the storage bound")
)


def guess_content_type(filename: str) -> str:
    content_type, _ = mimetypes.guess_type(filename, strict=False)
    return content_type or DEFAULT_CONTENT_TYPE


@dataclass
class ServableObject:
    """Resolved payload plus the metadata needed to answer a client."""

    key: ObjectKey
    body: Union[bytes, ObjectStream]
    content_type: str
    last_modified: datetime
    size: Optional[int]
    from_cache: bool

    async def chunks(self) -> AsyncIterator[bytes]:
        if isinstance(self.body, (bytes, bytearray)):
            if self.body:
                yield bytes(self.body)
            return
        async for chunk in self.body:
            yield chunk

    async def read(self) -> bytes:
        return b"".join([chunk async for chunk in self.chunks()])


class CacheOrchestrator:
    def __init__(
        self,
        store: ObjectStore,
        origin: OriginClient,
        index: Optional[CacheIndex] = None,
        *,
        single_flight: bool = True,
        strict_cache_writes: bool = False,
        max_storage_bytes: Optional[int] = None,
        eviction_batch_size: int = 100,
    ) -> None:
        self._store = store
        self._origin = origin
        self._index = index
        self._single_flight = single_flight
        self._strict_cache_writes = strict_cache_writes
        self._max_storage_bytes = max_storage_bytes
        self._eviction_batch_size = max(1, eviction_batch_size)
        self._inflight: dict[ObjectKey, asyncio.Task[OriginObject]] = {}

    @property
    def store(self) -> ObjectStore:
        return self._store

    @property
    def index(self) -> Optional[CacheIndex]:
        return self._index

    @property
    def max_storage_bytes(self) -> Optional[int]:
        return self._max_storage_bytes

    async def resolve(self, key: ObjectKey) -> ServableObject:
        with key_span(TRACER, "edge.resolve", key) as span:
            if await self._store.exists(key):
                try:
                    servable = await self._serve_cached(key)
                except ObjectNotFound:
                    LOGGER.info("cache_entry_vanished", cache_key=key.cache_key)
                else:
                    span.set_attribute("mediacdn.cache_hit", True)
                    return servable
            span.set_attribute("mediacdn.cache_hit", False)
            return await self._serve_fresh(key)

    async def invalidate(self, key: ObjectKey) -> None:
        with key_span(TRACER, "edge.invalidate", key):
            try:
                await self._store.delete(key)
            except ObjectNotFound:
                LOGGER.info("cache_invalidate_miss", cache_key=key.cache_key)
                self._drop_index_entry(key)
                raise
            self._drop_index_entry(key)
            INVALIDATION_COUNTER.inc()
            LOGGER.info("cache_invalidated", cache_key=key.cache_key)

    def _drop_index_entry(self, key: ObjectKey) -> None:
        # Callers invoke this only once the file is gone.
        if self._index is not None:
            self._index.delete(key.cache_key)

    async def list_series(self) -> list[str]:
        return await self._origin.fetch_series_list()

    async def list_types(self, series: str) -> list[str]:
        return await self._origin.fetch_types_list(series)

    async def list_files(self, series: str, type_: str) -> list[str]:
        return await self._origin.fetch_file_list(series, type_)

    async def _serve_cached(self, key: ObjectKey) -> ServableObject:
        stream = await self._store.read_stream(key)
        HIT_COUNTER.inc()
        if self._index is not None:
            self._index.record_hit(key.cache_key, stream.info.size)
        LOGGER.info("cache_hit", cache_key=key.cache_key, bytes=stream.info.size)
        return ServableObject(
            key=key,
            body=stream,
            content_type=guess_content_type(key.filename),
            last_modified=stream.info.modified,
            size=stream.info.size,
            from_cache=True,
        )

    async def _serve_fresh(self, key: ObjectKey) -> ServableObject:
        MISS_COUNTER.inc()
        if self._index is not None:
            self._index.record_miss(key.cache_key)
        LOGGER.info("cache_miss", cache_key=key.cache_key)
        fetched = await self._fetch(key)
        return ServableObject(
            key=key,
            body=fetched.data,
            content_type=fetched.content_type,
            last_modified=datetime.now(timezone.utc),
            size=len(fetched.data),
            from_cache=False,
        )

    async def _fetch(self, key: ObjectKey) -> OriginObject:
        if not self._single_flight:
            return await self._fetch_and_populate(key)

        task = self._inflight.get(key)
        if task is not None:
            COALESCED_COUNTER.inc()
            LOGGER.debug("origin_fetch_coalesced", cache_key=key.cache_key)
        else:
            task = asyncio.ensure_future(self._fetch_and_populate(key))
            self._inflight[key] = task

            def _forget(done: asyncio.Task[OriginObject]) -> None:
                if self._inflight.get(key) is done:
                    del self._inflight[key]

            task.add_done_callback(_forget)
        # A cancelled waiter must not cancel the fetch the other waiters share.
        return await asyncio.shield(task)

    async def _fetch_and_populate(self, key: ObjectKey) -> OriginObject:
        try:
            fetched = await self._origin.fetch_object(key)
        except OriginUnavailable as exc:
            ORIGIN_ERROR_COUNTER.inc()
            LOGGER.warning("origin_fetch_failed", cache_key=key.cache_key, status=exc.status, error=exc.message)
            raise

        try:
            written = await self._store.write(key, fetched.data)
        except StoreIOError as exc:
            WRITE_FAILURE_COUNTER.inc()
            LOGGER.error("cache_population_failed", cache_key=key.cache_key, error=exc.message)
            if self._strict_cache_writes:
                raise
            return fetched

        BYTES_WRITTEN_COUNTER.inc(written)
        if self._index is not None:
            self._index.record_write(key.cache_key, written)
        LOGGER.info("cache_populated", cache_key=key.cache_key, bytes=written)
        await self.enforce_storage_limit(keep=key.cache_key)
        return fetched

    async def enforce_storage_limit(self, keep: Optional[str] = None) -> None:
        """Evict least recently used objects until the tracked total fits the bound."""
        max_bytes = self._max_storage_bytes
        if not max_bytes or self._index is None:
            return
        total = self._index.total_bytes()
        if total <= max_bytes:
            return
        LOGGER.info("cache_eviction_started", total_bytes=total, max_bytes=max_bytes)
        while total > max_bytes:
            candidates = [
                entry
                for entry in self._index.oldest_entries(limit=self._eviction_batch_size + 1)
                if entry[0] != keep
            ][: self._eviction_batch_size]
            if not candidates:
                break
            for cache_key, size in candidates:
                if total <= max_bytes:
                    break
                victim = ObjectKey(*cache_key.split("/"))
                try:
                    await self._store.delete(victim)
                except ObjectNotFound:
                    LOGGER.debug("cache_evict_missing", cache_key=cache_key)
                except StoreIOError as exc:
                    LOGGER.error("cache_evict_failed", cache_key=cache_key, error=exc.message)
                    return
                self._index.delete(cache_key)
                EVICTION_COUNTER.inc()
                total -= size
                LOGGER.info("cache_evicted", cache_key=cache_key, reclaimed_bytes=size)
        LOGGER.info("cache_eviction_completed", total_bytes=total)
