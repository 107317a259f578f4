"""SQL-backed bookkeeping for cached objects: sizes, hit counts and access order."""

from __future__ import annotations

import time
from pathlib import Path

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.engine.url import make_url


class CacheIndex:
    def __init__(self, database_url: str):
        self._engine = self._create_engine(database_url)
        self._initialise()

    @staticmethod
    def _create_engine(database_url: str) -> Engine:
        url = make_url(database_url)
        if url.drivername.startswith("sqlite") and url.database and url.database != ":memory:":
            db_path = Path(url.database).expanduser()
            if not db_path.is_absolute():
                db_path = (Path.cwd() / db_path).resolve()
            db_path.parent.mkdir(parents=True, exist_ok=True)
            url = url.set(database=db_path.as_posix())
            database_url = url.render_as_string(hide_password=False)
        return create_engine(database_url, future=True, pool_pre_ping=True)

    def _initialise(self) -> None:
        with self._engine.begin() as conn:
            conn.execute(
                text(
                    """
                    CREATE TABLE IF NOT EXISTS cache_entries (
                        cache_key TEXT PRIMARY KEY,
                        size_bytes INTEGER NOT NULL DEFAULT 0,
                        total_hits INTEGER NOT NULL DEFAULT 0,
                        total_misses INTEGER NOT NULL DEFAULT 0,
                        resident INTEGER NOT NULL DEFAULT 0,
                        last_access DOUBLE PRECISION NOT NULL
                    )
                    """
                )
            )

    def record_hit(self, cache_key: str, size_bytes: int) -> None:
        with self._engine.begin() as conn:
            conn.execute(
                text(
                    """
                    INSERT INTO cache_entries (cache_key, size_bytes, total_hits, resident, last_access)
                    VALUES (:cache_key, :size_bytes, 1, 1, :now)
                    ON CONFLICT(cache_key) DO UPDATE SET
                        size_bytes = :size_bytes,
                        resident = 1,
                        total_hits = cache_entries.total_hits + 1,
                        last_access = :now
                    """
                ),
                {"cache_key": cache_key, "size_bytes": size_bytes, "now": time.time()},
            )

    def record_miss(self, cache_key: str) -> None:
        with self._engine.begin() as conn:
            conn.execute(
                text(
                    """
                    INSERT INTO cache_entries (cache_key, total_misses, last_access)
                    VALUES (:cache_key, 1, :now)
                    ON CONFLICT(cache_key) DO UPDATE SET
                        total_misses = cache_entries.total_misses + 1,
                        last_access = :now
                    """
                ),
                {"cache_key": cache_key, "now": time.time()},
            )

    def record_write(self, cache_key: str, size_bytes: int) -> None:
        with self._engine.begin() as conn:
            conn.execute(
                text(
                    """
                    INSERT INTO cache_entries (cache_key, size_bytes, resident, last_access)
                    VALUES (:cache_key, :size_bytes, 1, :now)
                    ON CONFLICT(cache_key) DO UPDATE SET
                        size_bytes = :size_bytes,
                        resident = 1,
                        last_access = :now
                    """
                ),
                {"cache_key": cache_key, "size_bytes": size_bytes, "now": time.time()},
            )

    def delete(self, cache_key: str) -> None:
        with self._engine.begin() as conn:
            conn.execute(text("DELETE FROM cache_entries WHERE cache_key = :cache_key"), {"cache_key": cache_key})

    def total_entries(self) -> int:
        with self._engine.connect() as conn:
            result = conn.execute(text("SELECT COUNT(*) FROM cache_entries WHERE resident = 1"))
            count = result.scalar_one()
        return int(count)

    def total_bytes(self) -> int:
        with self._engine.connect() as conn:
            result = conn.execute(text("SELECT COALESCE(SUM(size_bytes), 0) FROM cache_entries WHERE resident = 1"))
            total = result.scalar_one()
        return int(total or 0)

    def top_entries(self, limit: int = 10) -> list[dict[str, object]]:
        with self._engine.connect() as conn:
            result = conn.execute(
                text(
                    """
                    SELECT cache_key, size_bytes, total_hits, total_misses, last_access
                    FROM cache_entries
                    ORDER BY total_hits DESC, cache_key ASC
                    LIMIT :limit
                    """
                ),
                {"limit": limit},
            )
            rows = result.mappings().all()
        return [dict(row) for row in rows]

    def oldest_entries(self, limit: int = 10) -> list[tuple[str, int]]:
        with self._engine.connect() as conn:
            result = conn.execute(
                text(
                    """
                    SELECT cache_key, size_bytes FROM cache_entries
                    WHERE resident = 1
                    ORDER BY last_access ASC
                    LIMIT :limit
                    """
                ),
                {"limit": limit},
            )
            rows = result.fetchall()
        return [(row[0], int(row[1])) for row in rows]
