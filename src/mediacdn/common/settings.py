"""Application configuration models shared by services."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def env_field(default, env_name: str):
    return Field(default, validation_alias=env_name)


def _sqlite_url(value):
    if value in (None, ...):
        return value
    if isinstance(value, Path):
        value = str(value)
    if isinstance(value, str) and "://" not in value:
        path = Path(value).expanduser().resolve()
        return f"sqlite+pysqlite:///{path.as_posix()}"
    return value


class EdgeSettings(BaseSettings):
    """Configuration for the edge cache node."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", populate_by_name=True)
    cache_path: Path = env_field(Path("./cdn-cache"), "MEDIACDN_EDGE_CACHE_PATH")
    origin_url: str = env_field("http://127.0.0.1:8081/origin", "MEDIACDN_EDGE_ORIGIN_URL")
    origin_timeout_seconds: float = env_field(10.0, "MEDIACDN_EDGE_ORIGIN_TIMEOUT")
    freshness_seconds: int = env_field(3600, "MEDIACDN_EDGE_FRESHNESS_SECONDS")
    single_flight: bool = env_field(True, "MEDIACDN_EDGE_SINGLE_FLIGHT")
    strict_cache_writes: bool = env_field(False, "MEDIACDN_EDGE_STRICT_CACHE_WRITES")
    max_storage_bytes: Optional[int] = env_field(None, "MEDIACDN_EDGE_MAX_BYTES")
    eviction_batch_size: int = env_field(100, "MEDIACDN_EDGE_EVICTION_BATCH")
    index_database_url: str = env_field(..., "MEDIACDN_EDGE_INDEX_DB")
    log_level: str = env_field("INFO", "MEDIACDN_LOG_LEVEL")
    otel_exporter_endpoint: Optional[str] = env_field(None, "MEDIACDN_OTEL_EXPORTER_ENDPOINT")
    otel_exporter_headers: Optional[str] = env_field(None, "MEDIACDN_OTEL_EXPORTER_HEADERS")
    otel_sampler_ratio: float = env_field(0.1, "MEDIACDN_OTEL_SAMPLER_RATIO")

    @field_validator("index_database_url", mode="before")
    @classmethod
    def _normalize_index_url(cls, value):
        return _sqlite_url(value)

    @field_validator("max_storage_bytes", mode="before")
    @classmethod
    def _parse_max_bytes(cls, value):
        if isinstance(value, str):
            value = value.strip()
            return int(value) if value else None
        return value

    @field_validator("origin_url", mode="after")
    @classmethod
    def _strip_origin_url(cls, value: str) -> str:
        return value.rstrip("/")


class OriginSettings(BaseSettings):
    """Configuration for the origin content server."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", populate_by_name=True)
    content_path: Path = env_field(Path("./content"), "MEDIACDN_ORIGIN_CONTENT_PATH")
    freshness_seconds: int = env_field(3600, "MEDIACDN_ORIGIN_FRESHNESS_SECONDS")
    log_level: str = env_field("INFO", "MEDIACDN_LOG_LEVEL")
    otel_exporter_endpoint: Optional[str] = env_field(None, "MEDIACDN_OTEL_EXPORTER_ENDPOINT")
    otel_exporter_headers: Optional[str] = env_field(None, "MEDIACDN_OTEL_EXPORTER_HEADERS")
    otel_sampler_ratio: float = env_field(0.1, "MEDIACDN_OTEL_SAMPLER_RATIO")
