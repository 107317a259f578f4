"""Logging and tracing setup for the edge node and the origin server.

Both services call :func:`configure_observability` once from their app
factory. Everything logged afterwards carries the service name plus the
node context passed in (origin URL, cache or content root), and spans that
concern a single object go through :func:`key_span` so they share the same
``mediacdn.*`` attributes.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any, Dict, Iterator, Optional, Protocol

import structlog
from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.sdk.trace.sampling import ParentBased, TraceIdRatioBased
from structlog.contextvars import bind_contextvars, clear_contextvars

from .errors import MediaCdnError
from .keys import ObjectKey


UNTRACED_PATHS = "/metrics,/healthz"

_logging_configured = False
_tracer_configured = False


class TelemetrySettings(Protocol):
    log_level: str
    otel_exporter_endpoint: Optional[str]
    otel_exporter_headers: Optional[str]
    otel_sampler_ratio: float


def _log_level(level: str | int | None) -> int:
    if isinstance(level, int):
        return level
    if isinstance(level, str):
        numeric = logging.getLevelName(level.strip().upper())
        if isinstance(numeric, int):
            return numeric
    return logging.INFO


def configure_observability(service_name: str, settings: TelemetrySettings, **context: Any) -> None:
    configure_logging(service_name, settings.log_level, **context)
    configure_tracing(
        service_name,
        endpoint=settings.otel_exporter_endpoint,
        headers=settings.otel_exporter_headers,
        sampler_ratio=settings.otel_sampler_ratio,
    )


def configure_logging(service_name: str, level: str | int | None = None, **context: Any) -> None:
    """Render structlog events as JSON through the stdlib root logger.

    ``context`` is bound once and attached to every event of this process.
    """

    global _logging_configured
    numeric_level = _log_level(level)
    if _logging_configured:
        logging.getLogger().setLevel(numeric_level)
    else:
        logging.basicConfig(level=numeric_level, format="%(message)s")
        _logging_configured = True

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.stdlib.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.dict_tracebacks,
            structlog.processors.EventRenamer("message"),
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
    clear_contextvars()
    bind_contextvars(service=service_name, **{key: str(value) for key, value in context.items() if value is not None})


def parse_otlp_headers(headers: str | None) -> Dict[str, str]:
    """Parse ``key=value,key=value`` as used by ``OTEL_EXPORTER_OTLP_HEADERS``."""
    pairs = (item.partition("=") for item in (headers or "").split(","))
    return {key.strip(): value.strip() for key, _, value in pairs if key.strip() and value.strip()}


def configure_tracing(
    service_name: str,
    endpoint: Optional[str] = None,
    headers: Optional[str] = None,
    sampler_ratio: float = 1.0,
) -> None:
    """Install a tracer provider once per process.

    Spans are only exported when ``endpoint`` is set; otherwise they are
    sampled and then dropped.
    """

    global _tracer_configured
    if _tracer_configured or isinstance(trace.get_tracer_provider(), TracerProvider):
        _tracer_configured = True
        return

    ratio = max(0.0, min(1.0, sampler_ratio))
    provider = TracerProvider(
        resource=Resource.create({"service.name": service_name}),
        sampler=ParentBased(TraceIdRatioBased(ratio)),
    )
    if endpoint:
        provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=endpoint, headers=parse_otlp_headers(headers))))
    trace.set_tracer_provider(provider)
    HTTPXClientInstrumentor().instrument(tracer_provider=provider)
    _tracer_configured = True


def instrument_fastapi_app(app) -> None:
    FastAPIInstrumentor.instrument_app(
        app,
        tracer_provider=trace.get_tracer_provider(),
        excluded_urls=UNTRACED_PATHS,
    )


def get_tracer(component: str) -> trace.Tracer:
    return trace.get_tracer(f"mediacdn.{component}")


@contextmanager
def key_span(tracer: trace.Tracer, name: str, key: ObjectKey, **attributes: Any) -> Iterator[trace.Span]:
    """Span around work on one object, tagged with its key and any error status."""
    base = {
        "mediacdn.cache_key": key.cache_key,
        "mediacdn.series": key.series,
        "mediacdn.type": key.type,
    }
    base.update(attributes)
    with tracer.start_as_current_span(name, attributes=base) as span:
        try:
            yield span
        except MediaCdnError as exc:
            span.set_attribute("mediacdn.error", type(exc).__name__)
            span.set_attribute("http.response.status_code", exc.status_code)
            raise
