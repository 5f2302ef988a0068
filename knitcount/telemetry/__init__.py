"""Prometheus metrics and OpenTelemetry tracing for the counter service."""

from __future__ import annotations

import time
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any, Dict

from fastapi import FastAPI
from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from .. import __version__
from ..core.config import Settings, get_settings
from .metrics import (
    BOUNDS_REJECTIONS,
    CASCADE_SKIPS,
    CASCADE_STEPS,
    COUNTER_MUTATIONS,
    HTTP_LATENCY,
    HTTP_REQUESTS,
    SYNC_EVENTS_DROPPED,
)

__all__ = [
    "BOUNDS_REJECTIONS",
    "CASCADE_SKIPS",
    "CASCADE_STEPS",
    "COUNTER_MUTATIONS",
    "SYNC_EVENTS_DROPPED",
    "configure_tracing",
    "engine_span",
    "setup_prometheus",
]

_provider: TracerProvider | None = None


class RouteMetricsMiddleware(BaseHTTPMiddleware):
    """Count and time requests per route template, e.g. ``.../counters/{counter_id}``."""

    def __init__(self, app, metrics_path: str) -> None:  # type: ignore[no-untyped-def]
        super().__init__(app)
        self._metrics_path = metrics_path

    async def dispatch(self, request: Request, call_next):  # type: ignore[override]
        if request.url.path == self._metrics_path:
            return await call_next(request)
        start = time.perf_counter()
        response = await call_next(request)
        route = _route_template(request)
        HTTP_REQUESTS.labels(
            method=request.method, route=route, status=str(response.status_code)
        ).inc()
        HTTP_LATENCY.labels(method=request.method, route=route).observe(
            time.perf_counter() - start
        )
        return response


def setup_prometheus(app: FastAPI) -> None:
    metrics_path = get_settings().prometheus_metrics_path
    app.add_middleware(RouteMetricsMiddleware, metrics_path=metrics_path)

    @app.get(metrics_path, include_in_schema=False)
    async def prometheus_metrics() -> Response:
        return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)


@contextmanager
def engine_span(name: str, **attributes: Any) -> Iterator[trace.Span]:
    """Span around one engine operation; attributes are prefixed ``knitcount.``.

    Without :func:`configure_tracing` the global provider is a no-op.
    """

    tracer = trace.get_tracer("knitcount.engine", __version__)
    with tracer.start_as_current_span(name) as span:
        for key, value in attributes.items():
            span.set_attribute(f"knitcount.{key}", _span_value(value))
        yield span


def configure_tracing(app: FastAPI) -> None:
    """Export spans over OTLP/HTTP when ``OTEL_EXPORTER_OTLP_ENDPOINT`` is set."""

    global _provider
    settings = get_settings()
    if not settings.otel_exporter_otlp_endpoint:
        return
    if _provider is None:
        _provider = _build_provider(settings)
        trace.set_tracer_provider(_provider)
    FastAPIInstrumentor.instrument_app(
        app, tracer_provider=_provider, excluded_urls=settings.prometheus_metrics_path
    )


def _build_provider(settings: Settings) -> TracerProvider:
    provider = TracerProvider(
        resource=Resource.create(
            {
                "service.name": settings.otel_service_name or settings.project_name,
                "service.version": __version__,
            }
        )
    )
    exporter = OTLPSpanExporter(
        endpoint=settings.otel_exporter_otlp_endpoint,
        headers=_parse_headers(settings.otel_exporter_otlp_headers),
    )
    provider.add_span_processor(BatchSpanProcessor(exporter))
    return provider


def _route_template(request: Request) -> str:
    """Rebuild the matched route template from the concrete path.

    Path parameter values are swapped back for their names; the router
    prefix stays in place.
    """

    if request.scope.get("endpoint") is None:
        # unrouted paths share one label
        return "unmatched"
    names = {str(value): "{" + key + "}" for key, value in request.path_params.items()}
    return "/".join(names.get(segment, segment) for segment in request.url.path.split("/"))


def _span_value(value: Any) -> str | int | float | bool:
    if isinstance(value, (str, int, float, bool)):
        return value
    return str(value)


def _parse_headers(raw: str | None) -> Dict[str, str]:
    """Parse ``key=value,key2=value2`` as used by OTEL_EXPORTER_OTLP_HEADERS."""

    pairs = (part.split("=", 1) for part in (raw or "").split(",") if "=" in part)
    return {key.strip(): value.strip() for key, value in pairs}
