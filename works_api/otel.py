from __future__ import annotations

from typing import Any

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import (
    BatchSpanProcessor,
    ConsoleSpanExporter,
    SimpleSpanProcessor,
)
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter

from works_api.core.config import Settings, get_settings


SERVICE_NAME = "works-agreements-api"
SERVICE_VERSION = "0.1.0"
WEBHOOK_PATH_PREFIX = "/webhooks"

_configured = False
_provider: TracerProvider | None = None


def build_resource(settings: Settings) -> Resource:
    return Resource.create(
        {
            "service.name": SERVICE_NAME,
            "service.namespace": "simpro",
            "service.version": SERVICE_VERSION,
            "deployment.environment": settings.app_env,
            "works_agreement.threshold": str(settings.works_agreement_threshold),
        }
    )


def _get_or_create_provider(settings: Settings) -> TracerProvider:
    global _provider

    if _provider is not None:
        return _provider

    _provider = TracerProvider(resource=build_resource(settings))
    trace.set_tracer_provider(_provider)
    return _provider


def setup_otel(settings: Settings) -> TracerProvider | None:
    """Install the service tracer provider and the exporters named in ``settings``.

    Safe to call once per app; later calls return the same provider.
    """
    global _configured

    if not settings.otel_enabled:
        return None

    provider = _get_or_create_provider(settings)
    if _configured:
        return provider

    if settings.otel_exporter_otlp_endpoint:
        exporter = OTLPSpanExporter(endpoint=settings.otel_exporter_otlp_endpoint)
        provider.add_span_processor(BatchSpanProcessor(exporter))
    if settings.otel_console_exporter:
        provider.add_span_processor(SimpleSpanProcessor(ConsoleSpanExporter()))

    _configured = True
    return provider


def setup_inmemory_otel() -> InMemorySpanExporter:
    provider = _get_or_create_provider(get_settings())
    exporter = InMemorySpanExporter()
    provider.add_span_processor(SimpleSpanProcessor(exporter))
    return exporter


def get_tracer(name: str) -> trace.Tracer:
    return trace.get_tracer(name, SERVICE_VERSION)


def get_fastapi_server_request_hook():
    def server_request_hook(span, scope: dict[str, Any]) -> None:  # type: ignore[no-untyped-def]
        if span is None or not span.is_recording():
            return
        headers = dict(scope.get("headers", []))
        correlation_raw = headers.get(b"x-correlation-id")
        if correlation_raw:
            span.set_attribute("correlation_id", correlation_raw.decode("utf-8"))
        if not str(scope.get("path", "")).startswith(WEBHOOK_PATH_PREFIX):
            return
        span.set_attribute("simpro.delivery", True)
        # Presence only, the token itself is never recorded.
        span.set_attribute("simpro.signed", b"x-simpro-signature" in headers)

    return server_request_hook
