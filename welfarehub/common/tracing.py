"""OpenTelemetry wiring and a small span helper for service operations."""

from contextlib import contextmanager

from fastapi import FastAPI
from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor

from welfarehub.common.config import settings

tracer = trace.get_tracer("welfarehub")


def setup_tracing(service_name: str) -> None:
    """Register an OTLP-exporting tracer provider for this process.

    Does nothing when `TRACING_ENABLED=false`; spans opened through `span`
    are then no-ops.
    """

    if not settings.tracing_enabled:
        return
    resource = Resource.create(
        {
            "service.name": service_name,
            "service.namespace": "welfarehub",
            "deployment.environment": settings.environment,
        }
    )
    provider = TracerProvider(resource=resource)
    provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=settings.otel_exporter_otlp_endpoint)))
    trace.set_tracer_provider(provider)


def instrument_app(app: FastAPI) -> None:
    """Add request spans to `app`, excluding the probe endpoints."""

    if settings.tracing_enabled:
        FastAPIInstrumentor.instrument_app(app, excluded_urls="health,metrics")


@contextmanager
def span(name: str, **attributes):
    """Open a span named `name` with `welfarehub.*` attributes."""

    with tracer.start_as_current_span(name) as current:
        for key, value in attributes.items():
            if value is not None:
                current.set_attribute(f"welfarehub.{key}", value)
        yield current
