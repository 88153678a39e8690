"""OpenTelemetry tracing setup."""

from __future__ import annotations

import logging

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor
from opentelemetry.sdk.resources import SERVICE_NAME, Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.sdk.trace.sampling import ParentBased, TraceIdRatioBased

from salon_scheduler.core.config import settings

logger = logging.getLogger(__name__)

SERVICE_NAMESPACE = "salon-scheduler"
TRACER_NAME = "salon_scheduler"


def build_resource_attributes() -> dict[str, str | int]:
    """Resource attributes attached to every span the scheduler exports."""
    return {
        SERVICE_NAME: settings.OTEL_SERVICE_NAME,
        "service.namespace": SERVICE_NAMESPACE,
        "deployment.environment": settings.ENV,
        "salon.slot_hold_minutes": settings.SLOT_HOLD_MINUTES,
    }


def get_tracer(provider=None) -> trace.Tracer:
    """Tracer for scheduling spans; a no-op until tracing is configured."""
    return trace.get_tracer(TRACER_NAME, tracer_provider=provider)


def parse_otlp_headers(value: str) -> dict[str, str]:
    """Parse "key=value,key2=value2" exporter headers."""
    headers: dict[str, str] = {}
    if not value:
        return headers
    for item in value.split(","):
        item = item.strip()
        if not item or "=" not in item:
            continue
        key, val = item.split("=", 1)
        if key.strip():
            headers[key.strip()] = val.strip()
    return headers


def configure_telemetry(app, engine) -> bool:
    """Initialize tracing when enabled. Returns True if instrumentation is active."""
    if not settings.OTEL_ENABLED or not settings.OTEL_EXPORTER_OTLP_ENDPOINT:
        return False

    try:
        resource = Resource.create(build_resource_attributes())
        sampler = ParentBased(TraceIdRatioBased(settings.OTEL_SAMPLE_RATE))
        provider = TracerProvider(resource=resource, sampler=sampler)

        exporter = OTLPSpanExporter(
            endpoint=settings.OTEL_EXPORTER_OTLP_ENDPOINT,
            headers=parse_otlp_headers(settings.OTEL_EXPORTER_OTLP_HEADERS),
        )
        provider.add_span_processor(BatchSpanProcessor(exporter))
        trace.set_tracer_provider(provider)

        FastAPIInstrumentor.instrument_app(app, tracer_provider=provider)
        SQLAlchemyInstrumentor().instrument(engine=engine)
        logger.info("OpenTelemetry tracing enabled")
    except Exception:
        logger.exception("Failed to initialize OpenTelemetry tracing")
        return False
    return True
