"""OpenTelemetry tracing setup (OTLP exporter via env)."""

import logging
import os
from typing import Optional

from opentelemetry import trace
from opentelemetry.sdk.resources import SERVICE_NAME, Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor

logger = logging.getLogger(__name__)

TRACER_NAME = "hcm_gateway"

_provider: Optional[TracerProvider] = None


def setup_telemetry(otlp_endpoint: Optional[str] = None, service_name: str = "hcm-mcp-gateway") -> None:
    """
    Install a tracer provider.

    Spans are always recorded in-process; they are exported over OTLP/HTTP
    only when an endpoint is configured.

    Args:
        otlp_endpoint: OTLP collector base URL, e.g. http://collector:4318
        service_name: Default service.name resource attribute
    """
    global _provider
    if _provider is not None:
        return

    resource = Resource.create({SERVICE_NAME: os.getenv("OTEL_SERVICE_NAME", service_name)})
    provider = TracerProvider(resource=resource)

    if otlp_endpoint:
        from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter

        exporter = OTLPSpanExporter(endpoint=otlp_endpoint.rstrip("/") + "/v1/traces")
        provider.add_span_processor(BatchSpanProcessor(exporter))
        logger.info("OTLP span export enabled", extra={"otlp_endpoint": otlp_endpoint})

    trace.set_tracer_provider(provider)
    _provider = provider


def shutdown_telemetry() -> None:
    """Flush pending spans."""
    global _provider
    if _provider is not None:
        _provider.shutdown()
        _provider = None


def get_tracer() -> trace.Tracer:
    # Falls back to the no-op provider until setup_telemetry() runs
    return trace.get_tracer(TRACER_NAME)
