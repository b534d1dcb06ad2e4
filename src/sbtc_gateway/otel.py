"""OpenTelemetry instrumentation for the gateway.

Tracing is enabled only when ``otel_exporter_endpoint`` is configured; the
explorer client and the delivery engine open manual spans through
:func:`get_tracer`, which is a no-op tracer otherwise.
"""
from __future__ import annotations

import structlog
from aiohttp import web

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.aiohttp_server import AioHttpServerInstrumentor
from opentelemetry.sdk.resources import SERVICE_NAME, Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor

logger = structlog.get_logger(__name__)

_provider: TracerProvider | None = None


def setup_otel(app: web.Application, *, endpoint: str | None, service_name: str) -> None:
    """Install an OTLP tracer provider and instrument the aiohttp server."""
    global _provider

    if not endpoint:
        logger.info("otel: exporter endpoint not set, tracing disabled")
        return

    _provider = TracerProvider(resource=Resource.create({SERVICE_NAME: service_name}))
    _provider.add_span_processor(
        BatchSpanProcessor(OTLPSpanExporter(endpoint=f"{endpoint.rstrip('/')}/v1/traces"))
    )
    trace.set_tracer_provider(_provider)
    AioHttpServerInstrumentor().instrument(server=app)

    logger.info("otel: tracing enabled", endpoint=endpoint, service=service_name)


async def shutdown_otel(_app: web.Application) -> None:
    """Flush pending spans on application shutdown."""
    global _provider
    if _provider is not None:
        _provider.shutdown()
        _provider = None


def get_tracer(name: str = __name__) -> trace.Tracer:
    return trace.get_tracer(name)
