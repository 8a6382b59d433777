"""
Tracer initialization and configuration for OpenTelemetry.

Tracing is opt-in for the masking job: until ``initialize_tracing`` is
called the OpenTelemetry API hands out its no-op tracer, so spans cost
nothing in tests and in runs without a collector.
"""

import logging
import os

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import SERVICE_NAME, Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter
from opentelemetry.sdk.trace.sampling import TraceIdRatioBased

logger = logging.getLogger(__name__)

DEFAULT_SERVICE_NAME = "db-masking"

_provider: TracerProvider | None = None


def initialize_tracing(
    service_name: str = DEFAULT_SERVICE_NAME,
    otlp_endpoint: str | None = None,
    console_export: bool = False,
    sampling_rate: float = 1.0,
) -> trace.Tracer:
    """
    Initialize distributed tracing with OpenTelemetry.

    Args:
        service_name: Name of the service for identification
        otlp_endpoint: OTLP collector endpoint (default: OTLP_ENDPOINT env var)
        console_export: If True, also export traces to console (debug)
        sampling_rate: Sampling rate 0.0-1.0 (1.0 = trace everything)

    Returns:
        Configured tracer instance
    """
    global _provider

    if _provider is not None:
        logger.warning("Tracing already initialized, returning existing tracer")
        return get_tracer()

    resource = Resource(attributes={SERVICE_NAME: service_name})
    provider = TracerProvider(resource=resource, sampler=TraceIdRatioBased(sampling_rate))

    exporters = []

    if otlp_endpoint is None:
        otlp_endpoint = os.getenv("OTLP_ENDPOINT")

    if otlp_endpoint:
        provider.add_span_processor(
            BatchSpanProcessor(OTLPSpanExporter(endpoint=otlp_endpoint, insecure=True))
        )
        exporters.append("OTLP")
        logger.info(f"OTLP exporter configured: {otlp_endpoint}")

    if console_export or os.getenv("TRACE_CONSOLE", "").lower() == "true":
        provider.add_span_processor(BatchSpanProcessor(ConsoleSpanExporter()))
        exporters.append("Console")

    if not exporters:
        logger.warning("No trace exporters configured, spans will be dropped")

    trace.set_tracer_provider(provider)
    _provider = provider

    logger.info(
        f"Tracing initialized: {service_name} "
        f"(exporters: {', '.join(exporters) or 'none'}, sampling: {sampling_rate})"
    )

    return get_tracer()


def get_tracer() -> trace.Tracer:
    """
    Get the masking tracer from the global provider.

    Returns a no-op tracer when tracing was never initialized.
    """
    return trace.get_tracer(DEFAULT_SERVICE_NAME)


def shutdown_tracing() -> None:
    """
    Flush pending spans and shut the provider down.

    Should be called before process exit.
    """
    global _provider

    if _provider is None:
        return

    try:
        _provider.shutdown()
        logger.info("Tracing shutdown complete")
    finally:
        _provider = None
