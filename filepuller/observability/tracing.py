"""
OpenTelemetry tracing setup.

Spans cover one notification each, with child spans for the object transfer
and the source delete. Without a collector endpoint the provider is still
installed so trace ids show up in logs.
"""

import logging

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.trace import Tracer

from filepuller import __version__

logger = logging.getLogger(__name__)

_provider: TracerProvider | None = None


def setup_tracing(service_name: str = "filepuller", otlp_endpoint: str | None = None) -> Tracer:
    """
    Install the process-wide tracer provider.

    Args:
        service_name: Reported `service.name`.
        otlp_endpoint: OTLP gRPC collector endpoint; spans are only exported
            when set.

    Returns:
        Tracer for the service.
    """
    global _provider

    _provider = TracerProvider(
        resource=Resource.create({"service.name": service_name, "service.version": __version__})
    )
    if otlp_endpoint:
        _provider.add_span_processor(
            BatchSpanProcessor(OTLPSpanExporter(endpoint=otlp_endpoint, insecure=True))
        )
        logger.info("Exporting spans", extra={"otlp_endpoint": otlp_endpoint})

    trace.set_tracer_provider(_provider)
    return trace.get_tracer(service_name)


def shutdown_tracing() -> None:
    """Flush pending spans before the process exits."""
    global _provider

    if _provider is None:
        return
    try:
        _provider.shutdown()
    except Exception as e:
        logger.warning("Unable to flush spans", extra={"error": str(e)})
    _provider = None


def get_tracer() -> Tracer:
    """
    Tracer from the globally registered provider.

    A no-op tracer unless `setup_tracing` ran, so handler code can trace
    unconditionally.
    """
    return trace.get_tracer("filepuller", __version__)
