from contextlib import contextmanager
import logging
import os

logger = logging.getLogger(__name__)

_TRACER_NAME = "scenemedia"
_ATTRIBUTE_PREFIX = "scenemedia."


def setup_telemetry(app=None, service_name: str = "scenemedia") -> bool:
    """Export spans over OTLP/HTTP when ``OTEL_EXPORTER_OTLP_ENDPOINT`` is set.

    Returns whether tracing was enabled. Missing opentelemetry packages only
    disable tracing.
    """
    endpoint = os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT")
    if not endpoint:
        return False

    try:
        from opentelemetry import trace
        from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
        from opentelemetry.sdk.resources import Resource
        from opentelemetry.sdk.trace import TracerProvider
        from opentelemetry.sdk.trace.export import BatchSpanProcessor
    except ImportError as exc:
        logger.warning("telemetry_disabled", extra={"reason": str(exc)})
        return False

    provider = TracerProvider(resource=Resource.create({"service.name": service_name}))
    provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=endpoint)))
    trace.set_tracer_provider(provider)

    if app is not None:
        try:
            from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
        except ImportError:
            logger.info("fastapi_instrumentation_unavailable")
        else:
            FastAPIInstrumentor().instrument_app(app)
    logger.info("telemetry_enabled", extra={"endpoint": endpoint})
    return True


@contextmanager
def trace_span(name: str, **attributes):
    """Span around a verify/repair pass; yields ``None`` without opentelemetry."""
    try:
        from opentelemetry import trace
    except ImportError:
        yield None
        return

    tracer = trace.get_tracer(_TRACER_NAME)
    with tracer.start_as_current_span(name) as span:
        for key, value in attributes.items():
            if value is not None:
                span.set_attribute(f"{_ATTRIBUTE_PREFIX}{key}", value)
        yield span
