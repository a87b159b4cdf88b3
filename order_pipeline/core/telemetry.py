# order_pipeline/core/telemetry.py
import atexit
import logging
import socket
from typing import Optional

from opentelemetry import metrics, propagate, trace
from opentelemetry.trace.propagation.tracecontext import TraceContextTextMapPropagator

from order_pipeline.config.settings import Settings

logger = logging.getLogger(__name__)

_TRACER_PROVIDER = None
_METER_PROVIDER = None


def _grpc_endpoint(endpoint: str) -> str:
    # gRPC exporters want host:port without a scheme
    for scheme in ("http://", "https://"):
        if endpoint.startswith(scheme):
            return endpoint[len(scheme):]
    return endpoint


def initialize_telemetry(settings: Settings, component: str):
    """Install tracer/meter providers and library instrumentation. No-op when OTEL_ENABLED is false."""
    global _TRACER_PROVIDER, _METER_PROVIDER

    propagate.set_global_textmap(TraceContextTextMapPropagator())

    if not settings.OTEL_ENABLED:
        logger.info("OpenTelemetry disabled", extra={"component": component})
        return
    if _TRACER_PROVIDER is not None:
        logger.warning("Telemetry already initialized, skipping", extra={"component": component})
        return

    from opentelemetry.exporter.otlp.proto.grpc.metric_exporter import OTLPMetricExporter
    from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
    from opentelemetry.instrumentation.botocore import BotocoreInstrumentor
    from opentelemetry.instrumentation.logging import LoggingInstrumentor
    from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor
    from opentelemetry.sdk.metrics import MeterProvider
    from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader
    from opentelemetry.sdk.resources import Resource
    from opentelemetry.sdk.trace import TracerProvider
    from opentelemetry.sdk.trace.export import BatchSpanProcessor
    from opentelemetry.sdk.trace.sampling import ParentBased, TraceIdRatioBased

    service_name = f"{settings.OTEL_SERVICE_NAME}-{component}"
    endpoint = _grpc_endpoint(settings.OTEL_EXPORTER_OTLP_ENDPOINT)
    resource = Resource.create({
        "service.name": service_name,
        "deployment.environment": settings.ENVIRONMENT,
        "host.name": socket.gethostname(),
    })

    tracer_provider = TracerProvider(
        resource=resource,
        sampler=ParentBased(TraceIdRatioBased(settings.OTEL_TRACE_SAMPLE_RATIO)),
    )
    tracer_provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=endpoint, insecure=True)))
    trace.set_tracer_provider(tracer_provider)

    meter_provider = MeterProvider(
        resource=resource,
        metric_readers=[PeriodicExportingMetricReader(OTLPMetricExporter(endpoint=endpoint, insecure=True))],
    )
    metrics.set_meter_provider(meter_provider)

    LoggingInstrumentor().instrument(tracer_provider=tracer_provider, set_logging_format=False)
    SQLAlchemyInstrumentor().instrument(tracer_provider=tracer_provider)
    BotocoreInstrumentor().instrument(tracer_provider=tracer_provider)

    _TRACER_PROVIDER = tracer_provider
    _METER_PROVIDER = meter_provider
    atexit.register(shutdown_telemetry)
    logger.info(
        "OpenTelemetry initialized",
        extra={"service_name": service_name, "otlp_endpoint": endpoint, "sample_ratio": settings.OTEL_TRACE_SAMPLE_RATIO},
    )


def instrument_fastapi_app(app, settings: Settings):
    if not settings.OTEL_ENABLED or _TRACER_PROVIDER is None:
        return
    from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor

    try:
        FastAPIInstrumentor.instrument_app(app, tracer_provider=_TRACER_PROVIDER, excluded_urls="health")
        logger.info("FastAPI application instrumented", extra={"app_title": app.title})
    except Exception as e:
        logger.error("Failed to instrument FastAPI app", extra={"error": str(e)}, exc_info=True)


def shutdown_telemetry():
    global _TRACER_PROVIDER, _METER_PROVIDER
    for provider in (_TRACER_PROVIDER, _METER_PROVIDER):
        if provider is None:
            continue
        try:
            provider.shutdown()
        except Exception as e:
            logger.warning("Error shutting down telemetry provider", extra={"error": str(e)})
    _TRACER_PROVIDER = None
    _METER_PROVIDER = None


def inject_trace_attributes(attributes: Optional[dict] = None) -> dict:
    """Add W3C trace context of the current span as SQS message attributes."""
    attributes = attributes if attributes is not None else {}
    carrier = {}
    propagate.inject(carrier)
    if carrier.get("traceparent"):
        attributes["Traceparent"] = {"DataType": "String", "StringValue": carrier["traceparent"]}
    if carrier.get("tracestate"):
        attributes["Tracestate"] = {"DataType": "String", "StringValue": carrier["tracestate"]}
    return attributes


def extract_trace_context(message_attributes: Optional[dict]):
    """Rebuild the producer's context from SQS message attributes."""
    carrier = {}
    for key, value in (message_attributes or {}).items():
        if key.lower() in ("traceparent", "tracestate") and value.get("StringValue"):
            carrier[key.lower()] = value["StringValue"]
    return propagate.extract(carrier)
