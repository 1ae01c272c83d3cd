"""OpenTelemetry configuration and instrumentation for the operator."""

import logging
from typing import Optional

from opentelemetry import metrics, trace
from opentelemetry.exporter.otlp.proto.grpc.metric_exporter import OTLPMetricExporter
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor

logger = logging.getLogger(__name__)


def setup_opentelemetry(
    service_name: str = "pghero-operator",
    otlp_endpoint: Optional[str] = None,
) -> tuple[trace.Tracer, metrics.Meter]:
    """Set up OpenTelemetry instrumentation.

    Args:
        service_name: Name of the service for telemetry
        otlp_endpoint: OTLP collector endpoint (if None, telemetry is disabled)

    Returns:
        Tuple of (tracer, meter) for creating spans and metrics
    """
    if not otlp_endpoint:
        logger.info("OTLP endpoint not configured, telemetry disabled")
        return trace.get_tracer(__name__), metrics.get_meter(__name__)

    resource = Resource.create({
        "service.name": service_name,
        "service.version": "0.1.0",
    })

    trace_provider = TracerProvider(resource=resource)
    trace_exporter = OTLPSpanExporter(endpoint=otlp_endpoint, insecure=True)
    trace_provider.add_span_processor(BatchSpanProcessor(trace_exporter))
    trace.set_tracer_provider(trace_provider)

    metric_reader = PeriodicExportingMetricReader(
        OTLPMetricExporter(endpoint=otlp_endpoint, insecure=True),
        export_interval_millis=10000,
    )
    meter_provider = MeterProvider(
        resource=resource,
        metric_readers=[metric_reader],
    )
    metrics.set_meter_provider(meter_provider)

    logger.info(f"OpenTelemetry configured with endpoint: {otlp_endpoint}")

    return trace.get_tracer(__name__), metrics.get_meter(__name__)


def create_operator_metrics(meter: metrics.Meter) -> dict[str, metrics.Instrument]:
    """Create custom metrics for the operator.

    Args:
        meter: OpenTelemetry meter instance

    Returns:
        Dictionary of metric instruments
    """
    return {
        "reconciles": meter.create_counter(
            name="pghero_reconcile_total",
            description="Total number of Database reconciles, by resulting phase",
            unit="1",
        ),
        "reconcile_duration": meter.create_histogram(
            name="pghero_reconcile_duration_seconds",
            description="Duration of a single Database reconcile",
            unit="s",
        ),
        "configmap_conflicts": meter.create_counter(
            name="pghero_configmap_conflicts_total",
            description="Version conflicts while writing the aggregated ConfigMap",
            unit="1",
        ),
        "extensions_installed": meter.create_counter(
            name="pghero_extensions_installed_total",
            description="Extensions created by the operator",
            unit="1",
        ),
        "grant_failures": meter.create_counter(
            name="pghero_grant_failures_total",
            description="Failed monitoring grants after superuser extension creation",
            unit="1",
        ),
    }
