"""
OpenTelemetry and Prometheus configuration for the invoice desk.
Provides observability through distributed tracing, metrics, and structured logging.
"""

from typing import Optional

import structlog
from opentelemetry import trace, metrics
from opentelemetry.exporter.prometheus import PrometheusMetricReader
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter
from opentelemetry.sdk.resources import Resource
from prometheus_client import Counter


def configure_observability(
    service_name: str = "invoice-desk",
    environment: str = "development",
    enable_console_spans: bool = False,
) -> None:
    """
    Configure OpenTelemetry tracing and metrics.

    Metrics are exported through the default Prometheus registry, which the
    /metrics router exposes; no separate HTTP server is started.

    Args:
        service_name: Name of the service for tracing
        environment: Environment (development, staging, production)
        enable_console_spans: Print finished spans to stdout
    """
    configure_tracing(service_name, environment, enable_console_spans)
    configure_metrics()

    logger = structlog.get_logger()
    logger.info(
        "Observability configured",
        service_name=service_name,
        environment=environment,
    )


def setup_observability(enable_console_spans: bool = False):  # noqa: D401
    return configure_observability(enable_console_spans=enable_console_spans)


def configure_tracing(service_name: str, environment: str, enable_console_spans: bool) -> None:
    """Configure OpenTelemetry distributed tracing."""
    resource = Resource.create({
        "service.name": service_name,
        "service.version": "1.0.0",
        "environment": environment,
    })

    tracer_provider = TracerProvider(resource=resource)
    trace.set_tracer_provider(tracer_provider)

    if enable_console_spans:
        tracer_provider.add_span_processor(
            BatchSpanProcessor(ConsoleSpanExporter()))


def configure_metrics() -> None:
    """Configure OpenTelemetry metrics with Prometheus export."""
    meter_provider = MeterProvider(metric_readers=[PrometheusMetricReader()])
    metrics.set_meter_provider(meter_provider)


def instrument_fastapi(app) -> None:
    """Instrument FastAPI application with OpenTelemetry."""
    FastAPIInstrumentor.instrument_app(app)


def instrument_sqlalchemy(engine) -> None:
    """Instrument SQLAlchemy engine with OpenTelemetry."""
    SQLAlchemyInstrumentor().instrument(engine=engine)


def get_tracer(name: str) -> trace.Tracer:
    """Get OpenTelemetry tracer for manual instrumentation."""
    return trace.get_tracer(name)


def get_meter(name: str) -> metrics.Meter:
    """Get OpenTelemetry meter for custom metrics."""
    return metrics.get_meter(name)


# Custom context manager for tracing business operations
class trace_operation:
    """Context manager for tracing business operations with structured logging."""

    def __init__(self, operation_name: str, **attributes):
        self.operation_name = operation_name
        self.attributes = {k: str(v) for k, v in attributes.items()}
        self.tracer = get_tracer(__name__)
        self.logger = structlog.get_logger()
        self.span: Optional[trace.Span] = None

    def __enter__(self):
        self.span = self.tracer.start_span(
            self.operation_name,
            attributes=self.attributes
        )

        self.logger.debug(
            "Operation started",
            operation=self.operation_name,
            **self.attributes
        )

        return self.span

    def __exit__(self, exc_type, exc_val, exc_tb):
        if exc_type is not None:
            self.logger.warning(
                "Operation failed",
                operation=self.operation_name,
                error_type=exc_type.__name__,
                error_message=str(exc_val),
                **self.attributes
            )

            if self.span:
                self.span.record_exception(exc_val)
                self.span.set_status(trace.Status(
                    trace.StatusCode.ERROR, str(exc_val)))
        else:
            self.logger.debug(
                "Operation completed",
                operation=self.operation_name,
                **self.attributes
            )

            if self.span:
                self.span.set_status(trace.Status(trace.StatusCode.OK))

        if self.span:
            self.span.end()
        return False


class PerformanceMonitor:
    """Utility class for monitoring API performance."""

    def __init__(self):
        self.meter = get_meter(__name__)
        self.request_duration = self.meter.create_histogram(
            name="api_request_duration_ms",
            description="API request duration in milliseconds",
            unit="ms"
        )
        self.request_count = self.meter.create_counter(
            name="api_request_count",
            description="Total number of API requests"
        )
        self.error_count = self.meter.create_counter(
            name="api_error_count",
            description="Total number of unhandled API errors"
        )

    def record_request(self, endpoint: str, method: str, duration_ms: float, status_code: int):
        """Record API request metrics."""
        attributes = {
            "endpoint": endpoint,
            "method": method,
            "status_code": str(status_code)
        }

        self.request_duration.record(duration_ms, attributes)
        self.request_count.add(1, attributes)

    def record_error(self):
        self.error_count.add(1)


# Global performance monitor instance
performance_monitor = PerformanceMonitor()

_domain_meter = get_meter("invoice_desk.domain")
invoice_create_counter = _domain_meter.create_counter(
    name="invoice_create_total",
    description="Total number of invoices created"
)
invoice_update_counter = _domain_meter.create_counter(
    name="invoice_update_total",
    description="Total number of invoices updated"
)
invoice_delete_counter = _domain_meter.create_counter(
    name="invoice_delete_total",
    description="Total number of invoices deleted"
)
auth_login_counter = _domain_meter.create_counter(
    name="auth_login_total",
    description="Total number of successful logins"
)
auth_login_failed_counter = _domain_meter.create_counter(
    name="auth_login_failed_total",
    description="Total number of failed login attempts"
)

# Native Prometheus counter; deterministic regardless of the OTEL exporter setup
INVOICE_OPERATIONS = Counter(
    "invoice_operations",
    "Invoice workflow operations completed",
    ["operation"],
)


def record_invoice_operation(operation: str) -> None:
    """Increment invoice_operations_total{operation=...}."""
    INVOICE_OPERATIONS.labels(operation).inc()


__all__ = [
    "configure_observability",
    "setup_observability",
    "configure_tracing",
    "configure_metrics",
    "instrument_fastapi",
    "instrument_sqlalchemy",
    "get_tracer",
    "get_meter",
    "trace_operation",
    "PerformanceMonitor",
    "performance_monitor",
    "invoice_create_counter",
    "invoice_update_counter",
    "invoice_delete_counter",
    "auth_login_counter",
    "auth_login_failed_counter",
    "record_invoice_operation",
]
