"""Observability setup for OpenTelemetry, metrics, and structured logging."""

import logging

import structlog
from opentelemetry import metrics, trace
from opentelemetry.exporter.otlp.proto.grpc.metric_exporter import OTLPMetricExporter
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, generate_latest

from .config import settings

SERVICE_NAME = "venue-reservations-api"

# Prometheus metrics
REGISTRY = CollectorRegistry()

# Request metrics
REQUEST_COUNT = Counter(
    'http_requests_total',
    'Total HTTP requests',
    ['method', 'endpoint', 'status_code'],
    registry=REGISTRY
)

REQUEST_DURATION = Histogram(
    'http_request_duration_seconds',
    'HTTP request duration in seconds',
    ['method', 'endpoint'],
    registry=REGISTRY
)

# Availability metrics
AVAILABILITY_CHECKS = Counter(
    'availability_checks_total',
    'Availability checks by outcome',
    ['kind', 'result'],
    registry=REGISTRY
)

# Hold metrics
HOLDS_ACQUIRED = Counter(
    'holds_acquired_total',
    'Holds acquired or extended',
    ['kind'],
    registry=REGISTRY
)

HOLD_CONFLICTS = Counter(
    'hold_conflicts_total',
    'Hold acquisitions rejected because another requester holds the resource',
    ['kind'],
    registry=REGISTRY
)

HOLDS_RELEASED = Counter(
    'holds_released_total',
    'Holds released before expiry',
    ['reason'],
    registry=REGISTRY
)

HOLDS_EXPIRED = Counter(
    'holds_expired_total',
    'Holds cleared by the expiry pass',
    registry=REGISTRY
)

ACTIVE_HOLDS = Gauge(
    'holds_active',
    'Active holds after the last expiry pass',
    registry=REGISTRY
)

# Booking metrics
BOOKINGS_FINALIZED = Counter(
    'bookings_finalized_total',
    'Payment callbacks processed by outcome',
    ['outcome'],
    registry=REGISTRY
)

INVOICES_EXPIRED = Counter(
    'invoices_expired_total',
    'Pending invoices failed by the expiry pass after their due time',
    registry=REGISTRY
)

# Scheduler metrics
SCHEDULER_PASS_DURATION = Histogram(
    'scheduler_pass_duration_seconds',
    'Duration of reconciliation passes',
    ['pass_name'],
    registry=REGISTRY
)

TRANSACTION_RETRIES = Counter(
    'transaction_retries_total',
    'Transactions retried after a transient write conflict',
    ['operation'],
    registry=REGISTRY
)

SCHEDULER_PASS_FAILURES = Counter(
    'scheduler_pass_failures_total',
    'Reconciliation passes that gave up until the next run',
    ['pass_name'],
    registry=REGISTRY
)

RESOURCE_STATUS_CHANGES = Counter(
    'resource_status_changes_total',
    'Resource status flags flipped by the scheduler',
    ['kind', 'change'],
    registry=REGISTRY
)


def add_trace_context(logger, method_name, event_dict):
    """Add trace context to log events."""
    span = trace.get_current_span()
    if span and span.is_recording():
        ctx = span.get_span_context()
        event_dict['trace_id'] = format(ctx.trace_id, '032x')
        event_dict['span_id'] = format(ctx.span_id, '016x')
    return event_dict


def setup_structured_logging():
    """
    Configure structlog and route stdlib logging through it.

    Services log with the stdlib `logging` module and pass structured fields
    through `extra`; the formatter below folds those fields into the event.
    """
    shared_processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        add_trace_context,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
    ]

    renderer = structlog.dev.ConsoleRenderer() if settings.debug else structlog.processors.JSONRenderer()

    structlog.configure(
        processors=shared_processors + [
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors + [structlog.stdlib.ExtraAdder()],
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.processors.format_exc_info,
            renderer,
        ],
    )

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers = [handler]
    root_logger.setLevel(getattr(logging, settings.log_level))


def _service_resource() -> Resource:
    return Resource.create({
        "service.name": SERVICE_NAME,
        "service.version": "1.0.0",
        "environment": settings.environment,
    })


def setup_tracing(app_name: str = SERVICE_NAME):
    """Setup OpenTelemetry tracing."""
    provider = TracerProvider(resource=_service_resource())
    trace.set_tracer_provider(provider)

    if settings.otlp_endpoint:
        otlp_exporter = OTLPSpanExporter(endpoint=settings.otlp_endpoint)
        provider.add_span_processor(BatchSpanProcessor(otlp_exporter))

    return trace.get_tracer(app_name)


def setup_metrics(app_name: str = SERVICE_NAME):
    """Setup OpenTelemetry metrics."""
    if settings.otlp_endpoint:
        otlp_exporter = OTLPMetricExporter(endpoint=settings.otlp_endpoint)
        reader = PeriodicExportingMetricReader(exporter=otlp_exporter, export_interval_millis=60000)
        metrics.set_meter_provider(MeterProvider(resource=_service_resource(), metric_readers=[reader]))

    return metrics.get_meter(app_name)


def instrument_fastapi(app):
    """Instrument FastAPI with OpenTelemetry."""
    FastAPIInstrumentor.instrument_app(app)


def instrument_sqlalchemy(engine):
    """Instrument SQLAlchemy with OpenTelemetry."""
    SQLAlchemyInstrumentor().instrument(engine=engine.sync_engine)


class MetricsCollector:
    """Collector for business metrics."""

    @staticmethod
    def record_request(method: str, endpoint: str, status_code: int, duration: float):
        """Record an HTTP request."""
        REQUEST_COUNT.labels(method=method, endpoint=endpoint, status_code=str(status_code)).inc()
        REQUEST_DURATION.labels(method=method, endpoint=endpoint).observe(duration)

    @staticmethod
    def record_availability_check(kind: str, result: str):
        """Record an availability check outcome (AVAILABLE or a conflict reason)."""
        AVAILABILITY_CHECKS.labels(kind=kind, result=result).inc()

    @staticmethod
    def record_hold_acquired(kind: str):
        HOLDS_ACQUIRED.labels(kind=kind).inc()

    @staticmethod
    def record_hold_conflict(kind: str):
        HOLD_CONFLICTS.labels(kind=kind).inc()

    @staticmethod
    def record_hold_released(reason: str):
        HOLDS_RELEASED.labels(reason=reason).inc()

    @staticmethod
    def record_holds_expired(count: int):
        HOLDS_EXPIRED.inc(count)

    @staticmethod
    def set_active_holds(count: int):
        ACTIVE_HOLDS.set(count)

    @staticmethod
    def record_booking_finalized(outcome: str):
        BOOKINGS_FINALIZED.labels(outcome=outcome).inc()

    @staticmethod
    def record_invoices_expired(count: int):
        INVOICES_EXPIRED.inc(count)

    @staticmethod
    def observe_pass_duration(pass_name: str, seconds: float):
        SCHEDULER_PASS_DURATION.labels(pass_name=pass_name).observe(seconds)

    @staticmethod
    def record_transaction_retry(operation: str):
        TRANSACTION_RETRIES.labels(operation=operation).inc()

    @staticmethod
    def record_pass_failure(pass_name: str):
        SCHEDULER_PASS_FAILURES.labels(pass_name=pass_name).inc()

    @staticmethod
    def record_status_change(kind: str, change: str, count: int):
        RESOURCE_STATUS_CHANGES.labels(kind=kind, change=change).inc(count)


def get_prometheus_metrics():
    """Get Prometheus metrics for the /metrics endpoint."""
    return generate_latest(REGISTRY)


# Global metrics collector instance
metrics_collector = MetricsCollector()
