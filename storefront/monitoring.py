"""Monitoring and observability setup.

Instruments are created against the global OpenTelemetry API at import time.
Until ``init_telemetry`` installs real providers they are no-ops, so the
services can record metrics unconditionally (tests run with telemetry off).

Exemplars are attached automatically by the SDK to histograms recorded inside
an active span, which links ``order_amount_histogram`` and
``payment_gateway_duration_histogram`` data points to their traces.
"""
import logging
from opentelemetry import trace, metrics
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader
from opentelemetry.sdk.resources import Resource
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.exporter.otlp.proto.grpc.metric_exporter import OTLPMetricExporter

from storefront.config import SERVICE_NAME, Settings

logger = logging.getLogger(__name__)


def init_tracing(settings: Settings) -> None:
    """Initialize OpenTelemetry tracing."""
    resource = Resource.create({
        "service.name": SERVICE_NAME,
        "deployment.environment": settings.env
    })

    tracer_provider = TracerProvider(resource=resource)
    otlp_span_exporter = OTLPSpanExporter(
        endpoint=settings.otel_exporter_otlp_endpoint,
        insecure=True
    )
    tracer_provider.add_span_processor(BatchSpanProcessor(otlp_span_exporter))
    trace.set_tracer_provider(tracer_provider)

    logger.info(f"Tracing initialized with endpoint: {settings.otel_exporter_otlp_endpoint}")


def init_metrics(settings: Settings) -> None:
    """Initialize OpenTelemetry metrics."""
    resource = Resource.create({
        "service.name": SERVICE_NAME,
        "deployment.environment": settings.env
    })

    otlp_metric_exporter = OTLPMetricExporter(
        endpoint=settings.otel_exporter_otlp_endpoint,
        insecure=True
    )
    otlp_metric_reader = PeriodicExportingMetricReader(
        otlp_metric_exporter,
        export_interval_millis=5000
    )

    meter_provider = MeterProvider(
        resource=resource,
        metric_readers=[otlp_metric_reader]
    )
    metrics.set_meter_provider(meter_provider)

    logger.info("Metrics initialized with OTLP exporter")


def init_profiling(settings: Settings) -> None:
    """Initialize Pyroscope profiling."""
    try:
        import pyroscope

        pyroscope.configure(
            application_name=SERVICE_NAME,
            server_address=settings.pyroscope_server,
            tags={"env": settings.env}
        )
        logger.info(f"Profiling initialized with server: {settings.pyroscope_server}")
    except Exception as e:
        logger.warning(f"Failed to initialize profiling: {e}")


def init_telemetry(settings: Settings) -> None:
    """Install tracing, metrics and profiling as configured."""
    if settings.otel_enabled:
        init_tracing(settings)
        init_metrics(settings)
    if settings.pyroscope_enabled:
        init_profiling(settings)


meter = metrics.get_meter(__name__)

# Catalog metrics
product_views_counter = meter.create_counter(
    "storefront.products.views",
    description="Total number of product catalog listings served",
    unit="1"
)

product_detail_views_counter = meter.create_counter(
    "storefront.products.detail_views",
    description="Total number of product detail views",
    unit="1"
)

cart_additions_counter = meter.create_counter(
    "storefront.cart.additions",
    description="Total number of items added to cart",
    unit="1"
)

# Funnel stages: browse catalog -> view product -> add to cart -> order -> paid
funnel_stage_counter = meter.create_counter(
    "storefront.funnel.stage",
    description="User progression through purchase funnel stages",
    unit="1"
)

# Order metrics
orders_created_counter = meter.create_counter(
    "storefront.orders.created",
    description="Total number of orders placed",
    unit="1"
)

order_amount_histogram = meter.create_histogram(
    "storefront.orders.amount",
    description="Order total in store currency",
    unit="1"
)

orders_cancelled_counter = meter.create_counter(
    "storefront.orders.cancelled",
    description="Total number of cancelled orders (stock restored)",
    unit="1"
)

insufficient_stock_counter = meter.create_counter(
    "storefront.inventory.insufficient_stock",
    description="Total number of order attempts rejected for insufficient stock",
    unit="1"
)

# Payment metrics
payment_sessions_counter = meter.create_counter(
    "storefront.payments.sessions",
    description="Total number of hosted checkout sessions requested",
    unit="1"
)

payment_gateway_duration_histogram = meter.create_histogram(
    "storefront.payments.gateway.duration",
    description="Duration of payment processor calls",
    unit="s"
)

payment_notifications_counter = meter.create_counter(
    "storefront.payments.notifications",
    description="Total number of payment processor notifications received",
    unit="1"
)

# Security monitoring metrics
auth_failures_counter = meter.create_counter(
    "storefront.auth.failures",
    description="Total number of authentication failures",
    unit="1"
)

auth_attempts_counter = meter.create_counter(
    "storefront.auth.attempts",
    description="Total number of authentication attempts",
    unit="1"
)

rate_limit_exceeded_counter = meter.create_counter(
    "storefront.rate_limit.exceeded",
    description="Total number of rate limit violations",
    unit="1"
)

suspicious_activity_counter = meter.create_counter(
    "storefront.security.suspicious_activity",
    description="Total number of suspicious activity detections",
    unit="1"
)
