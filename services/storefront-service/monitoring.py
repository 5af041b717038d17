"""Monitoring and observability setup.

Traces and metrics are exported over OTLP when OTEL_ENABLED is set. With
export disabled the SDK providers are still installed, so instruments can be
recorded unconditionally by the rest of the service.
"""
import logging

from opentelemetry import metrics, trace
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor

from config import (
    OTEL_ENABLED,
    OTEL_EXPORTER_OTLP_ENDPOINT,
    PYROSCOPE_ENABLED,
    PYROSCOPE_SERVER,
    SERVICE_NAME,
)

logger = logging.getLogger(__name__)


def init_tracing() -> trace.Tracer:
    """
    Initialize OpenTelemetry tracing.

    Returns:
        Tracer instance
    """
    resource = Resource.create({"service.name": SERVICE_NAME})
    tracer_provider = TracerProvider(resource=resource)

    if OTEL_ENABLED:
        from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter

        otlp_span_exporter = OTLPSpanExporter(
            endpoint=OTEL_EXPORTER_OTLP_ENDPOINT,
            insecure=True
        )
        tracer_provider.add_span_processor(BatchSpanProcessor(otlp_span_exporter))
        logger.info(f"Tracing initialized with endpoint: {OTEL_EXPORTER_OTLP_ENDPOINT}")

    trace.set_tracer_provider(tracer_provider)
    return trace.get_tracer(__name__)


def init_metrics() -> metrics.Meter:
    """
    Initialize OpenTelemetry metrics.

    Returns:
        Meter instance
    """
    resource = Resource.create({"service.name": SERVICE_NAME})
    metric_readers = []

    if OTEL_ENABLED:
        from opentelemetry.exporter.otlp.proto.grpc.metric_exporter import OTLPMetricExporter

        otlp_metric_exporter = OTLPMetricExporter(
            endpoint=OTEL_EXPORTER_OTLP_ENDPOINT,
            insecure=True
        )
        metric_readers.append(PeriodicExportingMetricReader(
            otlp_metric_exporter,
            export_interval_millis=5000
        ))
        logger.info("Metrics initialized with OTLP exporter")

    meter_provider = MeterProvider(resource=resource, metric_readers=metric_readers)
    metrics.set_meter_provider(meter_provider)
    return metrics.get_meter(__name__)


def init_profiling() -> None:
    """Initialize Pyroscope profiling."""
    if not PYROSCOPE_ENABLED:
        return
    try:
        import pyroscope

        pyroscope.configure(
            application_name=SERVICE_NAME,
            server_address=PYROSCOPE_SERVER,
            tags={"service": SERVICE_NAME}
        )
        logger.info(f"Profiling initialized with server: {PYROSCOPE_SERVER}")
    except Exception as e:
        logger.warning(f"Failed to initialize profiling: {e}")


# Initialize tracer and meter
tracer = init_tracing()
meter = init_metrics()

# Catalog metrics
product_views_counter = meter.create_counter(
    "storefront.products.views",
    description="Product detail views",
    unit="1"
)

cart_additions_counter = meter.create_counter(
    "storefront.cart.additions",
    description="Items added to carts",
    unit="1"
)

# Order workflow metrics
orders_created_counter = meter.create_counter(
    "storefront.orders.created",
    description="Orders placed, by payment method",
    unit="1"
)

order_failures_counter = meter.create_counter(
    "storefront.orders.failures",
    description="Rejected or failed order creations, by reason",
    unit="1"
)

order_amount_histogram = meter.create_histogram(
    "storefront.orders.amount",
    description="Order total",
    unit="USD"
)

orders_cancelled_counter = meter.create_counter(
    "storefront.orders.cancelled",
    description="Cancelled orders",
    unit="1"
)

refunds_counter = meter.create_counter(
    "storefront.orders.refunds",
    description="Refunds recorded",
    unit="1"
)

coupon_redemptions_counter = meter.create_counter(
    "storefront.coupons.redemptions",
    description="Coupon redemptions at checkout",
    unit="1"
)

coupon_rejections_counter = meter.create_counter(
    "storefront.coupons.rejections",
    description="Coupon validations that failed, by reason",
    unit="1"
)

# External provider metrics
payment_gateway_duration_histogram = meter.create_histogram(
    "storefront.payment.gateway.duration",
    description="Duration of payment provider calls",
    unit="s"
)

emails_sent_counter = meter.create_counter(
    "storefront.emails.sent",
    description="Emails handed to the provider, by kind and outcome",
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
