"""
Prometheus metrics module for RidePay.

Service timings come from the @measure_operation decorator; the payment
counters below are recorded directly by the lifecycle engine and the
capture worker.
"""

from typing import Optional, cast

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

# Create a custom registry to avoid conflicts with default metrics
REGISTRY = CollectorRegistry()

service_operation_duration_seconds = Histogram(
    "ridepay_service_operation_duration_seconds",
    "Service operation duration in seconds",
    ["service", "operation"],
    registry=REGISTRY,
    buckets=(0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0),
)

service_operations_total = Counter(
    "ridepay_service_operations_total",
    "Total number of service operations",
    ["service", "operation", "status"],
    registry=REGISTRY,
)

errors_total = Counter(
    "ridepay_errors_total",
    "Total number of errors",
    ["service", "operation", "error_type"],
    registry=REGISTRY,
)

payment_transitions_total = Counter(
    "ridepay_payment_transitions_total",
    "Payment intent status transitions",
    ["from_status", "to_status"],
    registry=REGISTRY,
)

processor_errors_total = Counter(
    "ridepay_processor_errors_total",
    "Processor failures by classification",
    ["operation", "kind"],  # kind: transient | rejected | configuration
    registry=REGISTRY,
)

capture_attempts_total = Counter(
    "ridepay_capture_attempts_total",
    "Capture queue attempts by outcome",
    ["outcome"],
    registry=REGISTRY,
)

capture_batch_last_processed = Gauge(
    "ridepay_capture_batch_last_processed",
    "Entries processed by the most recent capture batch",
    registry=REGISTRY,
)


class PrometheusMetrics:
    """Manages Prometheus metrics collection and exposure."""

    @staticmethod
    def record_service_operation(
        service: str,
        operation: str,
        duration: float,
        status: str = "success",
        error_type: Optional[str] = None,
    ) -> None:
        """
        Record service operation metrics from @measure_operation decorator.

        Args:
            service: Service name (e.g., 'PaymentLifecycleService')
            operation: Operation/method name (e.g., 'capture')
            duration: Operation duration in seconds
            status: Operation status ('success' or 'error')
            error_type: Type of error if status is 'error'
        """
        service_operation_duration_seconds.labels(service=service, operation=operation).observe(
            duration
        )
        service_operations_total.labels(service=service, operation=operation, status=status).inc()
        if status == "error" and error_type:
            errors_total.labels(service=service, operation=operation, error_type=error_type).inc()

    @staticmethod
    def record_transition(from_status: str, to_status: str) -> None:
        payment_transitions_total.labels(from_status=from_status, to_status=to_status).inc()

    @staticmethod
    def record_processor_error(operation: str, kind: str) -> None:
        processor_errors_total.labels(operation=operation, kind=kind).inc()

    @staticmethod
    def record_capture_attempt(outcome: str) -> None:
        capture_attempts_total.labels(outcome=outcome).inc()

    @staticmethod
    def record_capture_batch(processed: int) -> None:
        capture_batch_last_processed.set(processed)

    @staticmethod
    def get_metrics() -> bytes:
        """Generate Prometheus metrics in exposition format."""
        return cast(bytes, generate_latest(REGISTRY))

    @staticmethod
    def get_content_type() -> str:
        """Get the content type for Prometheus metrics."""
        return cast(str, CONTENT_TYPE_LATEST)


# Global instance for easy access
prometheus_metrics = PrometheusMetrics()
