"""
Prometheus metrics for the tutoring booking core.

Service timings are fed by ``BaseService.measure_operation``; the domain
counters are incremented by the ledger, the waitlist queue and the
availability validator.
"""

from threading import Lock
from typing import Optional, cast

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Histogram,
    generate_latest,
)

from ..core.config import settings

# Custom registry to avoid conflicts with default process metrics
REGISTRY = CollectorRegistry()

_PREFIX = settings.metrics_prefix

service_operation_duration_seconds = Histogram(
    f"{_PREFIX}_service_operation_duration_seconds",
    "Service operation duration in seconds",
    ["service", "operation"],
    registry=REGISTRY,
    buckets=(0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5),
)

service_operations_total = Counter(
    f"{_PREFIX}_service_operations_total",
    "Total number of service operations",
    ["service", "operation", "status"],
    registry=REGISTRY,
)

errors_total = Counter(
    f"{_PREFIX}_errors_total",
    "Total number of errors",
    ["service", "operation", "error_type"],
    registry=REGISTRY,
)

credits_debited_total = Counter(
    f"{_PREFIX}_credits_debited_total",
    "Package credits consumed by bookings",
    ["service_type"],
    registry=REGISTRY,
)

credit_debits_rejected_total = Counter(
    f"{_PREFIX}_credit_debits_rejected_total",
    "Package debit attempts rejected after taking the package lock",
    ["reason"],
    registry=REGISTRY,
)

waitlist_transitions_total = Counter(
    f"{_PREFIX}_waitlist_transitions_total",
    "Waitlist entry transitions",
    ["transition"],
    registry=REGISTRY,
)

availability_rejections_total = Counter(
    f"{_PREFIX}_availability_rejections_total",
    "Availability validations that failed, by first failing predicate",
    ["reason"],
    registry=REGISTRY,
)


class PrometheusMetrics:
    """Manages Prometheus metrics collection and exposure."""

    _cache_lock: Lock = Lock()
    _cache_payload: Optional[bytes] = None

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
            service: Service name (e.g., 'PackageService')
            operation: Operation/method name (e.g., 'use_package_for_session')
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
        PrometheusMetrics._invalidate_cache()

    # Domain helpers
    @staticmethod
    def inc_credits_debited(service_type: str, credits: int) -> None:
        credits_debited_total.labels(service_type=service_type).inc(credits)
        PrometheusMetrics._invalidate_cache()

    @staticmethod
    def inc_credit_debit_rejected(reason: str) -> None:
        credit_debits_rejected_total.labels(reason=reason).inc()
        PrometheusMetrics._invalidate_cache()

    @staticmethod
    def inc_waitlist_transition(transition: str) -> None:
        waitlist_transitions_total.labels(transition=transition).inc()
        PrometheusMetrics._invalidate_cache()

    @staticmethod
    def inc_availability_rejection(reason: str) -> None:
        availability_rejections_total.labels(reason=reason).inc()
        PrometheusMetrics._invalidate_cache()

    @staticmethod
    def get_metrics() -> bytes:
        """Metrics in Prometheus text exposition format."""
        with PrometheusMetrics._cache_lock:
            if PrometheusMetrics._cache_payload is None:
                PrometheusMetrics._cache_payload = cast(bytes, generate_latest(REGISTRY))
            return PrometheusMetrics._cache_payload

    @staticmethod
    def get_content_type() -> str:
        """Get the content type for Prometheus metrics."""
        return cast(str, CONTENT_TYPE_LATEST)

    @staticmethod
    def _invalidate_cache() -> None:
        with PrometheusMetrics._cache_lock:
            PrometheusMetrics._cache_payload = None


# Singleton instance
prometheus_metrics = PrometheusMetrics()
