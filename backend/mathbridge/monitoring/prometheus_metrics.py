"""
Prometheus metrics for the MathBridge scheduling core.

Service timings are fed by the @measure_operation decorator; the domain
counters below are incremented by the scheduling services and the mutex.
"""

from typing import Optional, cast

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Histogram,
    generate_latest,
)

# Custom registry so repeated imports in tests never collide with the default one
REGISTRY = CollectorRegistry()

service_operation_duration_seconds = Histogram(
    "mathbridge_service_operation_duration_seconds",
    "Service operation duration in seconds",
    ["service", "operation"],
    registry=REGISTRY,
    buckets=(0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5),
)

service_operations_total = Counter(
    "mathbridge_service_operations_total",
    "Total number of service operations",
    ["service", "operation", "status"],
    registry=REGISTRY,
)

errors_total = Counter(
    "mathbridge_errors_total",
    "Total number of errors",
    ["service", "operation", "error_type"],
    registry=REGISTRY,
)

scheduling_lock_total = Counter(
    "mathbridge_scheduling_lock_total",
    "Scheduling mutex operations by outcome",
    ["action", "outcome"],
    registry=REGISTRY,
)

sessions_generated_total = Counter(
    "mathbridge_sessions_generated_total",
    "Lesson sessions created by contract expansion",
    registry=REGISTRY,
)

reschedule_decisions_total = Counter(
    "mathbridge_reschedule_decisions_total",
    "Reschedule requests processed by staff",
    ["kind", "decision"],
    registry=REGISTRY,
)


class PrometheusMetrics:
    """Thin static facade over the module-level collectors."""

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
            service: Service name (e.g., 'ContractService')
            operation: Operation/method name (e.g., 'create_contract')
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
    def record_scheduling_lock(action: str, outcome: str) -> None:
        scheduling_lock_total.labels(action=action, outcome=outcome).inc()

    @staticmethod
    def inc_sessions_generated(count: int) -> None:
        if count > 0:
            sessions_generated_total.inc(count)

    @staticmethod
    def record_reschedule_decision(kind: str, decision: str) -> None:
        reschedule_decisions_total.labels(kind=kind, decision=decision).inc()

    @staticmethod
    def get_metrics() -> bytes:
        """Metrics data in Prometheus text exposition format."""
        return cast(bytes, generate_latest(REGISTRY))

    @staticmethod
    def get_content_type() -> str:
        return cast(str, CONTENT_TYPE_LATEST)


# Singleton instance
prometheus_metrics = PrometheusMetrics()
