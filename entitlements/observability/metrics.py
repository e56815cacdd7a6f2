"""
Metrics Collection with Prometheus.

Exposes reconciliation and HTTP metrics for monitoring.
"""

from prometheus_client import Counter, Gauge, Histogram, Info

from entitlements.config import settings


class MetricLabels:
    """Standard metric label names."""

    ENDPOINT = "endpoint"
    METHOD = "method"
    STATUS_CODE = "status_code"
    OPERATION = "operation"
    FLOW = "flow"
    OUTCOME = "outcome"
    STATE = "state"
    ERROR_TYPE = "error_type"


class EntitlementMetrics:
    """
    Centralized metrics for the Entitlements API.

    Covers:
    - HTTP requests (rate, duration, in progress)
    - Reconciliation flows (rate and duration by flow/outcome)
    - Derived states (distribution of canonical states written)
    - Billing provider fetches (duration, success/failure)
    - Errors by type
    """

    def __init__(self) -> None:
        """Initialize all Prometheus metrics."""

        # ====================================================================
        # Service Info
        # ====================================================================
        self.service_info = Info(
            "entitlements_service",
            "Service information",
        )
        self.service_info.info(
            {
                "version": settings.api_version,
                "service_name": settings.service_name,
            }
        )

        # ====================================================================
        # HTTP Metrics
        # ====================================================================
        self.http_requests_total = Counter(
            "entitlements_http_requests_total",
            "Total HTTP requests",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD, MetricLabels.STATUS_CODE],
        )

        self.http_request_duration_seconds = Histogram(
            "entitlements_http_request_duration_seconds",
            "HTTP request duration in seconds",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD],
            buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
        )

        self.http_requests_in_progress = Gauge(
            "entitlements_http_requests_in_progress",
            "Number of HTTP requests currently being processed",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD],
        )

        # ====================================================================
        # Reconciliation Metrics
        # ====================================================================
        self.reconciliations_total = Counter(
            "entitlement_reconciliations_total",
            "Total reconciliation flow invocations",
            [MetricLabels.FLOW, MetricLabels.OUTCOME],
        )

        self.reconciliation_duration_seconds = Histogram(
            "entitlement_reconciliation_duration_seconds",
            "Reconciliation flow duration in seconds",
            [MetricLabels.FLOW],
            buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
        )

        self.derived_states_total = Counter(
            "entitlement_derived_states_total",
            "Canonical states produced by derivation",
            [MetricLabels.STATE],
        )

        # ====================================================================
        # Billing Provider Metrics
        # ====================================================================
        self.billing_fetch_duration_seconds = Histogram(
            "entitlement_billing_fetch_duration_seconds",
            "Billing provider subscription fetch duration in seconds",
            ["success"],
            buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
        )

        # ====================================================================
        # Error Metrics
        # ====================================================================
        self.errors_total = Counter(
            "entitlement_errors_total",
            "Total errors by type",
            [MetricLabels.ERROR_TYPE, MetricLabels.OPERATION],
        )

    # ========================================================================
    # Helper Methods
    # ========================================================================

    def record_http_request(
        self, endpoint: str, method: str, status_code: int, duration: float
    ) -> None:
        """Record HTTP request metrics."""
        self.http_requests_total.labels(
            endpoint=endpoint, method=method, status_code=status_code
        ).inc()
        self.http_request_duration_seconds.labels(endpoint=endpoint, method=method).observe(
            duration
        )

    def record_reconciliation(self, flow: str, outcome: str, duration: float) -> None:
        """Record one reconciliation flow invocation."""
        self.reconciliations_total.labels(flow=flow, outcome=outcome).inc()
        self.reconciliation_duration_seconds.labels(flow=flow).observe(duration)

    def record_derived_state(self, state: str) -> None:
        """Record a derived canonical state."""
        self.derived_states_total.labels(state=state).inc()

    def record_billing_fetch(self, success: bool, duration: float) -> None:
        """Record a billing provider fetch."""
        self.billing_fetch_duration_seconds.labels(success=str(success)).observe(duration)

    def record_error(self, error_type: str, operation: str) -> None:
        """Record error occurrence."""
        self.errors_total.labels(error_type=error_type, operation=operation).inc()


# Global metrics instance
metrics = EntitlementMetrics()
