"""
Metrics Collection with Prometheus.

Exposes credit economy and attempt lifecycle metrics for monitoring.
"""

import time
from enum import Enum

from prometheus_client import Counter, Gauge, Histogram, Info

from ielts_lover.config import settings


class MetricLabels(str, Enum):
    """Standard metric label names."""

    ENDPOINT = "endpoint"
    METHOD = "method"
    STATUS_CODE = "status_code"
    OPERATION = "operation"
    FEATURE_KEY = "feature_key"
    OUTCOME = "outcome"
    TRANSACTION_TYPE = "transaction_type"
    ERROR_TYPE = "error_type"


class CreditMetrics:
    """
    Centralized metrics for the credits API.

    Covers:
    - HTTP requests (rate, duration, errors)
    - Charges (rate, amount, outcome per feature)
    - Credit additions and refunds
    - Attempt evaluations (outcome, AI token usage)
    """

    def __init__(self) -> None:
        """Initialize all Prometheus metrics."""

        # ====================================================================
        # Service Info
        # ====================================================================
        self.service_info = Info(
            "credits_service",
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
            "credits_http_requests_total",
            "Total HTTP requests",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD, MetricLabels.STATUS_CODE],
        )

        self.http_request_duration_seconds = Histogram(
            "credits_http_request_duration_seconds",
            "HTTP request duration in seconds",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD],
            buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
        )

        self.http_requests_in_progress = Gauge(
            "credits_http_requests_in_progress",
            "Number of HTTP requests currently being processed",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD],
        )

        # ====================================================================
        # Charge Metrics
        # ====================================================================
        self.charges_total = Counter(
            "credits_charges_total",
            "Billing attempts by feature and outcome",
            [MetricLabels.FEATURE_KEY, MetricLabels.OUTCOME],
        )

        self.charge_amount = Histogram(
            "credits_charge_amount",
            "Charged credit amounts",
            buckets=(0, 1, 2, 5, 10, 20, 50, 100),
        )

        # ====================================================================
        # Credit Addition Metrics
        # ====================================================================
        self.credits_added_total = Counter(
            "credits_added_total",
            "Total credits added to users",
            [MetricLabels.TRANSACTION_TYPE],
        )

        self.refunds_total = Counter(
            "credits_refunds_total",
            "Compensating refunds issued",
            ["reason"],
        )

        # ====================================================================
        # Attempt Metrics
        # ====================================================================
        self.evaluations_total = Counter(
            "credits_evaluations_total",
            "Attempt evaluations by outcome",
            [MetricLabels.OUTCOME],
        )

        self.ai_tokens_total = Counter(
            "credits_ai_tokens_total",
            "AI tokens consumed",
            [MetricLabels.OPERATION, "direction"],
        )

        # ====================================================================
        # Error Metrics
        # ====================================================================
        self.errors_total = Counter(
            "credits_errors_total",
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

    def record_charge(self, feature_key: str, outcome: str, amount: int = 0) -> None:
        """Record a billing attempt."""
        self.charges_total.labels(feature_key=feature_key, outcome=outcome).inc()
        if outcome == "success":
            self.charge_amount.observe(amount)

    def record_credit_addition(self, transaction_type: str, amount: int) -> None:
        """Record credits added."""
        self.credits_added_total.labels(transaction_type=transaction_type).inc(amount)

    def record_refund(self, reason: str) -> None:
        """Record a compensating refund."""
        self.refunds_total.labels(reason=reason).inc()

    def record_evaluation(self, outcome: str) -> None:
        """Record an evaluation outcome."""
        self.evaluations_total.labels(outcome=outcome).inc()

    def record_ai_usage(self, operation: str, input_tokens: int, output_tokens: int) -> None:
        """Record AI token consumption."""
        self.ai_tokens_total.labels(operation=operation, direction="input").inc(input_tokens)
        self.ai_tokens_total.labels(operation=operation, direction="output").inc(output_tokens)

    def record_error(self, error_type: str, operation: str) -> None:
        """Record error occurrence."""
        self.errors_total.labels(error_type=error_type, operation=operation).inc()


# Global metrics instance
metrics = CreditMetrics()


class track_http_request:
    """
    Context manager for tracking HTTP requests.

    Usage:
        with track_http_request("/v1/attempts", "POST") as tracker:
            # ... process request
            tracker.set_status_code(201)
    """

    def __init__(self, endpoint: str, method: str) -> None:
        self.endpoint = endpoint
        self.method = method
        self.status_code = 200
        self.start_time: float = 0.0

    def set_status_code(self, status_code: int) -> None:
        """Set the response status code."""
        self.status_code = status_code

    def __enter__(self) -> "track_http_request":
        """Start tracking."""
        self.start_time = time.time()
        metrics.http_requests_in_progress.labels(
            endpoint=self.endpoint, method=self.method
        ).inc()
        return self

    def __exit__(self, exc_type: type, exc_val: Exception, exc_tb: object) -> None:
        """Record metrics."""
        duration = time.time() - self.start_time
        if exc_type is not None:
            self.status_code = 500
        metrics.record_http_request(self.endpoint, self.method, self.status_code, duration)
        metrics.http_requests_in_progress.labels(
            endpoint=self.endpoint, method=self.method
        ).dec()
