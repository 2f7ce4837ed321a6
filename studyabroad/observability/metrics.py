"""
Metrics Collection with Prometheus.

Exposes business and system metrics for monitoring.
"""

import time
from enum import Enum

from prometheus_client import Counter, Gauge, Histogram, Info

from studyabroad.config import settings


class MetricLabels(str, Enum):
    """Standard metric label names."""

    ENDPOINT = "endpoint"
    METHOD = "method"
    STATUS_CODE = "status_code"
    OPERATION = "operation"
    OUTCOME = "outcome"
    SERVICE_TYPE = "service_type"
    EVENT_TYPE = "event_type"
    ERROR_TYPE = "error_type"


class PlatformMetrics:
    """
    Centralized metrics for the platform API.

    Covers:
    - HTTP requests (rate, duration, in flight)
    - Logins and device sessions
    - Checkout sessions and webhook reconciliation
    - Email delivery and admin OTP
    - Database operations
    """

    def __init__(self) -> None:
        # ====================================================================
        # Service Info
        # ====================================================================
        self.service_info = Info("studyabroad_service", "Service information")
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
            "studyabroad_http_requests_total",
            "Total HTTP requests",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD, MetricLabels.STATUS_CODE],
        )

        self.http_request_duration_seconds = Histogram(
            "studyabroad_http_request_duration_seconds",
            "HTTP request duration in seconds",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD],
            buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
        )

        self.http_requests_in_progress = Gauge(
            "studyabroad_http_requests_in_progress",
            "Number of HTTP requests currently being processed",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD],
        )

        # ====================================================================
        # Auth Metrics
        # ====================================================================
        self.logins_total = Counter(
            "studyabroad_logins_total",
            "Login attempts by outcome",
            [MetricLabels.OUTCOME],
        )

        self.sessions_terminated_total = Counter(
            "studyabroad_sessions_terminated_total",
            "Device sessions closed, by reason",
            ["reason"],
        )

        self.admin_otp_requests_total = Counter(
            "studyabroad_admin_otp_requests_total",
            "Admin OTP requests and verifications by outcome",
            [MetricLabels.OPERATION, MetricLabels.OUTCOME],
        )

        # ====================================================================
        # Payment Metrics
        # ====================================================================
        self.checkout_sessions_total = Counter(
            "studyabroad_checkout_sessions_total",
            "Checkout sessions created",
            [MetricLabels.SERVICE_TYPE, MetricLabels.OUTCOME],
        )

        self.checkout_duration_seconds = Histogram(
            "studyabroad_checkout_duration_seconds",
            "Checkout creation duration in seconds (includes gateway call)",
            buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
        )

        self.webhook_events_total = Counter(
            "studyabroad_webhook_events_total",
            "Payment webhook events processed",
            [MetricLabels.EVENT_TYPE, MetricLabels.OUTCOME],
        )

        # ====================================================================
        # Email Metrics
        # ====================================================================
        self.emails_total = Counter(
            "studyabroad_emails_total",
            "Emails sent by kind and outcome",
            ["kind", MetricLabels.OUTCOME],
        )

        # ====================================================================
        # Database Metrics
        # ====================================================================
        self.db_queries_total = Counter(
            "studyabroad_db_queries_total",
            "Total database operations",
            [MetricLabels.OPERATION, "success"],
        )

        self.db_query_duration_seconds = Histogram(
            "studyabroad_db_query_duration_seconds",
            "Database operation duration in seconds",
            [MetricLabels.OPERATION],
            buckets=(0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0),
        )

        # ====================================================================
        # Error Metrics
        # ====================================================================
        self.errors_total = Counter(
            "studyabroad_errors_total",
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

    def record_login(self, outcome: str) -> None:
        self.logins_total.labels(outcome=outcome).inc()

    def record_session_terminated(self, reason: str, count: int = 1) -> None:
        if count > 0:
            self.sessions_terminated_total.labels(reason=reason).inc(count)

    def record_otp(self, operation: str, outcome: str) -> None:
        self.admin_otp_requests_total.labels(operation=operation, outcome=outcome).inc()

    def record_checkout(self, service_type: str, outcome: str, duration: float) -> None:
        """Record checkout session creation metrics."""
        self.checkout_sessions_total.labels(service_type=service_type, outcome=outcome).inc()
        self.checkout_duration_seconds.observe(duration)

    def record_webhook_event(self, event_type: str, outcome: str) -> None:
        self.webhook_events_total.labels(event_type=event_type, outcome=outcome).inc()

    def record_email(self, kind: str, success: bool) -> None:
        self.emails_total.labels(kind=kind, outcome="sent" if success else "failed").inc()

    def record_db_query(self, operation: str, success: bool, duration: float) -> None:
        """Record database query metrics."""
        self.db_queries_total.labels(operation=operation, success=str(success)).inc()
        self.db_query_duration_seconds.labels(operation=operation).observe(duration)

    def record_error(self, error_type: str, operation: str) -> None:
        """Record error occurrence."""
        self.errors_total.labels(error_type=error_type, operation=operation).inc()


# Global metrics instance
metrics = PlatformMetrics()


class track_duration:
    """
    Context manager measuring wall-clock duration of a block.

    Usage:
        with track_duration() as timer:
            ...
        metrics.record_checkout("visa_application", "created", timer.duration)
    """

    def __init__(self) -> None:
        self.start_time: float = 0.0
        self.duration: float = 0.0

    def __enter__(self) -> "track_duration":
        self.start_time = time.perf_counter()
        return self

    def __exit__(self, exc_type: type, exc_val: Exception, exc_tb: object) -> None:
        self.duration = time.perf_counter() - self.start_time

    def elapsed(self) -> float:
        """Seconds since entering the block (usable before exit)."""
        return time.perf_counter() - self.start_time
