"""
Metrics Collection with Prometheus.

Exposes business and system metrics for monitoring.
"""

from enum import Enum

from prometheus_client import Counter, Gauge, Histogram, Info

from backoffice.config import settings


class MetricLabels(str, Enum):
    """Standard metric label names."""

    ENDPOINT = "endpoint"
    METHOD = "method"
    STATUS_CODE = "status_code"
    OPERATION = "operation"
    ERROR_TYPE = "error_type"
    TEMPLATE = "template"


class BackofficeMetrics:
    """
    Centralized metrics for the back-office API.

    Covers:
    - HTTP requests (rate, duration, errors)
    - Invoice status transitions
    - Email dispatch (per template, success/failure)
    - Pending payment completions
    - Audit log write failures
    """

    def __init__(self) -> None:
        self.service_info = Info(
            "backoffice_service",
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
            "backoffice_http_requests_total",
            "Total HTTP requests",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD, MetricLabels.STATUS_CODE],
        )

        self.http_request_duration_seconds = Histogram(
            "backoffice_http_request_duration_seconds",
            "HTTP request duration in seconds",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD],
            buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
        )

        self.http_requests_in_progress = Gauge(
            "backoffice_http_requests_in_progress",
            "Number of HTTP requests currently being processed",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD],
        )

        # ====================================================================
        # Business Metrics
        # ====================================================================
        self.invoice_transitions_total = Counter(
            "backoffice_invoice_transitions_total",
            "Invoice status transitions",
            ["from_status", "to_status"],
        )

        self.invoices_created_total = Counter(
            "backoffice_invoices_created_total",
            "Total invoices created",
        )

        self.emails_total = Counter(
            "backoffice_emails_total",
            "Transactional emails dispatched",
            [MetricLabels.TEMPLATE, "success"],
        )

        self.pending_payments_completed_total = Counter(
            "backoffice_pending_payments_completed_total",
            "Pending payments marked completed",
            ["source"],
        )

        self.audit_write_failures_total = Counter(
            "backoffice_audit_write_failures_total",
            "Audit log entries that could not be written",
        )

        # ====================================================================
        # Error Metrics
        # ====================================================================
        self.errors_total = Counter(
            "backoffice_errors_total",
            "Total errors by type",
            [MetricLabels.ERROR_TYPE, MetricLabels.OPERATION],
        )

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

    def record_invoice_transition(self, from_status: str, to_status: str) -> None:
        self.invoice_transitions_total.labels(from_status=from_status, to_status=to_status).inc()

    def record_email(self, template: str, success: bool) -> None:
        self.emails_total.labels(template=template, success=str(success)).inc()

    def record_payment_completed(self, source: str) -> None:
        self.pending_payments_completed_total.labels(source=source).inc()

    def record_error(self, error_type: str, operation: str) -> None:
        """Record error occurrence."""
        self.errors_total.labels(error_type=error_type, operation=operation).inc()


# Global metrics instance
metrics = BackofficeMetrics()
