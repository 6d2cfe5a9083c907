"""
Metrics Collection with Prometheus.

Exposes messaging, chat request and credit metrics for monitoring.
"""

from enum import Enum

from prometheus_client import Counter, Gauge, Histogram, Info

from app.config import settings


class MetricLabels(str, Enum):
    """Standard metric label names."""

    ENDPOINT = "endpoint"
    METHOD = "method"
    STATUS_CODE = "status_code"
    OPERATION = "operation"
    MESSAGE_TYPE = "message_type"
    TRANSACTION_TYPE = "transaction_type"
    ERROR_TYPE = "error_type"


class ChatMetrics:
    """
    Centralized metrics for the messaging API.

    Covers:
    - HTTP requests (rate, duration, in progress)
    - Messages and chat request outcomes
    - Block/unblock actions
    - Ledger activity and VIP recalculations
    - Notification dispatch
    """

    def __init__(self) -> None:
        """Initialize all Prometheus metrics."""

        # ====================================================================
        # Service Info
        # ====================================================================
        self.service_info = Info(
            "chat_service",
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
            "chat_http_requests_total",
            "Total HTTP requests",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD, MetricLabels.STATUS_CODE],
        )

        self.http_request_duration_seconds = Histogram(
            "chat_http_request_duration_seconds",
            "HTTP request duration in seconds",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD],
            buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
        )

        self.http_requests_in_progress = Gauge(
            "chat_http_requests_in_progress",
            "Number of HTTP requests currently being processed",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD],
        )

        # ====================================================================
        # Messaging Metrics
        # ====================================================================
        self.messages_sent_total = Counter(
            "chat_messages_sent_total",
            "Total messages sent",
            [MetricLabels.MESSAGE_TYPE],
        )

        self.chat_requests_total = Counter(
            "chat_requests_total",
            "Chat request transitions by outcome",
            ["outcome"],
        )

        self.chat_requests_expired_total = Counter(
            "chat_requests_expired_total",
            "Pending chat requests moved to expired by the sweep",
        )

        self.blocks_total = Counter(
            "chat_blocks_total",
            "Block and unblock actions",
            ["action"],
        )

        # ====================================================================
        # Credit Metrics
        # ====================================================================
        self.credit_transactions_total = Counter(
            "chat_credit_transactions_total",
            "Ledger entries appended",
            [MetricLabels.TRANSACTION_TYPE],
        )

        self.credits_spent = Histogram(
            "chat_credits_spent",
            "Credits spent per usage transaction",
            buckets=(1, 5, 10, 15, 25, 50, 100, 250, 500),
        )

        self.insufficient_credits_total = Counter(
            "chat_insufficient_credits_total",
            "Spends refused for insufficient balance",
        )

        self.vip_recalculations_total = Counter(
            "chat_vip_recalculations_total",
            "VIP eligibility recalculations by result",
            ["vip_active"],
        )

        # ====================================================================
        # Notification Metrics
        # ====================================================================
        self.notifications_total = Counter(
            "chat_notifications_total",
            "Notification dispatch attempts",
            ["event_type", "success"],
        )

        # ====================================================================
        # Error Metrics
        # ====================================================================
        self.errors_total = Counter(
            "chat_errors_total",
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

    def record_message_sent(self, message_type: str) -> None:
        self.messages_sent_total.labels(message_type=message_type).inc()

    def record_chat_request(self, outcome: str) -> None:
        """Record a chat request transition (created, accepted, rejected)."""
        self.chat_requests_total.labels(outcome=outcome).inc()

    def record_expired(self, count: int) -> None:
        if count:
            self.chat_requests_expired_total.inc(count)

    def record_block(self, action: str) -> None:
        self.blocks_total.labels(action=action).inc()

    def record_transaction(self, transaction_type: str, amount: int) -> None:
        """Record a ledger append; usage amounts feed the spend histogram."""
        self.credit_transactions_total.labels(transaction_type=transaction_type).inc()
        if amount < 0:
            self.credits_spent.observe(-amount)

    def record_insufficient_credits(self) -> None:
        self.insufficient_credits_total.inc()

    def record_vip_recalculation(self, vip_active: bool) -> None:
        self.vip_recalculations_total.labels(vip_active=str(vip_active)).inc()

    def record_notification(self, event_type: str, success: bool) -> None:
        self.notifications_total.labels(event_type=event_type, success=str(success)).inc()

    def record_error(self, error_type: str, operation: str) -> None:
        """Record error occurrence."""
        self.errors_total.labels(error_type=error_type, operation=operation).inc()


# Global metrics instance
metrics = ChatMetrics()
