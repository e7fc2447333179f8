"""Outbound notification and stock-alert sinks.

The reconciliation engine only hands events over; rendering and delivery
(email, push, websocket) belong to the collaborators behind these ports.
The in-memory adapters record what was emitted and are the default for
development and testing, following the notification channel adapters.
"""

from abc import ABC, abstractmethod
from datetime import UTC, datetime
from enum import Enum

import structlog

logger = structlog.get_logger(__name__)


class NotificationKind(Enum):
    NEW_ORDER = "new_order"
    PAYMENT_RECEIVED = "payment_received"
    PAYMENT_FAILED = "payment_failed"
    REFUND_PROCESSED = "refund_processed"
    ORDER_CANCELLED = "order_cancelled"
    ORDER_STATUS_UPDATED = "order_status_updated"
    ORDER_DELIVERED = "order_delivered"
    SHIPPING_STATUS_UPDATED = "shipping_status_updated"
    SHIPPING_ISSUE = "shipping_issue"


class AnalyticsEvent(Enum):
    PURCHASE = "purchase"


# ---------------------------------------------------------------------------
# Ports
# ---------------------------------------------------------------------------
class NotificationSink(ABC):
    """Receives customer/admin notifications and analytics events."""

    @abstractmethod
    def notify(self, kind: NotificationKind, data: dict) -> None: ...

    @abstractmethod
    def track(self, event: AnalyticsEvent, data: dict) -> None: ...


class StockAlertSink(ABC):
    """Receives low-stock alerts raised by the stock ledger."""

    @abstractmethod
    def low_stock(self, product_id: str, sku: str, name: str, stock_quantity: int, threshold: int) -> None: ...


# ---------------------------------------------------------------------------
# In-memory adapters
# ---------------------------------------------------------------------------
class RecordingNotificationSink(NotificationSink):
    """Notification sink that records events in memory for test assertions."""

    def __init__(self) -> None:
        self.notifications: list[dict] = []
        self.analytics: list[dict] = []

    def notify(self, kind: NotificationKind, data: dict) -> None:
        self.notifications.append({"kind": kind.value, "at": datetime.now(UTC), **data})
        logger.info("notification_emitted", kind=kind.value, order_number=data.get("order_number"))

    def track(self, event: AnalyticsEvent, data: dict) -> None:
        self.analytics.append({"event": event.value, "at": datetime.now(UTC), **data})

    def of_kind(self, kind: NotificationKind) -> list[dict]:
        return [n for n in self.notifications if n["kind"] == kind.value]

    def reset(self) -> None:
        self.notifications.clear()
        self.analytics.clear()


class RecordingStockAlertSink(StockAlertSink):
    """Stock alert sink that records alerts in memory."""

    def __init__(self) -> None:
        self.alerts: list[dict] = []

    def low_stock(self, product_id: str, sku: str, name: str, stock_quantity: int, threshold: int) -> None:
        self.alerts.append(
            {
                "product_id": product_id,
                "sku": sku,
                "name": name,
                "stock_quantity": stock_quantity,
                "threshold": threshold,
            }
        )
        logger.warning("low_stock_alert", product_id=product_id, sku=sku, stock_quantity=stock_quantity)

    def reset(self) -> None:
        self.alerts.clear()


def emit(sink: NotificationSink, kind: NotificationKind, **data) -> None:
    """Hand a notification to ``sink``; a failing sink never fails the caller."""
    try:
        sink.notify(kind, data)
    except Exception:
        logger.exception("notification_failed", kind=kind.value, order_number=data.get("order_number"))


def track_event(sink: NotificationSink, event: AnalyticsEvent, **data) -> None:
    try:
        sink.track(event, data)
    except Exception:
        logger.exception("analytics_failed", analytics_event=event.value, order_number=data.get("order_number"))


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------
_notification_sink: NotificationSink | None = None
_stock_alert_sink: StockAlertSink | None = None


def get_notification_sink() -> NotificationSink:
    """Return the active notification sink. Defaults to the recording sink."""
    global _notification_sink
    if _notification_sink is None:
        _notification_sink = RecordingNotificationSink()
    return _notification_sink


def set_notification_sink(sink: NotificationSink) -> None:
    global _notification_sink
    _notification_sink = sink


def get_stock_alert_sink() -> StockAlertSink:
    """Return the active stock alert sink. Defaults to the recording sink."""
    global _stock_alert_sink
    if _stock_alert_sink is None:
        _stock_alert_sink = RecordingStockAlertSink()
    return _stock_alert_sink


def set_stock_alert_sink(sink: StockAlertSink) -> None:
    global _stock_alert_sink
    _stock_alert_sink = sink


def reset_sinks() -> None:
    """Reset both sinks to fresh defaults (useful for testing)."""
    global _notification_sink, _stock_alert_sink
    _notification_sink = None
    _stock_alert_sink = None
