"""Gateway webhook events and the payment status each one requests."""

from enum import Enum

from shared.status import PaymentStatus


class GatewayEvent(Enum):
    PAYMENT_CAPTURED = "payment.captured"
    PAYMENT_FAILED = "payment.failed"
    ORDER_PAID = "order.paid"
    REFUND_CREATED = "refund.created"
    REFUND_PROCESSED = "refund.processed"

    @property
    def is_refund(self) -> bool:
        return self in (GatewayEvent.REFUND_CREATED, GatewayEvent.REFUND_PROCESSED)

    @property
    def payment_status(self) -> PaymentStatus | None:
        """Target status; refunds return None because it depends on the cumulative amount."""
        return _PAYMENT_STATUS[self]


_PAYMENT_STATUS = {
    GatewayEvent.PAYMENT_CAPTURED: PaymentStatus.PAID,
    GatewayEvent.PAYMENT_FAILED: PaymentStatus.FAILED,
    GatewayEvent.ORDER_PAID: PaymentStatus.PAID,
    GatewayEvent.REFUND_CREATED: None,
    GatewayEvent.REFUND_PROCESSED: None,
}


def parse_gateway_event(name: str | None) -> GatewayEvent | None:
    try:
        return GatewayEvent(name)
    except ValueError:
        return None


def entity(payload: dict, name: str) -> dict:
    """Pull ``payload[name]["entity"]`` out of a gateway webhook body."""
    section = (payload or {}).get(name) or {}
    return section.get("entity") or {}
