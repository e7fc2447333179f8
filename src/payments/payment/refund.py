"""Refunds already counted against an order, keyed by the gateway refund id."""

from protean.fields import DateTime, Float, String, Text

from shared.db import utcnow
from shared.domain import orderstream


@orderstream.aggregate
class PaymentRefund:
    gateway_refund_id = String(required=True, max_length=100, unique=True)
    order_number = String(required=True, max_length=20)
    gateway_payment_id = String(max_length=100)
    amount = Float(required=True, min_value=0.0)
    status = String(max_length=20, default="processed")
    reason = Text()
    created_at = DateTime(default=utcnow)


@orderstream.repository(part_of=PaymentRefund)
class PaymentRefundRepository:
    def exists(self, gateway_refund_id: str) -> bool:
        return self._dao.query.filter(gateway_refund_id=gateway_refund_id).all().total > 0

    def for_order(self, order_number: str) -> list[PaymentRefund]:
        return self._dao.query.filter(order_number=order_number).order_by("created_at").all().items
