"""Configurable fake payment gateway for development and testing.

This adapter simulates a real payment gateway without any external calls.
It can be configured at runtime to succeed or fail, making it useful for:
- Manual API testing via /payments/gateway/configure
- Automated tests with predictable outcomes
- Development without real gateway credentials
"""

from uuid import uuid4

from payments.gateway.port import GatewayOrder, GatewayPayment, GatewayRefund, PaymentGateway, PaymentLink
from shared.exceptions import GatewayError


class FakeGateway(PaymentGateway):
    """Configurable fake payment gateway."""

    def __init__(self) -> None:
        self.should_succeed: bool = True
        self.failure_reason: str = "Gateway unavailable"
        self.calls: list[dict] = []
        self.payments: dict[str, GatewayPayment] = {}
        self.refunds: dict[str, GatewayRefund] = {}

    def configure(self, should_succeed: bool, failure_reason: str = "Gateway unavailable") -> None:
        """Configure gateway behavior at runtime."""
        self.should_succeed = should_succeed
        self.failure_reason = failure_reason

    def calls_to(self, method: str) -> list[dict]:
        return [c for c in self.calls if c["method"] == method]

    def _call(self, method: str, **kwargs) -> None:
        self.calls.append({"method": method, **kwargs})
        if not self.should_succeed:
            raise GatewayError(self.failure_reason, method=method)

    def create_order(self, amount: float, currency: str, receipt: str, notes: dict | None = None) -> GatewayOrder:
        self._call("create_order", amount=amount, currency=currency, receipt=receipt, notes=notes or {})
        return GatewayOrder(id=f"order_fake{uuid4().hex[:12]}", amount=amount, currency=currency, receipt=receipt)

    def create_payment_link(
        self,
        amount: float,
        currency: str,
        description: str,
        customer: dict,
        notes: dict | None = None,
    ) -> PaymentLink:
        self._call("create_payment_link", amount=amount, currency=currency, description=description, customer=customer)
        link_id = f"plink_fake{uuid4().hex[:10]}"
        return PaymentLink(id=link_id, short_url=f"https://rzp.io/i/{link_id}", amount=amount)

    def register_payment(self, payment: GatewayPayment) -> None:
        """Seed a payment that fetch_payment/capture_payment will return."""
        self.payments[payment.id] = payment

    def fetch_payment(self, payment_id: str) -> GatewayPayment:
        self._call("fetch_payment", payment_id=payment_id)
        payment = self.payments.get(payment_id)
        if payment is None:
            raise GatewayError(f"Payment {payment_id} not found", method="fetch_payment")
        return payment

    def capture_payment(self, payment_id: str, amount: float, currency: str) -> GatewayPayment:
        self._call("capture_payment", payment_id=payment_id, amount=amount, currency=currency)
        existing = self.payments.get(payment_id)
        payment = GatewayPayment(
            id=payment_id,
            amount=amount,
            currency=currency,
            status="captured",
            order_id=existing.order_id if existing else None,
            method=existing.method if existing else None,
        )
        self.payments[payment_id] = payment
        return payment

    def create_refund(self, payment_id: str, amount: float, notes: dict | None = None) -> GatewayRefund:
        self._call("create_refund", payment_id=payment_id, amount=amount, notes=notes or {})
        refund = GatewayRefund(
            id=f"rfnd_fake{uuid4().hex[:12]}",
            payment_id=payment_id,
            amount=amount,
            status="processed",
            notes=notes or {},
        )
        self.refunds[refund.id] = refund
        return refund

    def fetch_refund(self, refund_id: str) -> GatewayRefund:
        self._call("fetch_refund", refund_id=refund_id)
        refund = self.refunds.get(refund_id)
        if refund is None:
            raise GatewayError(f"Refund {refund_id} not found", method="fetch_refund")
        return refund
