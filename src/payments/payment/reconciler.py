"""PaymentReconciler: folds gateway payment state into orders.

Inbound webhooks are verified, recorded as a ``WebhookRecord`` and only then
interpreted. The first transition to ``paid`` confirms the order through the
``OrderStateGate`` and writes the ``create_shipment`` outbox task in the same
unit of work; the shipment itself is booked afterwards, either by the
booking process manager reacting to ``PaymentCaptured`` or by the outbox
worker's next pass.
"""

import hashlib
import json
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime

import structlog
from protean.exceptions import ValidationError
from protean.utils.globals import current_domain

from fulfillment.shipment.outbox import BackoffPolicy, enqueue_shipment
from fulfillment.shipment.reconciler import ShippingReconciler
from notifications.sink import NotificationKind, NotificationSink, emit
from ordering.order.gate import OrderStateGate
from ordering.order.order import TOTAL_EPSILON, Order, OrderRepository, round_money
from payments.gateway.port import GatewayOrder, PaymentGateway, PaymentLink
from payments.gateway.razorpay_adapter import from_minor_units
from payments.payment.events import GatewayEvent, entity, parse_gateway_event
from payments.payment.refund import PaymentRefund
from payments.payment.signature import checkout_signature_message, verify_signature
from shared.db import utcnow
from shared.domain import unit_of_work
from shared.exceptions import AuthorizationError, GatewayError, SignatureVerificationError
from shared.status import OrderStatus, PaymentStatus, payment_transition_allowed
from shared.webhooks import WebhookRecord, WebhookSource, pending_webhooks, record_webhook

logger = structlog.get_logger(__name__)

Notifications = list[tuple[NotificationKind, dict]]


@dataclass(frozen=True)
class WebhookOutcome:
    record_id: str | None
    event: str
    order_number: str | None = None
    applied: bool = False
    duplicate: bool = False
    error: str | None = None


@dataclass(frozen=True)
class PaymentSecrets:
    key_secret: str
    webhook_secret: str


class PaymentReconciler:
    def __init__(
        self,
        gateway: PaymentGateway,
        gate: OrderStateGate,
        shipping: ShippingReconciler,
        notifications: NotificationSink,
        secrets: PaymentSecrets,
        currency: str = "INR",
        retry_policy: BackoffPolicy | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.gateway = gateway
        self.gate = gate
        self.shipping = shipping
        self.notifications = notifications
        self.secrets = secrets
        self.currency = currency
        self.retry_policy = retry_policy or BackoffPolicy()
        self.clock = clock

    @property
    def orders(self) -> OrderRepository:
        return current_domain.repository_for(Order)

    # -------------------------------------------------------------------
    # Webhooks
    # -------------------------------------------------------------------
    def handle_webhook(self, raw_body: bytes, signature: str | None, event_id: str | None = None) -> WebhookOutcome:
        """Verify, record and apply one gateway webhook delivery."""
        if not verify_signature(self.secrets.webhook_secret, raw_body, signature):
            logger.warning("gateway_webhook_signature_invalid", event_id=event_id)
            raise SignatureVerificationError("Invalid webhook signature")

        try:
            body = json.loads(raw_body)
        except ValueError as exc:
            raise ValidationError({"body": ["Webhook body is not valid JSON"]}) from exc
        if not isinstance(body, dict):
            raise ValidationError({"body": ["Webhook body must be a JSON object"]})

        event_name = str(body.get("event") or "unknown")
        dedupe_key = event_id or hashlib.sha256(raw_body).hexdigest()

        record, created = record_webhook(
            WebhookSource.PAYMENT_GATEWAY, event_name, body.get("payload") or {}, dedupe_key
        )
        if not created and (record.processed or record.dead):
            return WebhookOutcome(record_id=str(record.id), event=event_name, duplicate=True)
        return self.process_record(str(record.id))

    @property
    def records(self):
        return current_domain.repository_for(WebhookRecord)

    def process_record(self, record_id: str) -> WebhookOutcome:
        """Apply a stored webhook record; failures are kept on the record for replay."""
        record = self.records.get(record_id)
        event_name, payload = record.event, record.payload

        log = logger.bind(record_id=record_id, gateway_event=event_name)
        notifications: Notifications = []
        try:
            with unit_of_work():
                order_number, applied = self._apply(event_name, payload, notifications)
                record = self.records.get(record_id)
                record.order_number = order_number
                record.mark_processed(self.clock())
                self.records.add(record)
        except Exception as exc:
            log.exception("gateway_webhook_failed")
            with unit_of_work():
                record = self.records.get(record_id)
                record.mark_failed(
                    str(exc),
                    self.clock(),
                    retry_in=self.retry_policy.delay(record.attempts + 1),
                    max_attempts=self.retry_policy.max_attempts,
                )
                self.records.add(record)
            return WebhookOutcome(record_id=record_id, event=event_name, error=str(exc))

        self._emit(notifications)
        return WebhookOutcome(record_id=record_id, event=event_name, order_number=order_number, applied=applied)

    def replay_pending(self, now: datetime | None = None, limit: int = 50) -> list[WebhookOutcome]:
        """Re-run gateway webhook records whose processing failed earlier."""
        records = pending_webhooks(WebhookSource.PAYMENT_GATEWAY, now or self.clock(), limit)
        return [self.process_record(str(record.id)) for record in records]

    def apply_event(self, event_name: str, payload: dict) -> tuple[str | None, bool]:
        """Apply a gateway event without recording it (used by replays and admin tools)."""
        notifications: Notifications = []
        with unit_of_work():
            result = self._apply(event_name, payload, notifications)
        self._emit(notifications)
        return result

    def _apply(self, event_name: str, payload: dict, notifications: Notifications):
        event = parse_gateway_event(event_name)
        if event is None:
            logger.info("gateway_event_ignored", gateway_event=event_name)
            return None, False

        payment = entity(payload, "payment")
        if event.is_refund:
            refund = entity(payload, "refund")
            payment_id = refund.get("payment_id") or payment.get("id")
            order = self._find_order(payment_id=payment_id, gateway_order_id=payment.get("order_id"))
            if order is None:
                logger.warning("gateway_event_unmatched", gateway_event=event.value, payment_id=payment_id)
                return None, False
            applied = self._count_refund(
                order,
                refund_id=refund.get("id"),
                amount=from_minor_units(refund.get("amount")),
                reason=(refund.get("notes") or {}).get("reason"),
                notifications=notifications,
            )
            return order.order_number, applied

        gateway_order = entity(payload, "order")
        notes = payment.get("notes") or gateway_order.get("notes")
        if not isinstance(notes, dict):
            notes = {}
        order = self._find_order(
            gateway_order_id=payment.get("order_id") or gateway_order.get("id"),
            order_number=notes.get("order_number") or gateway_order.get("receipt"),
        )
        if order is None:
            logger.warning(
                "gateway_event_unmatched", gateway_event=event.value, gateway_order_id=payment.get("order_id")
            )
            return None, False

        if event.payment_status == PaymentStatus.FAILED:
            applied = self._mark_failed(order, payment.get("error_description"), notifications)
        else:
            applied = self._mark_paid(order, payment.get("id"), event.value, notifications)
        self.orders.add(order)
        return order.order_number, applied

    def _find_order(
        self,
        gateway_order_id: str | None = None,
        payment_id: str | None = None,
        order_number: str | None = None,
    ) -> Order | None:
        lookups = (("gateway_order_id", gateway_order_id), ("gateway_payment_id", payment_id))
        for field_name, value in lookups:
            if value:
                order = self.orders.find_by(**{field_name: value})
                if order is not None:
                    return order
        if order_number:
            return self.orders.find_by_number(order_number)
        return None

    # -------------------------------------------------------------------
    # Transitions
    # -------------------------------------------------------------------
    def _mark_paid(
        self,
        order: Order,
        payment_id: str | None,
        cause: str,
        notifications: Notifications,
        signature: str | None = None,
    ) -> bool:
        """Record the first capture; the caller persists the order inside its unit of work."""
        log = logger.bind(order_number=order.order_number, cause=cause)
        current = order.payment_state
        if current == PaymentStatus.PAID or not payment_transition_allowed(current, PaymentStatus.PAID):
            log.info("payment_capture_ignored", payment_status=current.value)
            return False

        order.capture_payment(payment_id, self.clock(), signature=signature)
        log.info("payment_captured", gateway_payment_id=order.gateway_payment_id)

        if order.order_status == OrderStatus.CANCELLED:
            # Captured after cancellation; money has to go back through a refund
            log.warning("payment_captured_for_cancelled_order")
        else:
            if order.order_status == OrderStatus.PENDING:
                self.gate.transition(order, OrderStatus.CONFIRMED, cause)
            enqueue_shipment(order.order_number, self.clock())
            self.shipping.catch_up_order_status(order)

        notifications.append(
            (
                NotificationKind.PAYMENT_RECEIVED,
                {
                    "order_number": order.order_number,
                    "customer_id": order.customer_id,
                    "amount": order.grand_total,
                    "gateway_payment_id": order.gateway_payment_id,
                },
            )
        )
        return True

    def _mark_failed(self, order: Order, reason: str | None, notifications: Notifications) -> bool:
        current = order.payment_state
        if current == PaymentStatus.FAILED or not payment_transition_allowed(current, PaymentStatus.FAILED):
            logger.info("payment_failure_ignored", order_number=order.order_number, payment_status=current.value)
            return False

        order.fail_payment(reason, self.clock())
        logger.warning("payment_failed", order_number=order.order_number, reason=reason)
        notifications.append(
            (
                NotificationKind.PAYMENT_FAILED,
                {"order_number": order.order_number, "customer_id": order.customer_id, "reason": reason},
            )
        )
        return True

    def _count_refund(
        self,
        order: Order,
        refund_id: str | None,
        amount: float,
        reason: str | None,
        notifications: Notifications,
    ) -> bool:
        log = logger.bind(order_number=order.order_number, refund_id=refund_id)
        if not refund_id:
            log.warning("refund_without_id_ignored")
            return False
        refunds = current_domain.repository_for(PaymentRefund)
        if refunds.exists(refund_id):
            log.info("refund_already_counted")
            return False

        refunds.add(
            PaymentRefund(
                gateway_refund_id=refund_id,
                order_number=order.order_number,
                gateway_payment_id=order.gateway_payment_id,
                amount=amount,
                reason=reason,
                created_at=self.clock(),
            )
        )
        fully_refunded = round_money((order.amount_refunded or 0) + amount) >= order.grand_total - TOTAL_EPSILON
        target = PaymentStatus.REFUNDED if fully_refunded else PaymentStatus.PARTIALLY_REFUNDED
        if not payment_transition_allowed(order.payment_state, target):
            log.warning("refund_status_not_applied", payment_status=order.payment_status, requested=target.value)
            target = None
        order.count_refund(refund_id, amount, target, self.clock())

        if fully_refunded and self.gate.can_transition(order, OrderStatus.REFUNDED):
            self.gate.transition(order, OrderStatus.REFUNDED, "gateway.refund")
        self.orders.add(order)
        log.info("refund_counted", amount=amount, amount_refunded=order.amount_refunded)

        notifications.append(
            (
                NotificationKind.REFUND_PROCESSED,
                {
                    "order_number": order.order_number,
                    "customer_id": order.customer_id,
                    "amount": amount,
                    "amount_refunded": order.amount_refunded,
                    "payment_status": order.payment_status,
                },
            )
        )
        return True

    def _emit(self, notifications: Notifications) -> None:
        for kind, data in notifications:
            emit(self.notifications, kind, **data)

    # -------------------------------------------------------------------
    # Client confirmation
    # -------------------------------------------------------------------
    def verify_payment(
        self,
        order_number: str,
        gateway_order_id: str,
        gateway_payment_id: str,
        signature: str,
        customer_id: str | None = None,
    ) -> dict:
        """Confirm a payment reported by the client after checkout."""
        notifications: Notifications = []
        with unit_of_work():
            order = self.orders.get_by_number(order_number)
            if customer_id is not None and order.customer_id != customer_id:
                raise AuthorizationError("Order belongs to another customer", order_number=order_number)
            if order.gateway_order_id and order.gateway_order_id != gateway_order_id:
                raise ValidationError({"gateway_order_id": ["Does not match the order's gateway order"]})

            message = checkout_signature_message(gateway_order_id, gateway_payment_id)
            if not verify_signature(self.secrets.key_secret, message, signature):
                logger.warning("payment_signature_invalid", order_number=order_number)
                raise SignatureVerificationError("Invalid payment signature", order_number=order_number)

            if not order.gateway_order_id:
                order.gateway_order_id = gateway_order_id
            changed = self._mark_paid(order, gateway_payment_id, "client.verify", notifications, signature=signature)
            self.orders.add(order)
            result = {**self._status_of(order), "changed": changed}

        self._emit(notifications)
        return result

    # -------------------------------------------------------------------
    # Gateway orders, links and refunds
    # -------------------------------------------------------------------
    def create_gateway_order(self, order_number: str) -> GatewayOrder | None:
        """Open a gateway order for checkout. Failures are logged; the order stays payable by link."""
        order = self.orders.get_by_number(order_number)
        try:
            gateway_order = self.gateway.create_order(
                order.grand_total, order.currency, receipt=order_number, notes={"order_number": order_number}
            )
        except GatewayError as exc:
            logger.warning("gateway_order_failed", order_number=order_number, error=exc.message)
            return None

        with unit_of_work():
            order = self.orders.get_by_number(order_number)
            order.gateway_order_id = gateway_order.id
            self.orders.add(order)
        logger.info("gateway_order_created", order_number=order_number, gateway_order_id=gateway_order.id)
        return gateway_order

    def create_payment_link(self, order_number: str) -> PaymentLink:
        order = self.orders.get_by_number(order_number)
        if order.payment_state not in (PaymentStatus.PENDING, PaymentStatus.FAILED):
            raise ValidationError({"payment_status": [f"Order is already {order.payment_status}"]})
        if order.order_status == OrderStatus.CANCELLED:
            raise ValidationError({"status": ["Order is cancelled"]})
        if order.is_cod:
            raise ValidationError({"payment_method": ["Cash on delivery orders are paid on delivery"]})
        address = order.billing_address or order.shipping_address
        customer = {
            "name": address.name if address else None,
            "contact": address.phone if address else None,
            "email": address.email if address else None,
        }

        link = self.gateway.create_payment_link(
            order.grand_total,
            order.currency,
            description=f"Payment for order {order_number}",
            customer=customer,
            notes={"order_number": order_number},
        )
        with unit_of_work():
            order = self.orders.get_by_number(order_number)
            order.payment_link_url = link.short_url
            self.orders.add(order)
        logger.info("payment_link_created", order_number=order_number, link_id=link.id)
        return link

    def refund(self, order_number: str, amount: float | None = None, reason: str | None = None) -> dict:
        """Refund a paid order through the gateway; ``amount=None`` refunds the remainder."""
        order = self.orders.get_by_number(order_number)
        if order.payment_state not in (PaymentStatus.PAID, PaymentStatus.PARTIALLY_REFUNDED):
            raise ValidationError({"payment_status": [f"Cannot refund an order that is {order.payment_status}"]})
        if not order.gateway_payment_id:
            raise ValidationError({"gateway_payment_id": ["Order has no captured gateway payment"]})
        remaining = round_money(order.grand_total - (order.amount_refunded or 0))

        amount = remaining if amount is None else round_money(amount)
        if amount <= 0:
            raise ValidationError({"amount": ["Refund amount must be positive"]})
        if amount > remaining + TOTAL_EPSILON:
            raise ValidationError({"amount": [f"Refund amount exceeds refundable balance {remaining}"]})

        gateway_refund = self.gateway.create_refund(
            order.gateway_payment_id, amount, notes={"order_number": order_number, "reason": reason or ""}
        )
        notifications: Notifications = []
        with unit_of_work():
            order = self.orders.get_by_number(order_number)
            self._count_refund(order, gateway_refund.id, gateway_refund.amount, reason, notifications)
            result = {**self._status_of(order), "refund_id": gateway_refund.id, "amount": gateway_refund.amount}

        self._emit(notifications)
        return result

    def payment_status(self, order_number: str) -> dict:
        return self._status_of(self.orders.get_by_number(order_number))

    # -------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------
    @staticmethod
    def _status_of(order: Order) -> dict:
        return {
            "order_number": order.order_number,
            "status": order.status,
            "payment_status": order.payment_status,
            "payment_method": order.payment_method,
            "grand_total": order.grand_total,
            "amount_refunded": order.amount_refunded,
            "gateway_order_id": order.gateway_order_id,
            "gateway_payment_id": order.gateway_payment_id,
            "payment_link_url": order.payment_link_url,
        }
