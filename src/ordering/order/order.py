"""Order aggregate with its OrderItem and OrderAddress entities.

An Order carries three independent status axes:

    status           pending → confirmed → processing → shipped → delivered
                     (cancelled / returned / refunded branches)
    payment_status   pending | processing | paid | failed | refunded | partially_refunded
    shipping_status  pending | confirmed | processing | shipped | out_for_delivery |
                     delivered | cancelled | returned

``status`` is written only through ``OrderStateGate``; the payment and
shipping axes are owned by their reconcilers. Orders are never deleted.
Every change of an axis raises a domain event on the ``orderstream::order``
stream.
"""

import re
from datetime import date, datetime
from enum import Enum

from protean import invariant
from protean.exceptions import InvalidOperationError, ObjectNotFoundError, ValidationError
from protean.fields import DateTime, Float, HasMany, Identifier, Integer, String, Text

from ordering.order.events import (
    OrderCancelled,
    OrderPlaced,
    OrderStatusChanged,
    PaymentCaptured,
    PaymentFailed,
    RefundCounted,
    ShipmentBooked,
    ShippingStatusChanged,
)
from shared.db import as_utc
from shared.domain import orderstream
from shared.status import OrderStatus, PaymentMethod, PaymentStatus, ShippingStatus

TOTAL_EPSILON = 0.01
SEQUENCE_ATTEMPTS = 5

# Orders that still owe money back or never paid cannot ship
_UNCLEARED_PAYMENT_STATES = {PaymentStatus.PENDING, PaymentStatus.PROCESSING, PaymentStatus.FAILED, PaymentStatus.REFUNDED}


class AddressType(Enum):
    SHIPPING = "shipping"
    BILLING = "billing"


class CancellationActor(Enum):
    CUSTOMER = "customer"
    SYSTEM = "system"
    ADMIN = "admin"
    CARRIER = "carrier"


def round_money(amount: float) -> float:
    return round(float(amount), 2)


def normalize_phone(phone: str) -> str:
    """Keep the last 10 digits of a phone number."""
    digits = re.sub(r"\D", "", phone or "")
    if len(digits) < 10:
        raise ValidationError({"phone": ["Phone number must have at least 10 digits"]})
    return digits[-10:]


def normalize_postal_code(postal_code: str) -> str:
    digits = re.sub(r"\D", "", str(postal_code or ""))
    if len(digits) != 6:
        raise ValidationError({"postal_code": ["Postal code must have 6 digits"]})
    return digits


def _iso(value: datetime | None) -> str | None:
    return as_utc(value).isoformat() if value else None


# ---------------------------------------------------------------------------
# Entities
# ---------------------------------------------------------------------------
@orderstream.entity(part_of="Order")
class OrderItem:
    """Purchase-time snapshot of one line; never edited after creation."""

    product_id = Identifier(required=True)
    quantity = Integer(required=True, min_value=1)
    unit_price = Float(required=True, min_value=0.0)
    sku = String(required=True, max_length=50)
    product_name = String(required=True, max_length=255)
    product_image = String(max_length=500)

    @property
    def line_total(self) -> float:
        return round_money(self.unit_price * self.quantity)

    def to_dict(self) -> dict:
        return {
            "product_id": str(self.product_id),
            "sku": self.sku,
            "product_name": self.product_name,
            "quantity": self.quantity,
            "unit_price": self.unit_price,
            "line_total": self.line_total,
        }


@orderstream.entity(part_of="Order")
class OrderAddress:
    address_type = String(required=True, max_length=10, choices=AddressType)
    name = String(required=True, max_length=255)
    phone = String(required=True, max_length=10)
    line1 = String(required=True, max_length=500)
    landmark = String(max_length=255)
    city = String(required=True, max_length=100)
    state = String(required=True, max_length=100)
    postal_code = String(required=True, max_length=6)
    country = String(max_length=100, default="India")
    email = String(max_length=255)

    @property
    def first_name(self) -> str:
        parts = (self.name or "").split()
        return parts[0] if parts else "Customer"

    @property
    def last_name(self) -> str:
        return " ".join((self.name or "").split()[1:])

    def to_dict(self) -> dict:
        return {
            "type": self.address_type,
            "name": self.name,
            "phone": self.phone,
            "line1": self.line1,
            "landmark": self.landmark,
            "city": self.city,
            "state": self.state,
            "postal_code": self.postal_code,
            "country": self.country,
            "email": self.email,
        }


# ---------------------------------------------------------------------------
# Aggregate
# ---------------------------------------------------------------------------
@orderstream.aggregate
class Order:
    order_number = String(required=True, max_length=20, unique=True)
    invoice_number = String(required=True, max_length=20, unique=True)
    customer_id = String(required=True, max_length=50)
    items = HasMany(OrderItem)
    addresses = HasMany(OrderAddress)

    # Pricing snapshot
    subtotal = Float(required=True)
    discount = Float(default=0.0)
    shipping_charge = Float(default=0.0)
    tax = Float(default=0.0)
    grand_total = Float(required=True)
    currency = String(max_length=3, default="INR")
    coupon_code = String(max_length=50)
    amount_refunded = Float(default=0.0)

    payment_method = String(required=True, max_length=20, choices=PaymentMethod)
    status = String(max_length=20, choices=OrderStatus, default=OrderStatus.PENDING.value)
    payment_status = String(max_length=20, choices=PaymentStatus, default=PaymentStatus.PENDING.value)
    shipping_status = String(max_length=20, choices=ShippingStatus, default=ShippingStatus.PENDING.value)

    # Payment gateway correlation
    gateway_order_id = String(max_length=100)
    gateway_payment_id = String(max_length=100)
    gateway_signature = String(max_length=255)
    payment_link_url = String(max_length=500)

    # Carrier correlation
    carrier_order_id = String(max_length=100)
    carrier_shipment_id = String(max_length=100)
    awb_code = String(max_length=100)
    tracking_number = String(max_length=100)
    tracking_url = String(max_length=500)
    courier_name = String(max_length=100)
    courier_company_id = String(max_length=50)
    estimated_delivery = DateTime()
    delivered_at = DateTime()

    cancellation_reason = Text()
    cancelled_by = String(max_length=20)
    cancelled_at = DateTime()
    notes = Text()

    created_at = DateTime()
    updated_at = DateTime()

    @invariant.post
    def grand_total_must_match_components(self):
        if self.subtotal is None or self.grand_total is None:
            return
        expected = self.subtotal - (self.discount or 0) + (self.shipping_charge or 0) + (self.tax or 0)
        if abs(self.grand_total - expected) > TOTAL_EPSILON:
            raise ValidationError(
                {"grand_total": [f"Grand total {self.grand_total} does not match components ({expected:.2f})"]}
            )

    @invariant.post
    def refunds_cannot_exceed_grand_total(self):
        if (self.amount_refunded or 0) > (self.grand_total or 0) + TOTAL_EPSILON:
            raise ValidationError({"amount_refunded": ["Refunded amount exceeds the grand total"]})

    # -------------------------------------------------------------------
    # Factory
    # -------------------------------------------------------------------
    @classmethod
    def place(cls, order_number: str, invoice_number: str, now: datetime, **fields) -> "Order":
        order = cls(
            order_number=order_number,
            invoice_number=invoice_number,
            status=OrderStatus.PENDING.value,
            payment_status=PaymentStatus.PENDING.value,
            shipping_status=ShippingStatus.PENDING.value,
            created_at=now,
            updated_at=now,
            **fields,
        )
        order.raise_(
            OrderPlaced(
                order_id=str(order.id),
                order_number=order_number,
                customer_id=order.customer_id,
                payment_method=order.payment_method,
                grand_total=order.grand_total,
                placed_at=now,
            )
        )
        return order

    # -------------------------------------------------------------------
    # Typed views of the status fields
    # -------------------------------------------------------------------
    @property
    def order_status(self) -> OrderStatus:
        return OrderStatus(self.status)

    @property
    def payment_state(self) -> PaymentStatus:
        return PaymentStatus(self.payment_status)

    @property
    def shipping_state(self) -> ShippingStatus:
        return ShippingStatus(self.shipping_status)

    @property
    def is_cod(self) -> bool:
        return self.payment_method == PaymentMethod.COD.value

    @property
    def cleared_for_fulfillment(self) -> bool:
        """COD orders ship unpaid; everything else ships once paid, including after a partial refund."""
        return self.is_cod or self.payment_state not in _UNCLEARED_PAYMENT_STATES

    @property
    def shipping_address(self) -> OrderAddress | None:
        return next((a for a in self.addresses if a.address_type == AddressType.SHIPPING.value), None)

    @property
    def billing_address(self) -> OrderAddress | None:
        return next((a for a in self.addresses if a.address_type == AddressType.BILLING.value), None)

    # -------------------------------------------------------------------
    # Status axes
    # -------------------------------------------------------------------
    def record_status(self, requested: OrderStatus, cause: str, now: datetime) -> None:
        """Write an order status the gate has already validated."""
        previous = self.status
        self.status = requested.value
        self.updated_at = now
        self.raise_(
            OrderStatusChanged(
                order_id=str(self.id),
                order_number=self.order_number,
                previous_status=previous,
                status=requested.value,
                cause=cause,
                changed_at=now,
            )
        )

    def capture_payment(self, payment_id: str | None, now: datetime, signature: str | None = None) -> None:
        self.payment_status = PaymentStatus.PAID.value
        self.gateway_payment_id = payment_id or self.gateway_payment_id
        if signature:
            self.gateway_signature = signature
        self.updated_at = now
        self.raise_(
            PaymentCaptured(
                order_id=str(self.id),
                order_number=self.order_number,
                gateway_payment_id=self.gateway_payment_id,
                amount=self.grand_total,
                captured_at=now,
            )
        )

    def fail_payment(self, reason: str | None, now: datetime) -> None:
        self.payment_status = PaymentStatus.FAILED.value
        self.updated_at = now
        self.raise_(
            PaymentFailed(order_id=str(self.id), order_number=self.order_number, reason=reason, failed_at=now)
        )

    def count_refund(self, refund_id: str, amount: float, target: PaymentStatus | None, now: datetime) -> None:
        """Add a refund to the running total; ``target`` is None when the payment axis must not move."""
        self.amount_refunded = round_money((self.amount_refunded or 0) + amount)
        if target is not None:
            self.payment_status = target.value
        self.updated_at = now
        self.raise_(
            RefundCounted(
                order_id=str(self.id),
                order_number=self.order_number,
                gateway_refund_id=refund_id,
                amount=amount,
                amount_refunded=self.amount_refunded,
                payment_status=self.payment_status,
            )
        )

    @property
    def fully_refunded(self) -> bool:
        return (self.amount_refunded or 0) >= self.grand_total - TOTAL_EPSILON

    def book_shipment(
        self,
        awb_code: str,
        courier_name: str | None,
        courier_company_id: str | None,
        tracking_url: str,
        estimated_delivery: datetime | None,
        now: datetime,
    ) -> None:
        self.awb_code = awb_code
        self.tracking_number = awb_code
        self.courier_name = courier_name
        self.courier_company_id = courier_company_id
        self.tracking_url = tracking_url
        if estimated_delivery and self.estimated_delivery is None:
            self.estimated_delivery = estimated_delivery
        self.updated_at = now
        self.raise_(
            ShipmentBooked(
                order_id=str(self.id),
                order_number=self.order_number,
                awb_code=awb_code,
                courier_name=courier_name,
                booked_at=now,
            )
        )

    def record_shipping_status(self, target: ShippingStatus, now: datetime) -> None:
        previous = self.shipping_status
        self.shipping_status = target.value
        self.updated_at = now
        self.raise_(
            ShippingStatusChanged(
                order_id=str(self.id),
                order_number=self.order_number,
                previous_status=previous,
                shipping_status=target.value,
                changed_at=now,
            )
        )

    def mark_cancelled(self, reason: str, actor: CancellationActor, now: datetime) -> None:
        self.cancellation_reason = reason
        self.cancelled_by = actor.value
        self.cancelled_at = now
        self.raise_(
            OrderCancelled(
                order_id=str(self.id),
                order_number=self.order_number,
                reason=reason,
                cancelled_by=actor.value,
                cancelled_at=now,
            )
        )

    def add_note(self, note: str) -> None:
        self.notes = f"{self.notes}\n{note}" if self.notes else note

    def to_dict(self) -> dict:
        return {
            "order_number": self.order_number,
            "invoice_number": self.invoice_number,
            "customer_id": self.customer_id,
            "status": self.status,
            "payment_status": self.payment_status,
            "shipping_status": self.shipping_status,
            "payment_method": self.payment_method,
            "subtotal": self.subtotal,
            "discount": self.discount,
            "shipping_charge": self.shipping_charge,
            "tax": self.tax,
            "grand_total": self.grand_total,
            "currency": self.currency,
            "coupon_code": self.coupon_code,
            "amount_refunded": self.amount_refunded,
            "gateway_order_id": self.gateway_order_id,
            "gateway_payment_id": self.gateway_payment_id,
            "awb_code": self.awb_code,
            "tracking_number": self.tracking_number,
            "tracking_url": self.tracking_url,
            "courier_name": self.courier_name,
            "estimated_delivery": _iso(self.estimated_delivery),
            "delivered_at": _iso(self.delivered_at),
            "cancellation_reason": self.cancellation_reason,
            "items": [item.to_dict() for item in self.items],
            "addresses": [address.to_dict() for address in self.addresses],
            "created_at": _iso(self.created_at),
        }


@orderstream.repository(part_of=Order)
class OrderRepository:
    def find_by_number(self, order_number: str) -> Order | None:
        return self._dao.query.filter(order_number=order_number).all().first

    def get_by_number(self, order_number: str) -> Order:
        order = self.find_by_number(order_number)
        if order is None:
            raise ObjectNotFoundError(f"Order {order_number} not found")
        return order

    def find_by(self, **lookup) -> Order | None:
        """First order matching one correlation field, e.g. ``awb_code=...``."""
        return self._dao.query.filter(**lookup).all().first


# ---------------------------------------------------------------------------
# Numbering
# ---------------------------------------------------------------------------
@orderstream.aggregate
class OrderSequence:
    """Last order sequence handed out for one day, e.g. ``ORD20260105``."""

    key = String(identifier=True, max_length=20)
    last_value = Integer(default=0, min_value=0)


@orderstream.repository(part_of=OrderSequence)
class OrderSequenceRepository:
    def next_value(self, key: str) -> int:
        for _ in range(SEQUENCE_ATTEMPTS):
            sequence = self._dao.query.filter(key=key).all().first
            if sequence is None:
                self.add(OrderSequence(key=key, last_value=1))
                return 1
            taken = sequence.last_value
            if self._dao.query.filter(key=key, last_value=taken).update_all(last_value=taken + 1) == 1:
                return taken + 1
        raise InvalidOperationError(f"Could not allocate an order number for {key}")


def next_order_numbers(day: date, sequences: OrderSequenceRepository) -> tuple[str, str]:
    """Return ``(order_number, invoice_number)`` for the next order of ``day``."""
    stamp = day.strftime("%Y%m%d")
    value = sequences.next_value(f"ORD{stamp}")
    return f"ORD{stamp}{value:04d}", f"INV{stamp}{value:04d}"
