"""Status enumerations and the transition tables shared across contexts.

Order, payment and shipping status are three independent axes on an Order.
The order-status edges are enforced by ``ordering.order.gate.OrderStateGate``;
the payment and shipping tables below are consulted by the reconcilers so a
duplicated or late event can never move an axis backwards.
"""

from enum import Enum


class OrderStatus(Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"
    RETURNED = "returned"
    REFUNDED = "refunded"


class PaymentStatus(Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"
    PARTIALLY_REFUNDED = "partially_refunded"


class ShippingStatus(Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    OUT_FOR_DELIVERY = "out_for_delivery"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"
    RETURNED = "returned"


class PaymentMethod(Enum):
    COD = "cod"
    ONLINE = "online"
    RAZORPAY = "razorpay"
    UPI = "upi"
    CARD = "card"
    NET_BANKING = "netbanking"
    WALLET = "wallet"


_PAYMENT_TRANSITIONS = {
    PaymentStatus.PENDING: {
        PaymentStatus.PROCESSING,
        PaymentStatus.PAID,
        PaymentStatus.FAILED,
    },
    PaymentStatus.PROCESSING: {PaymentStatus.PAID, PaymentStatus.FAILED},
    # A later attempt may still succeed after a failed one
    PaymentStatus.FAILED: {PaymentStatus.PROCESSING, PaymentStatus.PAID},
    PaymentStatus.PAID: {PaymentStatus.REFUNDED, PaymentStatus.PARTIALLY_REFUNDED},
    PaymentStatus.PARTIALLY_REFUNDED: {PaymentStatus.REFUNDED, PaymentStatus.PARTIALLY_REFUNDED},
    PaymentStatus.REFUNDED: set(),
}

_SHIPPING_TRANSITIONS = {
    ShippingStatus.PENDING: {
        ShippingStatus.CONFIRMED,
        ShippingStatus.PROCESSING,
        ShippingStatus.SHIPPED,
        ShippingStatus.OUT_FOR_DELIVERY,
        ShippingStatus.DELIVERED,
        ShippingStatus.CANCELLED,
        ShippingStatus.RETURNED,
    },
    ShippingStatus.CONFIRMED: {
        ShippingStatus.PROCESSING,
        ShippingStatus.SHIPPED,
        ShippingStatus.OUT_FOR_DELIVERY,
        ShippingStatus.DELIVERED,
        ShippingStatus.CANCELLED,
        ShippingStatus.RETURNED,
    },
    ShippingStatus.PROCESSING: {
        ShippingStatus.SHIPPED,
        ShippingStatus.OUT_FOR_DELIVERY,
        ShippingStatus.DELIVERED,
        ShippingStatus.CANCELLED,
        ShippingStatus.RETURNED,
    },
    ShippingStatus.SHIPPED: {
        ShippingStatus.OUT_FOR_DELIVERY,
        ShippingStatus.DELIVERED,
        ShippingStatus.CANCELLED,
        ShippingStatus.RETURNED,
    },
    ShippingStatus.OUT_FOR_DELIVERY: {
        ShippingStatus.SHIPPED,
        ShippingStatus.DELIVERED,
        ShippingStatus.CANCELLED,
        ShippingStatus.RETURNED,
    },
    ShippingStatus.DELIVERED: {ShippingStatus.RETURNED},
    ShippingStatus.CANCELLED: {ShippingStatus.RETURNED},
    ShippingStatus.RETURNED: set(),
}


def payment_transition_allowed(current: PaymentStatus, target: PaymentStatus) -> bool:
    return target in _PAYMENT_TRANSITIONS[current]


def shipping_transition_allowed(current: ShippingStatus, target: ShippingStatus) -> bool:
    return target in _SHIPPING_TRANSITIONS[current]
