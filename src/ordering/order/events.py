"""Domain events raised by the Order aggregate.

Events are written to the event store when the unit of work that raised them
commits and are handled asynchronously by the Engine (the shipment booking
process manager listens on the ``orderstream::order`` stream).
"""

from protean.fields import DateTime, Float, Identifier, String

from shared.domain import orderstream


@orderstream.event(part_of="Order")
class OrderPlaced:
    """Checkout turned a cart into a pending order."""

    __version__ = 1

    order_id = Identifier(required=True)
    order_number = String(required=True)
    customer_id = String(required=True)
    payment_method = String(required=True)
    grand_total = Float(required=True)
    placed_at = DateTime(required=True)


@orderstream.event(part_of="Order")
class PaymentCaptured:
    """The gateway (or the client) confirmed the payment for the first time."""

    __version__ = 1

    order_id = Identifier(required=True)
    order_number = String(required=True)
    gateway_payment_id = String()
    amount = Float(required=True)
    captured_at = DateTime(required=True)


@orderstream.event(part_of="Order")
class PaymentFailed:
    __version__ = 1

    order_id = Identifier(required=True)
    order_number = String(required=True)
    reason = String(max_length=500)
    failed_at = DateTime(required=True)


@orderstream.event(part_of="Order")
class RefundCounted:
    __version__ = 1

    order_id = Identifier(required=True)
    order_number = String(required=True)
    gateway_refund_id = String(required=True)
    amount = Float(required=True)
    amount_refunded = Float(required=True)
    payment_status = String(required=True)


@orderstream.event(part_of="Order")
class OrderStatusChanged:
    __version__ = 1

    order_id = Identifier(required=True)
    order_number = String(required=True)
    previous_status = String(required=True)
    status = String(required=True)
    cause = String(max_length=100)
    changed_at = DateTime(required=True)


@orderstream.event(part_of="Order")
class ShipmentBooked:
    """The carrier assigned an AWB to the order's shipment."""

    __version__ = 1

    order_id = Identifier(required=True)
    order_number = String(required=True)
    awb_code = String(required=True)
    courier_name = String()
    booked_at = DateTime(required=True)


@orderstream.event(part_of="Order")
class ShippingStatusChanged:
    __version__ = 1

    order_id = Identifier(required=True)
    order_number = String(required=True)
    previous_status = String(required=True)
    shipping_status = String(required=True)
    changed_at = DateTime(required=True)


@orderstream.event(part_of="Order")
class OrderCancelled:
    __version__ = 1

    order_id = Identifier(required=True)
    order_number = String(required=True)
    reason = String(max_length=1000)
    cancelled_by = String(required=True)
    cancelled_at = DateTime(required=True)
