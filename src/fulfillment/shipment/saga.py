"""Shipment Booking Saga: books the carrier shipment once an order may ship.

Flow:
    1. OrderPlaced → cash on delivery orders book right away; others wait
    2. PaymentCaptured → issue BookShipment
    3. ShipmentBooked → completed (end)
    3b. OrderCancelled → abandoned (end)

The saga runs in the Engine. The ``create_shipment`` outbox task written
with the payment transition stays the durable record: when the Engine is
down or the carrier fails, the outbox worker books the shipment on its next
pass, and BookShipment on an already booked order is a no-op.
"""

from protean.fields import DateTime, Identifier, Integer, String
from protean.utils.globals import current_domain
from protean.utils.mixins import handle

from fulfillment.shipment.outbox import BookShipment
from ordering.order.events import OrderCancelled, OrderPlaced, PaymentCaptured, ShipmentBooked
from shared.domain import orderstream
from shared.status import PaymentMethod


@orderstream.process_manager(stream_categories=["orderstream::order"])
class ShipmentBookingSaga:
    """Tracks one order from placement until its shipment is booked."""

    order_id = Identifier()
    order_number = String(max_length=20)
    status = String(default="new")
    booking_requests = Integer(default=0)
    awb_code = String(max_length=100)
    started_at = DateTime()
    completed_at = DateTime()

    @handle(OrderPlaced, start=True, correlate="order_number")
    def on_order_placed(self, event: OrderPlaced) -> None:
        self.order_id = event.order_id
        self.order_number = event.order_number
        self.started_at = event.placed_at
        if event.payment_method == PaymentMethod.COD.value:
            self._request_booking()
        else:
            self.status = "awaiting_payment"

    @handle(PaymentCaptured, correlate="order_number")
    def on_payment_captured(self, event: PaymentCaptured) -> None:
        self._request_booking()

    @handle(ShipmentBooked, correlate="order_number")
    def on_shipment_booked(self, event: ShipmentBooked) -> None:
        self.awb_code = event.awb_code
        self.status = "completed"
        self.completed_at = event.booked_at
        self.mark_as_complete()

    @handle(OrderCancelled, correlate="order_number")
    def on_order_cancelled(self, event: OrderCancelled) -> None:
        self.status = "abandoned"
        self.completed_at = event.cancelled_at
        self.mark_as_complete()

    def _request_booking(self) -> None:
        self.status = "awaiting_shipment"
        self.booking_requests = (self.booking_requests or 0) + 1
        current_domain.process(BookShipment(order_number=self.order_number), asynchronous=False)
