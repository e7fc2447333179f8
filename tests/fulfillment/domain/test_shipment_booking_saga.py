"""Domain tests for ShipmentBookingSaga: unit tests for handler logic.

BookShipment is mocked; these tests cover the saga's state transitions, not
the outbox run the command triggers.
"""

from datetime import UTC, datetime
from unittest.mock import patch

from fulfillment.shipment.outbox import BookShipment
from fulfillment.shipment.saga import ShipmentBookingSaga
from ordering.order.events import OrderCancelled, OrderPlaced, PaymentCaptured, ShipmentBooked


def _placed(payment_method="razorpay", placed_at=None):
    return OrderPlaced(
        order_id="ord-001",
        order_number="ORD202601050001",
        customer_id="cust-001",
        payment_method=payment_method,
        grand_total=1080.0,
        placed_at=placed_at or datetime.now(UTC),
    )


class TestOnOrderPlaced:
    def test_online_order_waits_for_payment(self):
        saga = ShipmentBookingSaga()
        now = datetime.now(UTC)

        saga.on_order_placed(_placed(placed_at=now))

        assert saga.status == "awaiting_payment"
        assert saga.order_number == "ORD202601050001"
        assert saga.started_at == now
        assert saga.booking_requests == 0

    @patch("fulfillment.shipment.saga.current_domain")
    def test_cod_order_requests_booking(self, mock_domain):
        saga = ShipmentBookingSaga()

        saga.on_order_placed(_placed(payment_method="cod"))

        assert saga.status == "awaiting_shipment"
        assert saga.booking_requests == 1
        [command], kwargs = mock_domain.process.call_args
        assert isinstance(command, BookShipment)
        assert command.order_number == "ORD202601050001"
        assert kwargs == {"asynchronous": False}


class TestOnPaymentCaptured:
    @patch("fulfillment.shipment.saga.current_domain")
    def test_requests_booking(self, mock_domain):
        saga = ShipmentBookingSaga()
        saga.order_number = "ORD202601050001"
        saga.status = "awaiting_payment"
        event = PaymentCaptured(
            order_id="ord-001",
            order_number="ORD202601050001",
            gateway_payment_id="pay_001",
            amount=1080.0,
            captured_at=datetime.now(UTC),
        )

        saga.on_payment_captured(event)

        assert saga.status == "awaiting_shipment"
        mock_domain.process.assert_called_once()


class TestTerminalEvents:
    def test_shipment_booked_completes(self):
        saga = ShipmentBookingSaga()
        saga.status = "awaiting_shipment"
        now = datetime.now(UTC)
        event = ShipmentBooked(
            order_id="ord-001",
            order_number="ORD202601050001",
            awb_code="AWB00000002",
            courier_name="Xpressbees",
            booked_at=now,
        )

        saga.on_shipment_booked(event)

        assert saga.status == "completed"
        assert saga.awb_code == "AWB00000002"
        assert saga.completed_at == now

    def test_cancellation_abandons(self):
        saga = ShipmentBookingSaga()
        saga.status = "awaiting_payment"
        event = OrderCancelled(
            order_id="ord-001",
            order_number="ORD202601050001",
            reason="Changed my mind",
            cancelled_by="customer",
            cancelled_at=datetime.now(UTC),
        )

        saga.on_order_cancelled(event)

        assert saga.status == "abandoned"
