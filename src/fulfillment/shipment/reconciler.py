"""ShippingReconciler: folds carrier state into orders.

Two directions:

* outbound, ``create_shipment_for_order`` books the shipment with the
  carrier (create order → pick courier → assign AWB). It is idempotent and
  resumable: an order that already has an AWB is left alone, and an order
  with a carrier shipment id but no AWB resumes at courier selection. It
  never raises; every failure comes back as ``ShipmentResult(success=False)``.
* inbound, ``apply_carrier_event`` maps a carrier webhook onto the order's
  shipping status and asks the ``OrderStateGate`` for the matching order
  status (delivered, cancelled, returned). A carrier cancellation that
  cancels the order also puts its stock back and releases its coupon.
"""

from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime

import structlog
from protean.exceptions import ValidationError
from protean.utils.globals import current_domain

from fulfillment.carrier.port import CarrierPort
from fulfillment.shipment.status_codes import parse_carrier_status
from inventory.stock.ledger import StockLedger
from notifications.sink import NotificationKind, NotificationSink, emit
from ordering.order.compensation import release_order_holds
from ordering.order.gate import OrderStateGate
from ordering.order.order import CancellationActor, Order, OrderRepository
from shared.db import as_utc, utcnow
from shared.domain import unit_of_work
from shared.exceptions import CarrierError, InvalidStatusTransition, OutOfOrderTransition
from shared.status import OrderStatus, ShippingStatus, shipping_transition_allowed

logger = structlog.get_logger(__name__)

_TERMINAL_ORDER_STATES = {OrderStatus.CANCELLED, OrderStatus.RETURNED, OrderStatus.REFUNDED}


@dataclass(frozen=True)
class ShipmentResult:
    success: bool
    order_number: str | None = None
    awb_code: str | None = None
    courier_name: str | None = None
    warning: str | None = None
    error: str | None = None
    retryable: bool = True


@dataclass(frozen=True)
class CarrierEventResult:
    matched: bool
    order_number: str | None = None
    previous_status: str | None = None
    shipping_status: str | None = None
    changed: bool = False


@dataclass(frozen=True)
class ShippingOptions:
    pickup_location: str = "Primary"
    pickup_postal_code: str = "110001"
    parcel_weight_kg: float = 0.3
    tracking_url_template: str = "https://shiprocket.co/tracking/{awb}"


def parse_etd(value) -> datetime | None:
    """Best-effort parse of the carrier's estimated delivery date."""
    if not value:
        return None
    for fmt in ("%Y-%m-%d %H:%M:%S", "%Y-%m-%dT%H:%M:%S", "%Y-%m-%d", "%d-%m-%Y", "%b %d, %Y"):
        try:
            parsed = datetime.strptime(str(value).strip(), fmt)
        except ValueError:
            continue
        return parsed.replace(tzinfo=UTC)
    try:
        parsed = datetime.fromisoformat(str(value))
    except ValueError:
        logger.debug("carrier_etd_unparsed", etd=value)
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)


class ShippingReconciler:
    def __init__(
        self,
        carrier: CarrierPort,
        gate: OrderStateGate,
        ledger: StockLedger,
        notifications: NotificationSink,
        options: ShippingOptions | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.carrier = carrier
        self.gate = gate
        self.ledger = ledger
        self.notifications = notifications
        self.options = options or ShippingOptions()
        self.clock = clock

    @property
    def orders(self) -> OrderRepository:
        return current_domain.repository_for(Order)

    # -------------------------------------------------------------------
    # Outbound: shipment creation
    # -------------------------------------------------------------------
    def create_shipment_for_order(self, order_number: str) -> ShipmentResult:
        log = logger.bind(order_number=order_number)
        try:
            return self._create_shipment(order_number, log)
        except CarrierError as exc:
            log.warning("shipment_creation_failed", error=exc.message)
            return ShipmentResult(success=False, order_number=order_number, error=exc.message)
        except Exception as exc:
            log.exception("shipment_creation_crashed")
            return ShipmentResult(success=False, order_number=order_number, error=str(exc))

    def _create_shipment(self, order_number: str, log) -> ShipmentResult:
        order = self.orders.find_by_number(order_number)
        if order is None:
            return ShipmentResult(success=False, order_number=order_number, error="Order not found", retryable=False)
        if order.awb_code:
            log.info("shipment_already_created", awb_code=order.awb_code)
            return ShipmentResult(
                success=True, order_number=order_number, awb_code=order.awb_code, courier_name=order.courier_name
            )
        if order.order_status in _TERMINAL_ORDER_STATES:
            return ShipmentResult(
                success=False,
                order_number=order_number,
                error=f"Order is {order.status}",
                retryable=False,
            )
        if not order.cleared_for_fulfillment:
            return ShipmentResult(success=False, order_number=order_number, error="Order is not paid", retryable=False)
        if not order.items:
            return ShipmentResult(success=False, order_number=order_number, error="Order has no items", retryable=False)
        address = order.shipping_address
        if address is None:
            return ShipmentResult(
                success=False, order_number=order_number, error="Order has no shipping address", retryable=False
            )

        shipment_id = order.carrier_shipment_id
        if order.carrier_order_id:
            log.info("shipment_resuming", carrier_order_id=order.carrier_order_id, shipment_id=shipment_id)
        else:
            shipment = self.carrier.create_shipment(self.build_payload(order))
            with unit_of_work():
                order = self.orders.get(order.id)
                order.carrier_order_id = shipment.order_id
                order.carrier_shipment_id = shipment.shipment_id
                self.orders.add(order)
            shipment_id = shipment.shipment_id
            log.info("carrier_order_created", carrier_order_id=shipment.order_id, shipment_id=shipment_id)

        if not shipment_id:
            raise CarrierError(f"Missing shipment_id for order {order_number}")

        couriers = self.carrier.available_couriers(
            self.options.pickup_postal_code,
            address.postal_code,
            self.options.parcel_weight_kg,
            cod=order.is_cod,
        )
        if not couriers:
            # The carrier order exists; the next attempt resumes at courier selection
            log.warning("no_courier_available", delivery_postal_code=address.postal_code)
            return ShipmentResult(
                success=False, order_number=order_number, error="No courier available", retryable=True
            )

        # min() keeps the first of equally priced couriers
        selected = min(couriers, key=lambda courier: courier.rate)
        log.info("courier_selected", courier=selected.courier_name, rate=selected.rate)

        assignment = self.carrier.assign_awb(shipment_id, selected.courier_company_id)
        courier_name = assignment.courier_name or selected.courier_name

        with unit_of_work():
            order = self.orders.get(order.id)
            order.book_shipment(
                awb_code=assignment.awb_code,
                courier_name=courier_name,
                courier_company_id=selected.courier_company_id,
                tracking_url=self.options.tracking_url_template.format(awb=assignment.awb_code),
                estimated_delivery=parse_etd(selected.etd),
                now=self.clock(),
            )
            if shipping_transition_allowed(order.shipping_state, ShippingStatus.CONFIRMED):
                order.record_shipping_status(ShippingStatus.CONFIRMED, self.clock())
            self.orders.add(order)

        log.info("awb_assigned", awb_code=assignment.awb_code, courier=selected.courier_name)
        return ShipmentResult(
            success=True,
            order_number=order_number,
            awb_code=assignment.awb_code,
            courier_name=courier_name,
        )

    def build_payload(self, order: Order) -> dict:
        address = order.shipping_address
        return {
            "order_id": order.order_number,
            "order_date": as_utc(order.created_at).strftime("%Y-%m-%d"),
            "pickup_location": self.options.pickup_location,
            "channel_id": "",
            "comment": f"Order {order.order_number}",
            "billing_customer_name": address.first_name,
            "billing_last_name": address.last_name,
            "billing_address": address.line1,
            "billing_address_2": address.landmark or "",
            "billing_city": address.city,
            "billing_pincode": address.postal_code,
            "billing_state": address.state,
            "billing_country": address.country or "India",
            "billing_email": address.email or "",
            "billing_phone": address.phone,
            "shipping_is_billing": True,
            "order_items": [
                {
                    "name": item.product_name,
                    "sku": item.sku,
                    "units": item.quantity,
                    "selling_price": item.unit_price,
                    "discount": "",
                    "tax": "",
                }
                for item in order.items
            ],
            "payment_method": "COD" if order.is_cod else "Prepaid",
            "shipping_charges": order.shipping_charge or 0,
            "giftwrap_charges": 0,
            "transaction_charges": 0,
            "total_discount": order.discount or 0,
            "sub_total": order.subtotal,
            "length": 10,
            "breadth": 10,
            "height": 5,
            "weight": self.options.parcel_weight_kg,
        }

    # -------------------------------------------------------------------
    # Inbound: carrier events
    # -------------------------------------------------------------------
    def apply_carrier_event(self, payload: dict) -> CarrierEventResult:
        """Fold one carrier status update into its order; joins an open unit of work."""
        awb = payload.get("awb")
        carrier_order_id = payload.get("order_id")
        shipment_id = payload.get("shipment_id")
        current_status = payload.get("current_status")
        status_id = payload.get("current_status_id")
        pending_notifications: list[tuple[NotificationKind, dict]] = []

        with unit_of_work():
            order = self.find_order_for_event(awb, carrier_order_id, shipment_id)
            if order is None:
                logger.info(
                    "carrier_event_unmatched",
                    awb=awb,
                    carrier_order_id=carrier_order_id,
                    shipment_id=shipment_id,
                )
                return CarrierEventResult(matched=False)

            log = logger.bind(order_number=order.order_number, awb=awb, status_id=status_id)
            previous = order.shipping_state
            target = previous

            carrier_status = parse_carrier_status(status_id)
            if carrier_status is None:
                log.info("carrier_status_unmapped", current_status=current_status)
            elif carrier_status.shipping_status != previous:
                if shipping_transition_allowed(previous, carrier_status.shipping_status):
                    target = carrier_status.shipping_status
                else:
                    log.info(
                        "carrier_event_stale",
                        current=previous.value,
                        requested=carrier_status.shipping_status.value,
                    )

            if awb and not order.tracking_number:
                order.tracking_number = str(awb)
            estimated = parse_etd(payload.get("etd"))
            if estimated is not None:
                order.estimated_delivery = estimated

            changed = target != previous
            if changed:
                now = self.clock()
                order.record_shipping_status(target, now)
                base = {
                    "order_number": order.order_number,
                    "customer_id": order.customer_id,
                    "awb": awb,
                }

                if target == ShippingStatus.DELIVERED:
                    order.delivered_at = now
                    self._request_status(order, OrderStatus.DELIVERED, "carrier.delivered", log)
                    pending_notifications.append((NotificationKind.ORDER_DELIVERED, base))
                elif target == ShippingStatus.CANCELLED:
                    if self._request_status(order, OrderStatus.CANCELLED, "carrier.cancelled", log):
                        self._cancel_for_carrier(order, current_status, now)
                    pending_notifications.append((NotificationKind.SHIPPING_ISSUE, {**base, "status": current_status}))
                elif target == ShippingStatus.RETURNED:
                    self._request_status(order, OrderStatus.RETURNED, "carrier.returned", log)
                    pending_notifications.append((NotificationKind.SHIPPING_ISSUE, {**base, "status": current_status}))

                pending_notifications.append(
                    (
                        NotificationKind.SHIPPING_STATUS_UPDATED,
                        {
                            **base,
                            "previous_status": previous.value,
                            "new_status": target.value,
                            "current_status": current_status,
                        },
                    )
                )
                log.info("shipping_status_updated", previous=previous.value, shipping_status=target.value)

            self.orders.add(order)
            result = CarrierEventResult(
                matched=True,
                order_number=order.order_number,
                previous_status=previous.value,
                shipping_status=target.value,
                changed=changed,
            )

        for kind, data in pending_notifications:
            emit(self.notifications, kind, **data)
        return result

    def _cancel_for_carrier(self, order: Order, current_status, now: datetime) -> None:
        """The carrier cancelled a shipment the order had not left with yet; give back its holds."""
        reason = f"Shipment cancelled by carrier ({current_status or 'cancelled'})"
        order.mark_cancelled(reason, CancellationActor.CARRIER, now)
        release_order_holds(order, self.ledger, CancellationActor.CARRIER.value, now)

    def find_order_for_event(self, awb, carrier_order_id, shipment_id) -> Order | None:
        """Look up by AWB, then carrier order id, then carrier shipment id."""
        lookups = (
            ("awb_code", awb),
            ("carrier_order_id", carrier_order_id),
            ("carrier_shipment_id", shipment_id),
        )
        for field_name, value in lookups:
            if value in (None, ""):
                continue
            order = self.orders.find_by(**{field_name: str(value)})
            if order is not None:
                return order
        return None

    def _request_status(self, order: Order, requested: OrderStatus, cause: str, log) -> bool:
        try:
            return self.gate.transition(order, requested, cause)
        except OutOfOrderTransition:
            log.warning("order_status_deferred_until_paid", requested=requested.value)
        except InvalidStatusTransition:
            log.warning("order_status_not_applied", current=order.status, requested=requested.value)
        return False

    def catch_up_order_status(self, order: Order) -> bool:
        """Apply the order status implied by a shipping status that arrived before payment.

        Call inside the caller's unit of work, after the order became cleared
        for fulfilment; the caller persists the order.
        """
        if order.shipping_state != ShippingStatus.DELIVERED or order.order_status == OrderStatus.DELIVERED:
            return False
        log = logger.bind(order_number=order.order_number)
        changed = self._request_status(order, OrderStatus.DELIVERED, "carrier.delivered.catch_up", log)
        if changed and order.delivered_at is None:
            order.delivered_at = self.clock()
        return changed

    # -------------------------------------------------------------------
    # Admin pass-throughs
    # -------------------------------------------------------------------
    def cancel_remote_shipment(self, order: Order) -> bool:
        """Best-effort carrier cancellation; failures are logged and reported as False."""
        if not order.awb_code and not order.carrier_shipment_id:
            return False
        try:
            self.carrier.cancel_shipment(awb_code=order.awb_code, shipment_id=order.carrier_shipment_id)
        except CarrierError as exc:
            logger.warning("remote_shipment_cancel_failed", order_number=order.order_number, error=exc.message)
            return False
        logger.info("remote_shipment_cancelled", order_number=order.order_number, awb=order.awb_code)
        return True

    def track(self, order_number: str) -> dict:
        order = self.orders.get_by_number(order_number)
        if order.awb_code:
            tracking = self.carrier.track_awb(order.awb_code)
        elif order.carrier_shipment_id:
            tracking = self.carrier.track_shipment(order.carrier_shipment_id)
        else:
            raise ValidationError({"order_number": ["Order has no shipment yet"]})
        return {
            "order_number": order.order_number,
            "shipping_status": order.shipping_status,
            "awb_code": order.awb_code,
            "tracking_url": order.tracking_url,
            "tracking": tracking,
        }

    def _shipment_ids(self, order_numbers: list[str]) -> list[str]:
        ids = []
        for order_number in order_numbers:
            order = self.orders.get_by_number(order_number)
            if not order.carrier_shipment_id:
                raise ValidationError({"order_number": [f"Order {order_number} has no shipment yet"]})
            ids.append(order.carrier_shipment_id)
        return ids

    def schedule_pickup(self, order_number: str) -> dict:
        return self.carrier.schedule_pickup(self._shipment_ids([order_number]))

    def print_label(self, order_number: str) -> dict:
        return self.carrier.print_label(self._shipment_ids([order_number]))

    def generate_manifest(self, order_numbers: list[str]) -> dict:
        return self.carrier.generate_manifest(self._shipment_ids(order_numbers))
