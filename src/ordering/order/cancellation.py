"""Order cancellation and admin status changes.

Cancellation is allowed only while an order is pending or confirmed. The
status change and the stock credit for every line commit together; the
carrier shipment, if one was booked, is cancelled afterwards on a best-effort
basis.
"""

from collections.abc import Callable
from datetime import datetime

import structlog
from protean.exceptions import ValidationError
from protean.utils.globals import current_domain

from fulfillment.shipment.reconciler import ShippingReconciler
from inventory.stock.ledger import StockLedger
from notifications.sink import NotificationKind, NotificationSink, emit
from ordering.order.compensation import release_order_holds
from ordering.order.gate import CANCELLABLE_STATES, OrderStateGate
from ordering.order.order import CancellationActor, Order, OrderRepository
from shared.db import utcnow
from shared.domain import unit_of_work
from shared.exceptions import AuthorizationError, InvalidStatusTransition
from shared.status import OrderStatus, ShippingStatus, shipping_transition_allowed

logger = structlog.get_logger(__name__)


def parse_actor(value) -> CancellationActor:
    if isinstance(value, CancellationActor):
        return value
    try:
        return CancellationActor(str(value).lower())
    except ValueError:
        raise ValidationError({"actor": [f"Unknown actor {value!r}"]})


class OrderDesk:
    """Customer and admin actions on an existing order."""

    def __init__(
        self,
        ledger: StockLedger,
        gate: OrderStateGate,
        shipping: ShippingReconciler,
        notifications: NotificationSink,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.ledger = ledger
        self.gate = gate
        self.shipping = shipping
        self.notifications = notifications
        self.clock = clock

    @property
    def orders(self) -> OrderRepository:
        return current_domain.repository_for(Order)

    def get_order(self, order_number: str, customer_id: str | None = None) -> Order:
        order = self.orders.get_by_number(order_number)
        if customer_id is not None and order.customer_id != customer_id:
            raise AuthorizationError("Order belongs to another customer", order_number=order_number)
        return order

    def cancel_order(
        self,
        order_number: str,
        reason: str,
        actor: CancellationActor | str = CancellationActor.CUSTOMER,
        customer_id: str | None = None,
    ) -> Order:
        actor = parse_actor(actor)
        if not reason or not reason.strip():
            raise ValidationError({"reason": ["A cancellation reason is required"]})
        log = logger.bind(order_number=order_number, actor=actor.value)

        with unit_of_work():
            order = self.orders.get_by_number(order_number)
            if actor == CancellationActor.CUSTOMER and order.customer_id != customer_id:
                raise AuthorizationError("Not authorized to cancel this order", order_number=order_number)
            if order.order_status not in CANCELLABLE_STATES:
                raise InvalidStatusTransition(
                    {"status": [f"Order cannot be cancelled once {order.status}"]},
                    order_number=order_number,
                )

            now = self.clock()
            self.gate.transition(order, OrderStatus.CANCELLED, f"{actor.value}.cancel")
            order.mark_cancelled(reason.strip(), actor, now)
            release_order_holds(order, self.ledger, customer_id or actor.value, now)
            self.orders.add(order)

        log.info("order_cancelled", reason=order.cancellation_reason)

        if self.shipping.cancel_remote_shipment(order):
            with unit_of_work():
                order = self.orders.get_by_number(order_number)
                if shipping_transition_allowed(order.shipping_state, ShippingStatus.CANCELLED):
                    order.record_shipping_status(ShippingStatus.CANCELLED, self.clock())
                    self.orders.add(order)

        emit(
            self.notifications,
            NotificationKind.ORDER_CANCELLED,
            order_number=order_number,
            customer_id=order.customer_id,
            reason=order.cancellation_reason,
            cancelled_by=actor.value,
        )
        return order

    def update_status(self, order_number: str, status: str, note: str | None = None) -> Order:
        """Admin status change; cancellation is routed through ``cancel_order``."""
        try:
            requested = OrderStatus(status)
        except ValueError:
            raise ValidationError({"status": [f"Unknown order status {status!r}"]})

        if requested == OrderStatus.CANCELLED:
            return self.cancel_order(order_number, note or "Cancelled by admin", CancellationActor.ADMIN)

        with unit_of_work():
            order = self.orders.get_by_number(order_number)
            previous = order.status
            changed = self.gate.transition(order, requested, "admin.update")
            if changed and requested == OrderStatus.DELIVERED and order.delivered_at is None:
                order.delivered_at = self.clock()
            if note:
                order.add_note(note)
            self.orders.add(order)

        if changed:
            emit(
                self.notifications,
                NotificationKind.ORDER_STATUS_UPDATED,
                order_number=order_number,
                customer_id=order.customer_id,
                previous_status=previous,
                new_status=order.status,
            )
        return order

