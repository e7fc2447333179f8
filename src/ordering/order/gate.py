"""OrderStateGate: the single writer of ``Order.status``.

Checkout, the payment reconciler, the carrier reconciler, cancellation and
admin actions all request status changes here. The gate validates the edge
against the transition table, refuses fulfilment states for orders that are
not cleared for fulfilment yet, and treats re-requesting the current state
as a no-op.
"""

from collections.abc import Callable
from datetime import datetime

import structlog

from ordering.order.order import Order
from shared.db import utcnow
from shared.exceptions import InvalidStatusTransition, OutOfOrderTransition
from shared.status import OrderStatus

logger = structlog.get_logger(__name__)

_VALID_TRANSITIONS = {
    OrderStatus.PENDING: {
        OrderStatus.CONFIRMED,
        OrderStatus.PROCESSING,
        OrderStatus.SHIPPED,
        OrderStatus.DELIVERED,
        OrderStatus.CANCELLED,
    },
    OrderStatus.CONFIRMED: {
        OrderStatus.PROCESSING,
        OrderStatus.SHIPPED,
        OrderStatus.DELIVERED,
        OrderStatus.CANCELLED,
    },
    OrderStatus.PROCESSING: {OrderStatus.SHIPPED, OrderStatus.DELIVERED},
    OrderStatus.SHIPPED: {OrderStatus.DELIVERED},
    OrderStatus.DELIVERED: {OrderStatus.RETURNED, OrderStatus.REFUNDED},
    OrderStatus.CANCELLED: {OrderStatus.RETURNED, OrderStatus.REFUNDED},
    OrderStatus.RETURNED: {OrderStatus.REFUNDED},
    OrderStatus.REFUNDED: set(),  # Terminal
}

# Reaching these requires payment (or cash on delivery)
_FULFILMENT_STATES = {OrderStatus.PROCESSING, OrderStatus.SHIPPED, OrderStatus.DELIVERED}

CANCELLABLE_STATES = {OrderStatus.PENDING, OrderStatus.CONFIRMED}


def allowed_targets(current: OrderStatus) -> set[OrderStatus]:
    return set(_VALID_TRANSITIONS[current])


class OrderStateGate:
    def __init__(self, clock: Callable[[], datetime] = utcnow) -> None:
        self.clock = clock

    def check(self, order: Order, requested: OrderStatus) -> None:
        """Raise if ``requested`` is not reachable from the order's current status."""
        current = order.order_status
        if requested == current:
            return
        if requested not in _VALID_TRANSITIONS[current]:
            raise InvalidStatusTransition(
                {"status": [f"Cannot transition from {current.value} to {requested.value}"]},
                order_number=order.order_number,
            )
        if requested in _FULFILMENT_STATES and not order.cleared_for_fulfillment:
            raise OutOfOrderTransition(
                {"status": [f"Order {order.order_number} is not paid; cannot move to {requested.value}"]},
                order_number=order.order_number,
            )

    def can_transition(self, order: Order, requested: OrderStatus) -> bool:
        try:
            self.check(order, requested)
        except InvalidStatusTransition:
            return False
        return True

    def transition(self, order: Order, requested: OrderStatus, cause: str) -> bool:
        """Move ``order`` to ``requested``.

        Returns True when the status changed, False when the order was
        already in the requested state.
        """
        current = order.order_status
        if requested == current:
            logger.debug("order_status_unchanged", order_number=order.order_number, status=current.value, cause=cause)
            return False

        try:
            self.check(order, requested)
        except InvalidStatusTransition:
            logger.warning(
                "order_status_transition_rejected",
                order_number=order.order_number,
                current=current.value,
                requested=requested.value,
                payment_status=order.payment_status,
                cause=cause,
            )
            raise

        order.record_status(requested, cause, self.clock())
        logger.info(
            "order_status_changed",
            order_number=order.order_number,
            previous=current.value,
            status=requested.value,
            cause=cause,
        )
        return True
