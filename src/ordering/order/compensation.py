"""Undo the holds an order took at checkout once it is cancelled.

Every line's quantity goes back to stock and any coupon redemption the order
took is released. Runs inside the unit of work that moved the order to
``cancelled``, whoever cancelled it (customer, admin or carrier).
"""

from datetime import datetime

import structlog

from inventory.stock.ledger import StockLedger
from ordering.checkout.coupons import release_for_order
from ordering.order.order import Order

logger = structlog.get_logger(__name__)


def release_order_holds(order: Order, ledger: StockLedger, actor: str, now: datetime) -> None:
    for item in order.items:
        ledger.credit(
            str(item.product_id),
            item.quantity,
            reason=f"Order {order.order_number} cancelled",
            order_ref=order.order_number,
            actor=actor,
        )
    released = release_for_order(order.order_number, now)
    logger.info(
        "order_holds_released",
        order_number=order.order_number,
        lines=len(order.items),
        coupons_released=released,
        actor=actor,
    )
