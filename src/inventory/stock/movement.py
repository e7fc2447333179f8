"""Append-only stock movement ledger entries."""

from enum import Enum

from protean.fields import DateTime, Identifier, Integer, String

from shared.db import fetch_all
from shared.domain import orderstream


class MovementType(Enum):
    STOCK_IN = "stock_in"
    STOCK_OUT = "stock_out"
    ADJUSTMENT = "adjustment"
    RETURN = "return"
    DAMAGED = "damaged"


@orderstream.aggregate
class StockMovement:
    """One applied stock change with its before/after snapshot.

    Written by the ledger in the same unit of work as the stock update it
    describes and never updated or deleted afterwards. ``sequence`` numbers
    the product's movements from 1 in the order they were applied.
    """

    product_id = Identifier(required=True)
    sequence = Integer(required=True, min_value=1)
    sku = String(required=True, max_length=50)
    movement_type = String(required=True, max_length=20, choices=MovementType)
    quantity = Integer(required=True, min_value=0)
    previous_stock = Integer(required=True)
    new_stock = Integer(required=True)
    reason = String(max_length=500, default="")
    order_number = String(max_length=50)
    actor = String(max_length=100, default="system")
    created_at = DateTime()

    def apply_to(self, stock: int) -> int:
        """Stock level after replaying this movement on top of ``stock``."""
        movement_type = MovementType(self.movement_type)
        if movement_type in (MovementType.STOCK_IN, MovementType.RETURN):
            return stock + self.quantity
        if movement_type in (MovementType.STOCK_OUT, MovementType.DAMAGED):
            return stock - self.quantity
        return self.new_stock

    def to_dict(self) -> dict:
        return {
            "id": str(self.id),
            "product_id": str(self.product_id),
            "sequence": self.sequence,
            "sku": self.sku,
            "type": self.movement_type,
            "quantity": self.quantity,
            "previous_stock": self.previous_stock,
            "new_stock": self.new_stock,
            "reason": self.reason,
            "order_number": self.order_number,
            "actor": self.actor,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


@orderstream.repository(part_of=StockMovement)
class StockMovementRepository:
    def for_product(self, product_id: str, newest_first: bool = False, limit: int | None = None) -> list[StockMovement]:
        query = self._dao.query.filter(product_id=str(product_id)).order_by("-sequence" if newest_first else "sequence")
        if limit is not None:
            return query.limit(limit).all().items
        return fetch_all(query)
