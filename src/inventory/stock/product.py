"""Product stock record and its repository.

Catalog data (name, price, imagery) is owned by the catalog collaborator; the
engine only reads it for purchase snapshots. ``stock_quantity``,
``stock_status`` and ``movement_seq`` are written exclusively by
``StockLedger`` through the compare-and-set updates on ``ProductRepository``:
every stock write names the quantity and movement sequence it read, so two
writers racing on the same product cannot both succeed and stock never goes
negative.
"""

from enum import Enum

from protean import invariant
from protean.exceptions import ValidationError
from protean.fields import Boolean, DateTime, Float, Integer, String

from shared.db import fetch_all
from shared.domain import orderstream


class StockStatus(Enum):
    IN_STOCK = "in_stock"
    LOW_STOCK = "low_stock"
    OUT_OF_STOCK = "out_of_stock"


def stock_status_for(quantity: int, threshold: int) -> StockStatus:
    """Derive the stock status for a quantity against a low-stock threshold."""
    if quantity <= 0:
        return StockStatus.OUT_OF_STOCK
    if quantity <= threshold:
        return StockStatus.LOW_STOCK
    return StockStatus.IN_STOCK


@orderstream.aggregate
class Product:
    name = String(required=True, max_length=255)
    sku = String(required=True, max_length=50, unique=True)
    price = Float(required=True, min_value=0.0)
    image_url = String(max_length=500)
    is_active = Boolean(default=True)
    stock_quantity = Integer(default=0)
    stock_status = String(max_length=20, choices=StockStatus, default=StockStatus.OUT_OF_STOCK.value)
    low_stock_threshold = Integer(min_value=0)
    movement_seq = Integer(default=0)
    created_at = DateTime()
    updated_at = DateTime()

    @invariant.post
    def stock_cannot_go_negative(self):
        if self.stock_quantity is not None and self.stock_quantity < 0:
            raise ValidationError({"stock_quantity": ["Stock cannot go negative"]})

    def threshold(self, default: int) -> int:
        return self.low_stock_threshold if self.low_stock_threshold is not None else default

    def to_dict(self) -> dict:
        return {
            "id": str(self.id),
            "name": self.name,
            "sku": self.sku,
            "price": self.price,
            "is_active": self.is_active,
            "stock_quantity": self.stock_quantity,
            "stock_status": self.stock_status,
            "low_stock_threshold": self.low_stock_threshold,
        }


@orderstream.repository(part_of=Product)
class ProductRepository:
    def find_by_sku(self, sku: str) -> Product | None:
        return self._dao.query.filter(sku=sku).all().first

    def find_many(self, product_ids) -> dict[str, Product]:
        ids = [str(product_id) for product_id in product_ids]
        if not ids:
            return {}
        return {str(p.id): p for p in fetch_all(self._dao.query.filter(id__in=ids))}

    def with_status(self, status: StockStatus) -> list[Product]:
        return fetch_all(self._dao.query.filter(is_active=True, stock_status=status.value))

    def compare_and_set_stock(self, product: Product, new_quantity: int, status: StockStatus, now) -> bool:
        """Write ``new_quantity`` only if nobody changed the stock since ``product`` was read.

        A single conditional UPDATE on the SQL providers: it matches no row
        when another writer got there first.
        """
        updated = self._dao.query.filter(
            id=str(product.id),
            stock_quantity=product.stock_quantity,
            movement_seq=product.movement_seq,
        ).update_all(
            stock_quantity=new_quantity,
            stock_status=status.value,
            movement_seq=product.movement_seq + 1,
            updated_at=now,
        )
        return updated == 1
