"""StockLedger: the only writer of product stock.

Every successful operation changes ``Product.stock_quantity`` and appends
exactly one ``StockMovement`` in the same unit of work. Stock writes go
through ``ProductRepository.compare_and_set_stock``: the write names the
quantity it read, a lost race is re-read and retried, and a decrement that
would go negative is refused, so two checkouts racing for the last unit
cannot both succeed.

Calls made inside an open unit of work join it and are committed (or rolled
back) by the caller. Low-stock alerts are emitted only once the owning unit
of work commits and are dropped when it rolls back.
"""

from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import datetime

import structlog
from protean.exceptions import ObjectNotFoundError, ProteanException, ValidationError
from protean.utils.globals import current_domain

from inventory.stock.movement import MovementType, StockMovement
from inventory.stock.product import Product, StockStatus, stock_status_for
from notifications.sink import StockAlertSink
from shared.db import utcnow
from shared.domain import on_commit, unit_of_work
from shared.exceptions import StockError, error_message

logger = structlog.get_logger(__name__)

INSUFFICIENT_STOCK = "Insufficient stock"
WRITE_ATTEMPTS = 5


# ---------------------------------------------------------------------------
# Result types
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class Shortfall:
    product_id: str
    name: str | None
    requested: int
    available: int
    reason: str


@dataclass(frozen=True)
class AvailabilityReport:
    shortfalls: list[Shortfall] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.shortfalls


@dataclass(frozen=True)
class ReplayResult:
    product_id: str
    movements: int
    replayed_quantity: int
    current_quantity: int
    broken_at: int | None = None

    @property
    def consistent(self) -> bool:
        return self.broken_at is None and self.replayed_quantity == self.current_quantity


@dataclass(frozen=True)
class StockUpdate:
    product_id: str
    quantity: int
    movement_type: MovementType
    reason: str = ""


@dataclass
class BulkUpdateResult:
    results: list[dict] = field(default_factory=list)
    errors: list[dict] = field(default_factory=list)


def validate_quantity(quantity, field_name: str = "quantity") -> int:
    """Reject anything but a positive integer quantity."""
    if isinstance(quantity, bool) or not isinstance(quantity, int):
        if isinstance(quantity, float) and quantity.is_integer() and quantity > 0:
            return int(quantity)
        raise ValidationError({field_name: ["Quantity must be a whole number"]})
    if quantity <= 0:
        raise ValidationError({field_name: ["Quantity must be positive"]})
    return quantity


class StockLedger:
    def __init__(
        self,
        alert_sink: StockAlertSink,
        low_stock_threshold: int = 20,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.alert_sink = alert_sink
        self.low_stock_threshold = low_stock_threshold
        self.clock = clock

    @property
    def products(self):
        return current_domain.repository_for(Product)

    @property
    def movements(self):
        return current_domain.repository_for(StockMovement)

    def register_product(
        self,
        name: str,
        sku: str,
        price: float,
        initial_quantity: int = 0,
        image_url: str | None = None,
        low_stock_threshold: int | None = None,
        actor: str = "system",
    ) -> Product:
        """Start tracking a catalog product; opening stock is booked as a ``stock_in`` movement."""
        if price is None or price < 0:
            raise ValidationError({"price": ["Price must be zero or more"]})
        quantity = validate_quantity(initial_quantity, "initial_quantity") if initial_quantity else 0

        with unit_of_work():
            if self.products.find_by_sku(sku) is not None:
                raise ValidationError({"sku": [f"SKU {sku} is already registered"]})

            now = self.clock()
            threshold = low_stock_threshold if low_stock_threshold is not None else self.low_stock_threshold
            product = Product(
                name=name,
                sku=sku,
                price=price,
                image_url=image_url,
                low_stock_threshold=low_stock_threshold,
                stock_quantity=quantity,
                stock_status=stock_status_for(quantity, threshold).value,
                movement_seq=1 if quantity else 0,
                created_at=now,
                updated_at=now,
            )
            self.products.add(product)
            if quantity:
                self._record(product, MovementType.STOCK_IN, quantity, 0, "Initial stock", None, actor)

        logger.info("product_registered", product_id=str(product.id), sku=sku, stock_quantity=quantity)
        return product

    # -------------------------------------------------------------------
    # Debit / credit
    # -------------------------------------------------------------------
    def debit(
        self,
        product_id: str,
        quantity: int,
        reason: str,
        order_ref: str | None = None,
        actor: str = "system",
    ) -> StockMovement:
        """Remove stock; raises ``StockError`` when it would go negative."""
        quantity = validate_quantity(quantity)
        with unit_of_work():
            return self._write(
                product_id, MovementType.STOCK_OUT, lambda stock: stock - quantity, reason, order_ref, actor
            )

    def credit(
        self,
        product_id: str,
        quantity: int,
        reason: str,
        order_ref: str | None = None,
        actor: str = "system",
    ) -> StockMovement:
        """Add stock back. Always succeeds for a known product."""
        quantity = validate_quantity(quantity)
        with unit_of_work():
            return self._write(
                product_id, MovementType.STOCK_IN, lambda stock: stock + quantity, reason, order_ref, actor
            )

    def record_return(
        self,
        product_id: str,
        quantity: int,
        reason: str = "Customer return",
        order_ref: str | None = None,
        actor: str = "system",
    ) -> StockMovement:
        quantity = validate_quantity(quantity)
        with unit_of_work():
            return self._write(
                product_id, MovementType.RETURN, lambda stock: stock + quantity, reason, order_ref, actor
            )

    def write_off_damaged(
        self,
        product_id: str,
        quantity: int,
        reason: str = "Damaged",
        actor: str = "system",
    ) -> StockMovement:
        quantity = validate_quantity(quantity)
        with unit_of_work():
            return self._write(
                product_id, MovementType.DAMAGED, lambda stock: stock - quantity, reason, None, actor
            )

    def adjust(self, product_id: str, new_quantity: int, reason: str, actor: str = "system") -> StockMovement:
        """Set stock to an absolute counted value."""
        if isinstance(new_quantity, bool) or not isinstance(new_quantity, int) or new_quantity < 0:
            raise ValidationError({"new_quantity": ["Stock count must be a non-negative whole number"]})

        with unit_of_work():
            return self._write(
                product_id, MovementType.ADJUSTMENT, lambda stock: new_quantity, reason, None, actor
            )

    # -------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------
    def get_product(self, product_id: str) -> Product:
        return self.products.get(str(product_id))

    def history(self, product_id: str, limit: int = 50) -> list[StockMovement]:
        """Most recent movements first."""
        self.get_product(product_id)
        return self.movements.for_product(product_id, newest_first=True, limit=limit)

    def replay(self, product_id: str) -> ReplayResult:
        """Rebuild stock from the movement trail and compare it with the live value."""
        product = self.get_product(product_id)
        movements = self.movements.for_product(product_id)

        stock = 0
        broken_at = None
        for movement in movements:
            if broken_at is None and movement.previous_stock != stock:
                broken_at = movement.sequence
            stock = movement.apply_to(stock)
            if broken_at is None and movement.new_stock != stock:
                broken_at = movement.sequence

        return ReplayResult(
            product_id=str(product_id),
            movements=len(movements),
            replayed_quantity=stock,
            current_quantity=product.stock_quantity,
            broken_at=broken_at,
        )

    def check_availability(self, lines: Iterable[tuple[str, int]]) -> AvailabilityReport:
        """Compare requested quantities against live stock without writing anything."""
        requested: dict[str, int] = {}
        for product_id, quantity in lines:
            requested[str(product_id)] = requested.get(str(product_id), 0) + quantity

        products = self.products.find_many(requested)
        shortfalls = []
        for product_id, quantity in requested.items():
            product = products.get(product_id)
            if product is None:
                shortfalls.append(Shortfall(product_id, None, quantity, 0, "Product not found"))
            elif not product.is_active:
                shortfalls.append(Shortfall(product_id, product.name, quantity, 0, "Product is not available"))
            elif product.stock_quantity < quantity:
                shortfalls.append(
                    Shortfall(product_id, product.name, quantity, product.stock_quantity, INSUFFICIENT_STOCK)
                )
        return AvailabilityReport(shortfalls=shortfalls)

    def low_stock_products(self) -> list[Product]:
        return sorted(self.products.with_status(StockStatus.LOW_STOCK), key=lambda p: p.stock_quantity)

    def out_of_stock_products(self) -> list[Product]:
        return self.products.with_status(StockStatus.OUT_OF_STOCK)

    # -------------------------------------------------------------------
    # Bulk
    # -------------------------------------------------------------------
    def bulk_update(self, updates: Iterable[StockUpdate], actor: str = "system") -> BulkUpdateResult:
        """Apply each update in its own unit of work; failures are collected, not raised."""
        outcome = BulkUpdateResult()
        operations = {
            MovementType.STOCK_IN: lambda u: self.credit(u.product_id, u.quantity, u.reason, actor=actor),
            MovementType.STOCK_OUT: lambda u: self.debit(u.product_id, u.quantity, u.reason, actor=actor),
            MovementType.ADJUSTMENT: lambda u: self.adjust(u.product_id, u.quantity, u.reason, actor=actor),
            MovementType.RETURN: lambda u: self.record_return(u.product_id, u.quantity, u.reason, actor=actor),
            MovementType.DAMAGED: lambda u: self.write_off_damaged(u.product_id, u.quantity, u.reason, actor=actor),
        }
        for stock_update in updates:
            try:
                movement = operations[stock_update.movement_type](stock_update)
            except ProteanException as exc:
                outcome.errors.append({"product_id": stock_update.product_id, "error": error_message(exc)})
                continue
            outcome.results.append(
                {"product_id": stock_update.product_id, "success": True, "new_stock": movement.new_stock}
            )
        return outcome

    # -------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------
    def _write(self, product_id, movement_type, apply, reason, order_ref, actor) -> StockMovement:
        """Read, compute and compare-and-set the product's stock, retrying lost races."""
        for _ in range(WRITE_ATTEMPTS):
            try:
                product = self.get_product(product_id)
            except ObjectNotFoundError:
                raise ObjectNotFoundError(f"Product {product_id} not found") from None

            previous = product.stock_quantity
            new_stock = apply(previous)
            if new_stock < 0:
                logger.info(
                    "stock_debit_rejected",
                    product_id=str(product_id),
                    requested=previous - new_stock,
                    available=previous,
                )
                raise StockError(
                    f"Insufficient stock for {product.name}. Available: {previous}",
                    product_id=str(product_id),
                    requested=previous - new_stock,
                    available=previous,
                )

            status = stock_status_for(new_stock, product.threshold(self.low_stock_threshold))
            now = self.clock()
            if self.products.compare_and_set_stock(product, new_stock, status, now):
                product.stock_quantity = new_stock
                product.updated_at = now
                product.stock_status = status.value
                product.movement_seq += 1
                return self._record(product, movement_type, abs(new_stock - previous), previous, reason, order_ref, actor)

            logger.info("stock_write_conflict", product_id=str(product_id), read_stock=previous)

        raise StockError(
            f"Stock for product {product_id} is changing too fast; try again",
            product_id=str(product_id),
        )

    def _record(self, product, movement_type, quantity, previous, reason, order_ref, actor) -> StockMovement:
        movement = StockMovement(
            product_id=str(product.id),
            sequence=product.movement_seq,
            sku=product.sku,
            movement_type=movement_type.value,
            quantity=quantity,
            previous_stock=previous,
            new_stock=product.stock_quantity,
            reason=reason or "",
            order_number=order_ref,
            actor=actor,
            created_at=self.clock(),
        )
        self.movements.add(movement)

        logger.info(
            "stock_movement_recorded",
            product_id=str(product.id),
            type=movement_type.value,
            quantity=quantity,
            previous_stock=previous,
            new_stock=product.stock_quantity,
            order_number=order_ref,
        )

        if product.stock_status == StockStatus.LOW_STOCK.value:
            alert = dict(
                product_id=str(product.id),
                sku=product.sku,
                name=product.name,
                stock_quantity=product.stock_quantity,
                threshold=product.threshold(self.low_stock_threshold),
            )
            on_commit(lambda: self._alert(alert))

        return movement

    def _alert(self, alert: dict) -> None:
        try:
            self.alert_sink.low_stock(**alert)
        except Exception:
            logger.exception("low_stock_alert_failed", product_id=alert["product_id"])
