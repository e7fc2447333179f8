"""FastAPI routes for the Inventory context: stock levels, movements and admin corrections."""

from fastapi import APIRouter, Depends, Query

from inventory.api.schemas import (
    AdjustStockRequest,
    BulkStockUpdateRequest,
    BulkStockUpdateResponse,
    ProductStockResponse,
    RegisterProductRequest,
    ReplayResponse,
    StockChangeRequest,
    StockMovementResponse,
)
from inventory.stock.ledger import StockUpdate
from inventory.stock.movement import MovementType
from shared.context import Reconciliation, get_context
from shared.exceptions import ValidationError

inventory_router = APIRouter(prefix="/inventory", tags=["inventory"])


@inventory_router.post("/products", status_code=201, response_model=ProductStockResponse)
async def register_product(
    body: RegisterProductRequest,
    context: Reconciliation = Depends(get_context),
) -> ProductStockResponse:
    """Start tracking stock for a catalog product."""
    product = context.ledger.register_product(
        name=body.name,
        sku=body.sku,
        price=body.price,
        initial_quantity=body.initial_quantity,
        image_url=body.image_url,
        low_stock_threshold=body.low_stock_threshold,
    )
    return ProductStockResponse(**product.to_dict())


@inventory_router.get("/low-stock", response_model=list[ProductStockResponse])
async def low_stock(context: Reconciliation = Depends(get_context)) -> list[ProductStockResponse]:
    return [ProductStockResponse(**p.to_dict()) for p in context.ledger.low_stock_products()]


@inventory_router.get("/out-of-stock", response_model=list[ProductStockResponse])
async def out_of_stock(context: Reconciliation = Depends(get_context)) -> list[ProductStockResponse]:
    return [ProductStockResponse(**p.to_dict()) for p in context.ledger.out_of_stock_products()]


@inventory_router.post("/bulk", response_model=BulkStockUpdateResponse)
async def bulk_update(
    body: BulkStockUpdateRequest,
    context: Reconciliation = Depends(get_context),
) -> BulkStockUpdateResponse:
    """Apply several stock changes; each one succeeds or fails on its own."""
    updates = []
    for item in body.updates:
        try:
            movement_type = MovementType(item.type)
        except ValueError:
            raise ValidationError({"type": [f"Unknown movement type {item.type!r}"]})
        updates.append(StockUpdate(item.product_id, item.quantity, movement_type, item.reason))
    result = context.ledger.bulk_update(updates, actor=body.actor)
    return BulkStockUpdateResponse(results=result.results, errors=result.errors)


@inventory_router.get("/{product_id}/history", response_model=list[StockMovementResponse])
async def stock_history(
    product_id: str,
    limit: int = Query(default=50, ge=1, le=500),
    context: Reconciliation = Depends(get_context),
) -> list[StockMovementResponse]:
    return [StockMovementResponse(**m.to_dict()) for m in context.ledger.history(product_id, limit)]


@inventory_router.get("/{product_id}/replay", response_model=ReplayResponse)
async def replay_stock(product_id: str, context: Reconciliation = Depends(get_context)) -> ReplayResponse:
    """Rebuild stock from the movement trail and report whether it matches."""
    result = context.ledger.replay(product_id)
    return ReplayResponse(
        product_id=result.product_id,
        movements=result.movements,
        replayed_quantity=result.replayed_quantity,
        current_quantity=result.current_quantity,
        broken_at=result.broken_at,
        consistent=result.consistent,
    )


@inventory_router.post("/{product_id}/adjust", response_model=StockMovementResponse)
async def adjust_stock(
    product_id: str,
    body: AdjustStockRequest,
    context: Reconciliation = Depends(get_context),
) -> StockMovementResponse:
    """Set stock to a physically counted value."""
    movement = context.ledger.adjust(product_id, body.new_quantity, body.reason, actor=body.actor)
    return StockMovementResponse(**movement.to_dict())


@inventory_router.post("/{product_id}/receive", response_model=StockMovementResponse)
async def receive_stock(
    product_id: str,
    body: StockChangeRequest,
    context: Reconciliation = Depends(get_context),
) -> StockMovementResponse:
    movement = context.ledger.credit(
        product_id, body.quantity, body.reason or "Stock received", order_ref=body.order_number, actor=body.actor
    )
    return StockMovementResponse(**movement.to_dict())


@inventory_router.post("/{product_id}/returns", response_model=StockMovementResponse)
async def record_return(
    product_id: str,
    body: StockChangeRequest,
    context: Reconciliation = Depends(get_context),
) -> StockMovementResponse:
    movement = context.ledger.record_return(
        product_id, body.quantity, body.reason or "Customer return", order_ref=body.order_number, actor=body.actor
    )
    return StockMovementResponse(**movement.to_dict())


@inventory_router.post("/{product_id}/damage", response_model=StockMovementResponse)
async def write_off_damaged(
    product_id: str,
    body: StockChangeRequest,
    context: Reconciliation = Depends(get_context),
) -> StockMovementResponse:
    movement = context.ledger.write_off_damaged(product_id, body.quantity, body.reason or "Damaged", actor=body.actor)
    return StockMovementResponse(**movement.to_dict())
