"""Pydantic request/response schemas for the Inventory API."""

from pydantic import BaseModel, Field


# ---------------------------------------------------------------------------
# Request Schemas
# ---------------------------------------------------------------------------
class RegisterProductRequest(BaseModel):
    name: str
    sku: str
    price: float = Field(ge=0)
    initial_quantity: int = Field(default=0, ge=0)
    image_url: str | None = None
    low_stock_threshold: int | None = Field(default=None, ge=0)


class StockChangeRequest(BaseModel):
    quantity: int = Field(gt=0)
    reason: str = ""
    order_number: str | None = None
    actor: str = "admin"


class AdjustStockRequest(BaseModel):
    new_quantity: int = Field(ge=0)
    reason: str = Field(min_length=1)
    actor: str = "admin"


class BulkStockUpdateItem(BaseModel):
    product_id: str
    quantity: int
    type: str
    reason: str = ""


class BulkStockUpdateRequest(BaseModel):
    updates: list[BulkStockUpdateItem]
    actor: str = "admin"


# ---------------------------------------------------------------------------
# Response Schemas
# ---------------------------------------------------------------------------
class ProductStockResponse(BaseModel):
    id: str
    name: str
    sku: str
    price: float
    is_active: bool
    stock_quantity: int
    stock_status: str
    low_stock_threshold: int | None = None


class StockMovementResponse(BaseModel):
    id: str
    product_id: str
    sequence: int
    sku: str
    type: str
    quantity: int
    previous_stock: int
    new_stock: int
    reason: str | None = None
    order_number: str | None = None
    actor: str | None = None
    created_at: str | None = None


class ReplayResponse(BaseModel):
    product_id: str
    movements: int
    replayed_quantity: int
    current_quantity: int
    broken_at: int | None = None
    consistent: bool


class BulkStockUpdateResponse(BaseModel):
    results: list[dict]
    errors: list[dict]
