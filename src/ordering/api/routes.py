"""FastAPI routes for the Ordering context: carts, checkout, cancellation and admin status."""

from dataclasses import asdict

from fastapi import APIRouter, Depends
from protean.utils.globals import current_domain

from ordering.api.schemas import (
    AddCartItemRequest,
    CancelOrderRequest,
    CartResponse,
    CheckoutRequest,
    CheckoutResponse,
    OrderResponse,
    UpdateOrderStatusRequest,
)
from ordering.cart.cart import Cart
from shared.context import Reconciliation, get_context
from shared.domain import unit_of_work
from shared.exceptions import ValidationError

# ---------------------------------------------------------------------------
# Cart Router
# ---------------------------------------------------------------------------
cart_router = APIRouter(prefix="/carts", tags=["carts"])


@cart_router.post("/{customer_id}/items", response_model=CartResponse)
async def add_cart_item(
    customer_id: str,
    body: AddCartItemRequest,
    context: Reconciliation = Depends(get_context),
) -> CartResponse:
    carts = current_domain.repository_for(Cart)
    with unit_of_work():
        cart = carts.get_or_create(customer_id)
        cart.add_item(body.product_id, body.quantity)
        carts.add(cart)
    return CartResponse(**cart.to_dict())


@cart_router.get("/{customer_id}", response_model=CartResponse)
async def get_customer_cart(customer_id: str, context: Reconciliation = Depends(get_context)) -> CartResponse:
    cart = current_domain.repository_for(Cart).for_customer(customer_id) or Cart(customer_id=customer_id)
    return CartResponse(**cart.to_dict())


# ---------------------------------------------------------------------------
# Order Router
# ---------------------------------------------------------------------------
order_router = APIRouter(prefix="/orders", tags=["orders"])


@order_router.post("", status_code=201, response_model=CheckoutResponse)
async def create_order(body: CheckoutRequest, context: Reconciliation = Depends(get_context)) -> CheckoutResponse:
    """Place an order from the customer's cart."""
    cart = current_domain.repository_for(Cart).for_customer(body.customer.id)
    if cart is None:
        raise ValidationError({"cart": ["Cart is empty"]})

    result = context.checkout.create_order(
        cart,
        body.customer.to_customer(),
        body.payment_method,
        coupon_code=body.coupon_code,
        shipping_address_id=body.shipping_address_id,
        billing_address_id=body.billing_address_id,
    )
    return CheckoutResponse(**asdict(result))


@order_router.get("/{order_number}", response_model=OrderResponse)
async def get_order(
    order_number: str,
    customer_id: str | None = None,
    context: Reconciliation = Depends(get_context),
) -> OrderResponse:
    return OrderResponse(**context.orders.get_order(order_number, customer_id).to_dict())


@order_router.post("/{order_number}/cancel", response_model=OrderResponse)
async def cancel_order(
    order_number: str,
    body: CancelOrderRequest,
    context: Reconciliation = Depends(get_context),
) -> OrderResponse:
    order = context.orders.cancel_order(order_number, body.reason, actor=body.actor, customer_id=body.customer_id)
    return OrderResponse(**order.to_dict())


# ---------------------------------------------------------------------------
# Admin Router
# ---------------------------------------------------------------------------
admin_router = APIRouter(prefix="/admin/orders", tags=["admin"])


@admin_router.patch("/{order_number}/status", response_model=OrderResponse)
async def update_order_status(
    order_number: str,
    body: UpdateOrderStatusRequest,
    context: Reconciliation = Depends(get_context),
) -> OrderResponse:
    order = context.orders.update_status(order_number, body.status, note=body.note)
    return OrderResponse(**order.to_dict())
