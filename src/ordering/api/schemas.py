"""Pydantic request/response schemas for the Ordering API.

Customer profiles live with the identity collaborator, so checkout receives
the customer and their address book in the request.
"""

from pydantic import BaseModel, Field

from ordering.customer import Address, Customer


# ---------------------------------------------------------------------------
# Cart
# ---------------------------------------------------------------------------
class AddCartItemRequest(BaseModel):
    product_id: str
    quantity: int = Field(gt=0)


class CartItemResponse(BaseModel):
    product_id: str
    quantity: int


class CartResponse(BaseModel):
    id: str
    customer_id: str
    items: list[CartItemResponse]


# ---------------------------------------------------------------------------
# Checkout
# ---------------------------------------------------------------------------
class AddressSchema(BaseModel):
    id: str
    name: str
    phone: str
    line1: str
    city: str
    state: str
    postal_code: str
    landmark: str | None = None
    country: str = "India"
    email: str | None = None
    is_default: bool = False


class CustomerSchema(BaseModel):
    id: str
    name: str
    email: str | None = None
    addresses: list[AddressSchema] = Field(default_factory=list)

    def to_customer(self) -> Customer:
        return Customer(
            id=self.id,
            name=self.name,
            email=self.email,
            addresses=tuple(Address(**a.model_dump()) for a in self.addresses),
        )


class CheckoutRequest(BaseModel):
    customer: CustomerSchema
    payment_method: str
    coupon_code: str | None = None
    shipping_address_id: str | None = None
    billing_address_id: str | None = None

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "customer": {
                        "id": "cust-001",
                        "name": "Asha Rao",
                        "email": "asha@example.com",
                        "addresses": [
                            {
                                "id": "addr-1",
                                "name": "Asha Rao",
                                "phone": "+91 98765 43210",
                                "line1": "12 MG Road",
                                "city": "Bengaluru",
                                "state": "Karnataka",
                                "postal_code": "560001",
                                "is_default": True,
                            }
                        ],
                    },
                    "payment_method": "razorpay",
                    "coupon_code": "WELCOME10",
                }
            ]
        }
    }


class CheckoutResponse(BaseModel):
    order_number: str
    invoice_number: str
    grand_total: float
    payment_method: str
    status: str
    payment_status: str
    shipping_status: str
    gateway_order_id: str | None = None
    awb_code: str | None = None


# ---------------------------------------------------------------------------
# Orders
# ---------------------------------------------------------------------------
class CancelOrderRequest(BaseModel):
    reason: str = Field(min_length=1)
    customer_id: str | None = None
    actor: str = "customer"


class UpdateOrderStatusRequest(BaseModel):
    status: str
    note: str | None = None


class OrderItemResponse(BaseModel):
    product_id: str
    sku: str
    product_name: str
    quantity: int
    unit_price: float
    line_total: float


class OrderAddressResponse(BaseModel):
    type: str
    name: str
    phone: str
    line1: str
    landmark: str | None = None
    city: str
    state: str
    postal_code: str
    country: str
    email: str | None = None


class OrderResponse(BaseModel):
    order_number: str
    invoice_number: str
    customer_id: str
    status: str
    payment_status: str
    shipping_status: str
    payment_method: str
    subtotal: float
    discount: float
    shipping_charge: float
    tax: float
    grand_total: float
    currency: str
    coupon_code: str | None = None
    amount_refunded: float
    gateway_order_id: str | None = None
    gateway_payment_id: str | None = None
    awb_code: str | None = None
    tracking_number: str | None = None
    tracking_url: str | None = None
    courier_name: str | None = None
    estimated_delivery: str | None = None
    delivered_at: str | None = None
    cancellation_reason: str | None = None
    items: list[OrderItemResponse]
    addresses: list[OrderAddressResponse]
    created_at: str | None = None
