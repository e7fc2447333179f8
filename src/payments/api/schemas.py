"""Pydantic request/response schemas for the Payments API.

These are external contracts, kept separate from the reconciler's own
result types.
"""

from pydantic import BaseModel, Field


# ---------------------------------------------------------------------------
# Request Schemas
# ---------------------------------------------------------------------------
class VerifyPaymentRequest(BaseModel):
    order_number: str
    gateway_order_id: str
    gateway_payment_id: str
    signature: str
    customer_id: str | None = None

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "order_number": "ORD202601050001",
                    "gateway_order_id": "order_Nx1",
                    "gateway_payment_id": "pay_Nx1",
                    "signature": "5f1c...",
                    "customer_id": "cust-001",
                }
            ]
        }
    }


class RefundRequest(BaseModel):
    amount: float | None = Field(default=None, gt=0)
    reason: str | None = None


class ConfigureGatewayRequest(BaseModel):
    should_succeed: bool = True
    failure_reason: str = "Gateway unavailable"


# ---------------------------------------------------------------------------
# Response Schemas
# ---------------------------------------------------------------------------
class PaymentStatusResponse(BaseModel):
    order_number: str
    status: str
    payment_status: str
    payment_method: str
    grand_total: float
    amount_refunded: float
    gateway_order_id: str | None = None
    gateway_payment_id: str | None = None
    payment_link_url: str | None = None
    changed: bool | None = None


class RefundResponse(PaymentStatusResponse):
    refund_id: str
    amount: float


class PaymentLinkResponse(BaseModel):
    order_number: str
    link_id: str
    short_url: str
    amount: float


class WebhookAckResponse(BaseModel):
    status: str
    record_id: str | None = None
    order_number: str | None = None


class ReplayResponse(BaseModel):
    replayed: int
    failed: int


class GatewayConfigResponse(BaseModel):
    gateway: str
    should_succeed: bool
    failure_reason: str
