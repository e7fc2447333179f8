"""Pydantic API schemas for the Fulfillment context.

These are the external API contracts, separate from the reconciler's
result dataclasses.
"""

from pydantic import BaseModel, Field


# ---------------------------------------------------------------------------
# Request schemas
# ---------------------------------------------------------------------------
class ManifestRequest(BaseModel):
    order_numbers: list[str] = Field(min_length=1)


class ConfigureCarrierRequest(BaseModel):
    should_succeed: bool = True
    failure_reason: str = "Carrier unavailable"
    fail_on: list[str] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------
class ShipmentResultResponse(BaseModel):
    success: bool
    order_number: str | None = None
    awb_code: str | None = None
    courier_name: str | None = None
    warning: str | None = None
    error: str | None = None


class TrackingResponse(BaseModel):
    order_number: str
    shipping_status: str
    awb_code: str | None = None
    tracking_url: str | None = None
    tracking: dict


class CarrierPassThroughResponse(BaseModel):
    order_numbers: list[str]
    carrier_response: dict


class OutboxRunResponse(BaseModel):
    processed: int
    succeeded: int
    retried: int
    dead: int
    order_numbers: list[str]


class CarrierWebhookResponse(BaseModel):
    status: str
    order_number: str | None = None
    shipping_status: str | None = None


class CarrierConfigResponse(BaseModel):
    carrier: str
    should_succeed: bool
    failure_reason: str
    fail_on: list[str]
