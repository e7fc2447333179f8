"""FastAPI routes for the Fulfillment context: shipments, carrier pass-throughs and the carrier webhook."""

from dataclasses import asdict

from fastapi import APIRouter, Depends, Header, HTTPException, Request

from fulfillment.api.schemas import (
    CarrierConfigResponse,
    CarrierPassThroughResponse,
    CarrierWebhookResponse,
    ConfigureCarrierRequest,
    ManifestRequest,
    OutboxRunResponse,
    ShipmentResultResponse,
    TrackingResponse,
)
from fulfillment.carrier.fake_adapter import FakeCarrier
from shared.context import Reconciliation, get_context

shipment_router = APIRouter(prefix="/shipments", tags=["shipments"])


@shipment_router.post("/outbox/drain", response_model=OutboxRunResponse)
async def drain_outbox(context: Reconciliation = Depends(get_context)) -> OutboxRunResponse:
    """Run every due shipment task now."""
    return OutboxRunResponse(**asdict(context.outbox.process_due()))


@shipment_router.post("/manifest", response_model=CarrierPassThroughResponse)
async def generate_manifest(
    body: ManifestRequest,
    context: Reconciliation = Depends(get_context),
) -> CarrierPassThroughResponse:
    response = context.shipping.generate_manifest(body.order_numbers)
    return CarrierPassThroughResponse(order_numbers=body.order_numbers, carrier_response=response)


@shipment_router.post("/carrier/configure", response_model=CarrierConfigResponse)
async def configure_carrier(
    body: ConfigureCarrierRequest,
    context: Reconciliation = Depends(get_context),
) -> CarrierConfigResponse:
    """Configure the FakeCarrier behavior (non-production only)."""
    if context.settings.env == "production":
        raise HTTPException(status_code=403, detail="Carrier configuration not available in production")

    carrier = context.carrier
    if not isinstance(carrier, FakeCarrier):
        raise HTTPException(status_code=400, detail="Carrier configuration only available for FakeCarrier")

    carrier.configure(
        should_succeed=body.should_succeed,
        failure_reason=body.failure_reason,
        fail_on=set(body.fail_on),
    )
    return CarrierConfigResponse(
        carrier=type(carrier).__name__,
        should_succeed=carrier.should_succeed,
        failure_reason=carrier.failure_reason,
        fail_on=sorted(carrier.fail_on),
    )


@shipment_router.post("/{order_number}", response_model=ShipmentResultResponse)
async def create_shipment(order_number: str, context: Reconciliation = Depends(get_context)) -> ShipmentResultResponse:
    """Create, or resume, the carrier shipment for an order."""
    result = context.shipping.create_shipment_for_order(order_number)
    return ShipmentResultResponse(
        success=result.success,
        order_number=result.order_number,
        awb_code=result.awb_code,
        courier_name=result.courier_name,
        warning=result.warning,
        error=result.error,
    )


@shipment_router.get("/{order_number}/track", response_model=TrackingResponse)
async def track_shipment(order_number: str, context: Reconciliation = Depends(get_context)) -> TrackingResponse:
    return TrackingResponse(**context.shipping.track(order_number))


@shipment_router.post("/{order_number}/pickup", response_model=CarrierPassThroughResponse)
async def schedule_pickup(order_number: str, context: Reconciliation = Depends(get_context)) -> CarrierPassThroughResponse:
    response = context.shipping.schedule_pickup(order_number)
    return CarrierPassThroughResponse(order_numbers=[order_number], carrier_response=response)


@shipment_router.post("/{order_number}/label", response_model=CarrierPassThroughResponse)
async def print_label(order_number: str, context: Reconciliation = Depends(get_context)) -> CarrierPassThroughResponse:
    response = context.shipping.print_label(order_number)
    return CarrierPassThroughResponse(order_numbers=[order_number], carrier_response=response)


# ---------------------------------------------------------------------------
# Carrier webhook
# ---------------------------------------------------------------------------
webhook_router = APIRouter(prefix="/webhooks", tags=["webhooks"])


@webhook_router.post("/shipping-carrier", response_model=CarrierWebhookResponse)
async def shipping_carrier_webhook(
    request: Request,
    x_api_key: str | None = Header(default=None),
    context: Reconciliation = Depends(get_context),
) -> CarrierWebhookResponse:
    """Tracking update from the carrier; unknown shipments are acknowledged."""
    raw_body = await request.body()
    outcome = context.carrier_webhooks.handle(raw_body, x_api_key)
    if outcome.duplicate:
        return CarrierWebhookResponse(status="duplicate")
    if outcome.error:
        return CarrierWebhookResponse(status="recorded")
    result = outcome.result
    if not result.matched:
        return CarrierWebhookResponse(status="ignored")
    return CarrierWebhookResponse(
        status="processed",
        order_number=result.order_number,
        shipping_status=result.shipping_status,
    )
