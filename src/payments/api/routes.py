"""FastAPI routes for the Payments context: client verification, refunds and the gateway webhook."""

from fastapi import APIRouter, Depends, Header, HTTPException, Request

from payments.api.schemas import (
    ConfigureGatewayRequest,
    GatewayConfigResponse,
    PaymentLinkResponse,
    PaymentStatusResponse,
    RefundRequest,
    RefundResponse,
    ReplayResponse,
    VerifyPaymentRequest,
    WebhookAckResponse,
)
from payments.gateway.fake_adapter import FakeGateway
from shared.context import Reconciliation, get_context

# ---------------------------------------------------------------------------
# Payment Router
# ---------------------------------------------------------------------------
payment_router = APIRouter(prefix="/payments", tags=["payments"])


@payment_router.post("/verify", response_model=PaymentStatusResponse)
async def verify_payment(
    body: VerifyPaymentRequest,
    context: Reconciliation = Depends(get_context),
) -> PaymentStatusResponse:
    """Confirm a payment the client completed against the gateway order."""
    result = context.payments.verify_payment(
        order_number=body.order_number,
        gateway_order_id=body.gateway_order_id,
        gateway_payment_id=body.gateway_payment_id,
        signature=body.signature,
        customer_id=body.customer_id,
    )
    return PaymentStatusResponse(**result)


@payment_router.get("/{order_number}", response_model=PaymentStatusResponse)
async def payment_status(order_number: str, context: Reconciliation = Depends(get_context)) -> PaymentStatusResponse:
    return PaymentStatusResponse(**context.payments.payment_status(order_number))


@payment_router.post("/{order_number}/payment-link", status_code=201, response_model=PaymentLinkResponse)
async def create_payment_link(order_number: str, context: Reconciliation = Depends(get_context)) -> PaymentLinkResponse:
    """Create a hosted payment link for an unpaid order."""
    link = context.payments.create_payment_link(order_number)
    return PaymentLinkResponse(order_number=order_number, link_id=link.id, short_url=link.short_url, amount=link.amount)


@payment_router.post("/{order_number}/refund", response_model=RefundResponse)
async def refund(order_number: str, body: RefundRequest, context: Reconciliation = Depends(get_context)) -> RefundResponse:
    """Refund a paid order; omit ``amount`` to refund the remaining balance."""
    return RefundResponse(**context.payments.refund(order_number, amount=body.amount, reason=body.reason))


@payment_router.post("/webhooks/replay", response_model=ReplayResponse)
async def replay_webhooks(context: Reconciliation = Depends(get_context)) -> ReplayResponse:
    """Re-run gateway webhooks whose processing failed."""
    outcomes = context.payments.replay_pending()
    return ReplayResponse(replayed=len(outcomes), failed=sum(1 for o in outcomes if o.error))


@payment_router.post("/gateway/configure", response_model=GatewayConfigResponse)
async def configure_gateway(
    body: ConfigureGatewayRequest,
    context: Reconciliation = Depends(get_context),
) -> GatewayConfigResponse:
    """Configure the FakeGateway behavior (non-production only).

    It allows toggling success/failure behavior for manual API testing.
    """
    if context.settings.env == "production":
        raise HTTPException(status_code=403, detail="Gateway configuration not available in production")

    gateway = context.gateway
    if not isinstance(gateway, FakeGateway):
        raise HTTPException(status_code=400, detail="Gateway configuration only available for FakeGateway")

    gateway.configure(should_succeed=body.should_succeed, failure_reason=body.failure_reason)
    return GatewayConfigResponse(
        gateway=type(gateway).__name__,
        should_succeed=gateway.should_succeed,
        failure_reason=gateway.failure_reason,
    )


# ---------------------------------------------------------------------------
# Gateway webhook
# ---------------------------------------------------------------------------
webhook_router = APIRouter(prefix="/webhooks", tags=["webhooks"])


@webhook_router.post("/payment-gateway", response_model=WebhookAckResponse)
async def payment_gateway_webhook(
    request: Request,
    x_gateway_signature: str = Header(default=""),
    x_gateway_event_id: str | None = Header(default=None),
    context: Reconciliation = Depends(get_context),
) -> WebhookAckResponse:
    """Acknowledge once recorded; the booking saga and the outbox worker create the shipment."""
    raw_body = await request.body()
    outcome = context.payments.handle_webhook(raw_body, x_gateway_signature, x_gateway_event_id)
    if outcome.duplicate:
        status = "duplicate"
    elif outcome.error:
        status = "recorded"
    elif outcome.applied:
        status = "processed"
    else:
        status = "ignored"

    return WebhookAckResponse(status=status, record_id=outcome.record_id, order_number=outcome.order_number)
