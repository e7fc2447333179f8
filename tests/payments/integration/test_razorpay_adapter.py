"""Tests for the Razorpay adapter against a mocked HTTP transport."""

import json

import httpx
import pytest
from payments.gateway.razorpay_adapter import RazorpayGateway
from shared.exceptions import GatewayError


def _gateway(handler):
    return RazorpayGateway(
        key_id="rzp_test_key",
        key_secret="rzp_test_secret",
        base_url="https://api.razorpay.test/v1",
        callback_url="https://shop.example.com/payment/callback",
        transport=httpx.MockTransport(handler),
    )


class TestRazorpayGateway:
    def test_create_order_sends_paise_with_basic_auth(self):
        seen = {}

        def handler(request):
            seen["path"] = request.url.path
            seen["auth"] = request.headers["authorization"]
            seen["body"] = json.loads(request.content)
            return httpx.Response(
                200,
                json={"id": "order_Nx1", "amount": 108000, "currency": "INR", "receipt": "ORD1", "status": "created"},
            )

        order = _gateway(handler).create_order(1080.0, "INR", receipt="ORD1", notes={"order_number": "ORD1"})

        assert seen["path"] == "/v1/orders"
        assert seen["auth"].startswith("Basic ")
        assert seen["body"]["amount"] == 108000
        assert seen["body"]["notes"] == {"order_number": "ORD1"}
        assert order.id == "order_Nx1"
        assert order.amount == 1080.0

    def test_payment_link_includes_callback(self):
        seen = {}

        def handler(request):
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"id": "plink_1", "short_url": "https://rzp.io/i/abc", "amount": 50000})

        link = _gateway(handler).create_payment_link(500.0, "INR", "Order ORD1", customer={"name": "Asha"})

        assert seen["body"]["callback_url"] == "https://shop.example.com/payment/callback"
        assert seen["body"]["callback_method"] == "get"
        assert seen["body"]["accept_partial"] is False
        assert link.short_url == "https://rzp.io/i/abc"
        assert link.amount == 500.0

    def test_refund_converts_amounts(self):
        def handler(request):
            assert request.url.path == "/v1/payments/pay_1/refund"
            return httpx.Response(
                200, json={"id": "rfnd_1", "payment_id": "pay_1", "amount": 50000, "status": "processed"}
            )

        refund = _gateway(handler).create_refund("pay_1", 500.0)

        assert refund.id == "rfnd_1"
        assert refund.amount == 500.0

    def test_fetch_payment(self):
        def handler(request):
            return httpx.Response(
                200,
                json={"id": "pay_1", "amount": 108000, "currency": "INR", "status": "captured", "method": "upi"},
            )

        payment = _gateway(handler).fetch_payment("pay_1")

        assert payment.status == "captured"
        assert payment.method == "upi"

    def test_error_status_raises_gateway_error(self):
        def handler(request):
            return httpx.Response(400, json={"error": {"description": "The amount must be atleast INR 1.00"}})

        with pytest.raises(GatewayError) as exc:
            _gateway(handler).create_order(0.5, "INR", receipt="ORD1")
        assert "400" in exc.value.message

    def test_transport_error_raises_gateway_error(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(GatewayError):
            _gateway(handler).fetch_refund("rfnd_1")
