"""Razorpay payment gateway adapter.

Talks to the Razorpay REST API over httpx with basic auth (key id / key
secret). Amounts are sent in paise. Transport errors and non-2xx responses
are raised as ``GatewayError``.
"""

import httpx
import structlog

from payments.gateway.port import GatewayOrder, GatewayPayment, GatewayRefund, PaymentGateway, PaymentLink
from shared.exceptions import GatewayError

logger = structlog.get_logger(__name__)


def to_minor_units(amount: float) -> int:
    return int(round(amount * 100))


def from_minor_units(amount: int | None) -> float:
    return round((amount or 0) / 100, 2)


class RazorpayGateway(PaymentGateway):
    def __init__(
        self,
        key_id: str,
        key_secret: str,
        base_url: str = "https://api.razorpay.com/v1",
        callback_url: str | None = None,
        timeout: float = 30.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.callback_url = callback_url
        self.client = httpx.Client(
            base_url=base_url,
            auth=(key_id, key_secret),
            timeout=timeout,
            transport=transport,
        )

    def close(self) -> None:
        self.client.close()

    def _request(self, method: str, path: str, **kwargs) -> dict:
        try:
            response = self.client.request(method, path, **kwargs)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            logger.warning("gateway_request_failed", path=path, status=exc.response.status_code)
            raise GatewayError(
                f"Gateway returned {exc.response.status_code} for {path}",
                path=path,
                body=exc.response.text,
            ) from exc
        except httpx.HTTPError as exc:
            logger.warning("gateway_request_failed", path=path, error=str(exc))
            raise GatewayError(f"Gateway request to {path} failed: {exc}", path=path) from exc
        return response.json()

    def create_order(self, amount: float, currency: str, receipt: str, notes: dict | None = None) -> GatewayOrder:
        data = self._request(
            "POST",
            "/orders",
            json={"amount": to_minor_units(amount), "currency": currency, "receipt": receipt, "notes": notes or {}},
        )
        return GatewayOrder(
            id=data["id"],
            amount=from_minor_units(data.get("amount")),
            currency=data.get("currency", currency),
            receipt=data.get("receipt", receipt),
            status=data.get("status", "created"),
        )

    def create_payment_link(
        self,
        amount: float,
        currency: str,
        description: str,
        customer: dict,
        notes: dict | None = None,
    ) -> PaymentLink:
        body = {
            "amount": to_minor_units(amount),
            "currency": currency,
            "accept_partial": False,
            "description": description,
            "customer": customer,
            "notes": notes or {},
            "reminder_enable": True,
        }
        if self.callback_url:
            body["callback_url"] = self.callback_url
            body["callback_method"] = "get"
        data = self._request("POST", "/payment_links", json=body)
        return PaymentLink(
            id=data["id"],
            short_url=data.get("short_url", ""),
            amount=from_minor_units(data.get("amount")),
            status=data.get("status", "created"),
        )

    def fetch_payment(self, payment_id: str) -> GatewayPayment:
        return self._payment(self._request("GET", f"/payments/{payment_id}"))

    def capture_payment(self, payment_id: str, amount: float, currency: str) -> GatewayPayment:
        data = self._request(
            "POST",
            f"/payments/{payment_id}/capture",
            json={"amount": to_minor_units(amount), "currency": currency},
        )
        return self._payment(data)

    def create_refund(self, payment_id: str, amount: float, notes: dict | None = None) -> GatewayRefund:
        data = self._request(
            "POST",
            f"/payments/{payment_id}/refund",
            json={"amount": to_minor_units(amount), "notes": notes or {}},
        )
        return self._refund(data)

    def fetch_refund(self, refund_id: str) -> GatewayRefund:
        return self._refund(self._request("GET", f"/refunds/{refund_id}"))

    @staticmethod
    def _payment(data: dict) -> GatewayPayment:
        return GatewayPayment(
            id=data["id"],
            amount=from_minor_units(data.get("amount")),
            currency=data.get("currency", "INR"),
            status=data.get("status", ""),
            order_id=data.get("order_id"),
            method=data.get("method"),
        )

    @staticmethod
    def _refund(data: dict) -> GatewayRefund:
        return GatewayRefund(
            id=data["id"],
            payment_id=data.get("payment_id", ""),
            amount=from_minor_units(data.get("amount")),
            status=data.get("status", ""),
            notes=data.get("notes") or {},
        )
