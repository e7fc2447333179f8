"""Shiprocket carrier adapter.

Uses httpx against the Shiprocket external API. The bearer token is taken
from the ``TokenCache`` handed in by the caller and refreshed on demand:
when it is missing, expired, or rejected with a 401 the adapter logs in
again and retries the request once.
"""

from collections.abc import Callable
from datetime import UTC, datetime, timedelta

import httpx
import structlog

from fulfillment.carrier.port import AwbAssignment, CarrierPort, CarrierShipment, CourierOption
from fulfillment.carrier.token import CarrierToken, TokenCache
from shared.exceptions import CarrierError

logger = structlog.get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(UTC)


class ShiprocketCarrier(CarrierPort):
    def __init__(
        self,
        email: str,
        password: str,
        token_cache: TokenCache,
        base_url: str = "https://apiv2.shiprocket.in/v1/external",
        token_ttl_seconds: int = 24 * 60 * 60,
        timeout: float = 30.0,
        transport: httpx.BaseTransport | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.email = email
        self.password = password
        self.token_cache = token_cache
        self.token_ttl = timedelta(seconds=token_ttl_seconds)
        self.clock = clock
        self.client = httpx.Client(base_url=base_url, timeout=timeout, transport=transport)

    def close(self) -> None:
        self.client.close()

    # -------------------------------------------------------------------
    # Auth
    # -------------------------------------------------------------------
    def authenticate(self) -> CarrierToken:
        try:
            response = self.client.post("/auth/login", json={"email": self.email, "password": self.password})
            response.raise_for_status()
        except httpx.HTTPError as exc:
            logger.error("carrier_authentication_failed", error=str(exc))
            raise CarrierError(f"Carrier authentication failed: {exc}") from exc

        token = CarrierToken(value=response.json()["token"], expires_at=self.clock() + self.token_ttl)
        self.token_cache.store(token)
        logger.info("carrier_authenticated", expires_at=token.expires_at.isoformat())
        return token

    def _token(self) -> CarrierToken:
        return self.token_cache.get(self.clock()) or self.authenticate()

    def _request(self, method: str, path: str, **kwargs) -> dict:
        for attempt in (1, 2):
            headers = {"Authorization": f"Bearer {self._token().value}"}
            try:
                response = self.client.request(method, path, headers=headers, **kwargs)
                if response.status_code == 401 and attempt == 1:
                    self.token_cache.clear()
                    continue
                response.raise_for_status()
            except httpx.HTTPStatusError as exc:
                logger.warning("carrier_request_failed", path=path, status=exc.response.status_code)
                raise CarrierError(
                    f"Carrier returned {exc.response.status_code} for {path}",
                    path=path,
                    body=exc.response.text,
                ) from exc
            except httpx.HTTPError as exc:
                logger.warning("carrier_request_failed", path=path, error=str(exc))
                raise CarrierError(f"Carrier request to {path} failed: {exc}", path=path) from exc
            return response.json()
        raise CarrierError(f"Carrier rejected credentials for {path}", path=path)

    # -------------------------------------------------------------------
    # Shipments
    # -------------------------------------------------------------------
    def create_shipment(self, payload: dict) -> CarrierShipment:
        data = self._request("POST", "/orders/create/adhoc", json=payload)
        if not data.get("order_id"):
            raise CarrierError("Carrier did not return an order_id", body=data)
        shipment_id = data.get("shipment_id")
        return CarrierShipment(
            order_id=str(data["order_id"]),
            shipment_id=str(shipment_id) if shipment_id else None,
        )

    def available_couriers(
        self,
        pickup_postal_code: str,
        delivery_postal_code: str,
        weight: float,
        cod: bool = False,
    ) -> list[CourierOption]:
        data = self._request(
            "GET",
            "/courier/serviceability",
            params={
                "pickup_postcode": pickup_postal_code,
                "delivery_postcode": delivery_postal_code,
                "weight": weight,
                "cod": 1 if cod else 0,
            },
        )
        companies = (data.get("data") or {}).get("available_courier_companies") or []
        return [
            CourierOption(
                courier_company_id=str(company["courier_company_id"]),
                courier_name=company.get("courier_name", ""),
                rate=float(company.get("rate") or 0),
                etd=company.get("etd"),
            )
            for company in companies
        ]

    def assign_awb(self, shipment_id: str, courier_company_id: str) -> AwbAssignment:
        data = self._request(
            "POST",
            "/courier/assign/awb",
            json={"shipment_id": shipment_id, "courier_id": courier_company_id},
        )
        awb_data = (data.get("response") or {}).get("data") or {}
        if not data.get("awb_assign_status") and not awb_data.get("awb_assign_status"):
            raise CarrierError("AWB generation failed or response invalid", body=data)
        if not awb_data.get("awb_code"):
            raise CarrierError("AWB response did not contain an awb_code", body=data)
        return AwbAssignment(
            awb_code=str(awb_data["awb_code"]),
            courier_company_id=str(awb_data.get("courier_company_id") or courier_company_id),
            courier_name=awb_data.get("courier_name"),
        )

    def schedule_pickup(self, shipment_ids: list[str]) -> dict:
        return self._request("POST", "/courier/generate/pickup", json={"shipment_id": shipment_ids})

    def track_awb(self, awb_code: str) -> dict:
        return self._request("GET", f"/courier/track/awb/{awb_code}")

    def track_shipment(self, shipment_id: str) -> dict:
        return self._request("GET", f"/courier/track/shipment/{shipment_id}")

    def cancel_shipment(self, awb_code: str | None = None, shipment_id: str | None = None) -> dict:
        if awb_code:
            return self._request("POST", "/orders/cancel/shipment/awbs", json={"awbs": [awb_code]})
        if shipment_id:
            return self._request("POST", f"/orders/cancel/shipment/{shipment_id}", json={})
        raise CarrierError("Nothing to cancel: neither AWB nor shipment id given")

    def print_label(self, shipment_ids: list[str]) -> dict:
        return self._request("POST", "/courier/generate/label", json={"shipment_id": shipment_ids})

    def generate_manifest(self, shipment_ids: list[str]) -> dict:
        return self._request("POST", "/manifests/generate", json={"shipment_id": shipment_ids})
