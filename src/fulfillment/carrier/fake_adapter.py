"""Fake carrier adapter: deterministic carrier for testing and development.

Generates sequential shipment ids and AWB codes and records every call.
Can be configured to fail globally or only on selected operations, which
lets tests reproduce a shipment attempt that stopped half way.
"""

from datetime import UTC, datetime, timedelta
from itertools import count

from fulfillment.carrier.port import AwbAssignment, CarrierPort, CarrierShipment, CourierOption
from fulfillment.carrier.token import CarrierToken, TokenCache
from shared.exceptions import CarrierError

DEFAULT_COURIERS = [
    CourierOption(courier_company_id="10", courier_name="Delhivery Surface", rate=85.0, etd="2026-01-06"),
    CourierOption(courier_company_id="24", courier_name="Xpressbees", rate=72.5, etd="2026-01-07"),
    CourierOption(courier_company_id="51", courier_name="Ekart Logistics", rate=72.5, etd="2026-01-05"),
]


class FakeCarrier(CarrierPort):
    """Fake carrier that always succeeds by default."""

    def __init__(self, token_cache: TokenCache | None = None):
        self.token_cache = token_cache or TokenCache()
        self.should_succeed = True
        self.failure_reason = "Carrier unavailable"
        self.fail_on: set[str] = set()
        self.couriers: list[CourierOption] = list(DEFAULT_COURIERS)
        self.calls: list[dict] = []
        self._sequence = count(1)

    def configure(
        self,
        should_succeed: bool = True,
        failure_reason: str = "Carrier unavailable",
        fail_on: set[str] | None = None,
        couriers: list[CourierOption] | None = None,
    ):
        """Configure the fake carrier behavior for testing."""
        self.should_succeed = should_succeed
        self.failure_reason = failure_reason
        self.fail_on = set(fail_on or ())
        if couriers is not None:
            self.couriers = list(couriers)

    def calls_to(self, method: str) -> list[dict]:
        return [c for c in self.calls if c["method"] == method]

    def _call(self, method: str, **kwargs) -> None:
        self.calls.append({"method": method, **kwargs})
        if not self.should_succeed or method in self.fail_on:
            raise CarrierError(self.failure_reason, method=method)

    def authenticate(self) -> CarrierToken:
        self._call("authenticate")
        token = CarrierToken(
            value=f"fake-token-{next(self._sequence)}",
            expires_at=datetime.now(UTC) + timedelta(hours=24),
        )
        self.token_cache.store(token)
        return token

    def create_shipment(self, payload: dict) -> CarrierShipment:
        self._call("create_shipment", payload=payload)
        n = next(self._sequence)
        return CarrierShipment(order_id=f"{1000 + n}", shipment_id=f"{5000 + n}")

    def available_couriers(
        self,
        pickup_postal_code: str,
        delivery_postal_code: str,
        weight: float,
        cod: bool = False,
    ) -> list[CourierOption]:
        self._call(
            "available_couriers",
            pickup_postal_code=pickup_postal_code,
            delivery_postal_code=delivery_postal_code,
            weight=weight,
            cod=cod,
        )
        return list(self.couriers)

    def assign_awb(self, shipment_id: str, courier_company_id: str) -> AwbAssignment:
        self._call("assign_awb", shipment_id=shipment_id, courier_company_id=courier_company_id)
        courier = next((c for c in self.couriers if c.courier_company_id == courier_company_id), None)
        return AwbAssignment(
            awb_code=f"AWB{next(self._sequence):08d}",
            courier_company_id=courier_company_id,
            courier_name=courier.courier_name if courier else None,
        )

    def schedule_pickup(self, shipment_ids: list[str]) -> dict:
        self._call("schedule_pickup", shipment_ids=shipment_ids)
        return {"pickup_status": 1, "response": {"pickup_scheduled_date": datetime.now(UTC).date().isoformat()}}

    def track_awb(self, awb_code: str) -> dict:
        self._call("track_awb", awb_code=awb_code)
        return {"tracking_data": {"track_status": 1, "shipment_status": 6, "awb_code": awb_code}}

    def track_shipment(self, shipment_id: str) -> dict:
        self._call("track_shipment", shipment_id=shipment_id)
        return {"tracking_data": {"track_status": 1, "shipment_status": 6, "shipment_id": shipment_id}}

    def cancel_shipment(self, awb_code: str | None = None, shipment_id: str | None = None) -> dict:
        self._call("cancel_shipment", awb_code=awb_code, shipment_id=shipment_id)
        return {"status": 200, "message": "Shipment cancelled successfully"}

    def print_label(self, shipment_ids: list[str]) -> dict:
        self._call("print_label", shipment_ids=shipment_ids)
        return {"label_created": 1, "label_url": f"https://fake-carrier.example.com/labels/{'-'.join(shipment_ids)}.pdf"}

    def generate_manifest(self, shipment_ids: list[str]) -> dict:
        self._call("generate_manifest", shipment_ids=shipment_ids)
        return {"status": 1, "manifest_url": f"https://fake-carrier.example.com/manifests/{'-'.join(shipment_ids)}.pdf"}
