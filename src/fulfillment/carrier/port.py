"""Carrier port: abstract interface for shipping carrier integrations.

All carrier adapters must implement this interface. The reconciler
programs against the port; adapters are swapped via configuration.
Adapters raise ``CarrierError`` for every failed remote call.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass

from fulfillment.carrier.token import CarrierToken


@dataclass(frozen=True)
class CarrierShipment:
    """Identifiers of a shipment order created on the carrier."""

    order_id: str
    shipment_id: str | None


@dataclass(frozen=True)
class CourierOption:
    courier_company_id: str
    courier_name: str
    rate: float
    etd: str | None = None


@dataclass(frozen=True)
class AwbAssignment:
    awb_code: str
    courier_company_id: str
    courier_name: str | None = None


class CarrierPort(ABC):
    """Abstract interface for carrier adapters."""

    @abstractmethod
    def authenticate(self) -> CarrierToken:
        """Obtain a fresh auth token and store it in the adapter's token cache."""
        ...

    @abstractmethod
    def create_shipment(self, payload: dict) -> CarrierShipment:
        """Create a shipment order with the carrier from a full order payload."""
        ...

    @abstractmethod
    def available_couriers(
        self,
        pickup_postal_code: str,
        delivery_postal_code: str,
        weight: float,
        cod: bool = False,
    ) -> list[CourierOption]:
        """Couriers serving the route, in the order the carrier returned them."""
        ...

    @abstractmethod
    def assign_awb(self, shipment_id: str, courier_company_id: str) -> AwbAssignment: ...

    @abstractmethod
    def schedule_pickup(self, shipment_ids: list[str]) -> dict: ...

    @abstractmethod
    def track_awb(self, awb_code: str) -> dict: ...

    @abstractmethod
    def track_shipment(self, shipment_id: str) -> dict: ...

    @abstractmethod
    def cancel_shipment(self, awb_code: str | None = None, shipment_id: str | None = None) -> dict:
        """Cancel by AWB when known, otherwise by carrier shipment id."""
        ...

    @abstractmethod
    def print_label(self, shipment_ids: list[str]) -> dict: ...

    @abstractmethod
    def generate_manifest(self, shipment_ids: list[str]) -> dict: ...
