"""Payment gateway port (abstract interface).

Defines the contract that all payment gateway adapters must implement.
This enables swapping between FakeGateway (dev/test) and RazorpayGateway
(production) without changing any reconciliation code. Amounts cross the
port in major currency units; adapters convert to the gateway's minor
units. Every adapter failure is raised as ``GatewayError``.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field


@dataclass(frozen=True)
class GatewayOrder:
    """An order created on the gateway, against which the customer pays."""

    id: str
    amount: float
    currency: str
    receipt: str
    status: str = "created"


@dataclass(frozen=True)
class PaymentLink:
    id: str
    short_url: str
    amount: float
    status: str = "created"


@dataclass(frozen=True)
class GatewayPayment:
    id: str
    amount: float
    currency: str
    status: str
    order_id: str | None = None
    method: str | None = None


@dataclass(frozen=True)
class GatewayRefund:
    id: str
    payment_id: str
    amount: float
    status: str
    notes: dict = field(default_factory=dict)


class PaymentGateway(ABC):
    """Abstract payment gateway interface."""

    @abstractmethod
    def create_order(self, amount: float, currency: str, receipt: str, notes: dict | None = None) -> GatewayOrder:
        """Create a gateway order the customer can pay against."""
        ...

    @abstractmethod
    def create_payment_link(
        self,
        amount: float,
        currency: str,
        description: str,
        customer: dict,
        notes: dict | None = None,
    ) -> PaymentLink:
        """Create a shareable payment link."""
        ...

    @abstractmethod
    def fetch_payment(self, payment_id: str) -> GatewayPayment: ...

    @abstractmethod
    def capture_payment(self, payment_id: str, amount: float, currency: str) -> GatewayPayment:
        """Capture an authorized payment."""
        ...

    @abstractmethod
    def create_refund(self, payment_id: str, amount: float, notes: dict | None = None) -> GatewayRefund:
        """Refund (part of) a captured payment."""
        ...

    @abstractmethod
    def fetch_refund(self, refund_id: str) -> GatewayRefund: ...
