"""Checkout pricing: shipping tiers, tax and grand total."""

from dataclasses import dataclass, field

from ordering.order.order import round_money
from shared.config import DEFAULT_METRO_POSTAL_CODES, Settings


@dataclass(frozen=True)
class PriceBreakdown:
    subtotal: float
    discount: float
    shipping_charge: float
    tax: float
    grand_total: float

    @property
    def taxable_amount(self) -> float:
        return round_money(self.subtotal - self.discount)


@dataclass(frozen=True)
class PricingPolicy:
    tax_rate: float = 0.03
    free_shipping_threshold: float = 5000.0
    metro_shipping_charge: float = 50.0
    standard_shipping_charge: float = 100.0
    metro_postal_codes: frozenset[str] = field(default_factory=lambda: frozenset(DEFAULT_METRO_POSTAL_CODES))

    @classmethod
    def from_settings(cls, settings: Settings) -> "PricingPolicy":
        return cls(
            tax_rate=settings.tax_rate,
            free_shipping_threshold=settings.free_shipping_threshold,
            metro_shipping_charge=settings.metro_shipping_charge,
            standard_shipping_charge=settings.standard_shipping_charge,
            metro_postal_codes=frozenset(settings.metro_postal_codes),
        )

    def shipping_charge(self, postal_code: str, order_value: float) -> float:
        if order_value >= self.free_shipping_threshold:
            return 0.0
        if (postal_code or "")[:6] in self.metro_postal_codes:
            return self.metro_shipping_charge
        return self.standard_shipping_charge

    def quote(self, subtotal: float, discount: float, postal_code: str) -> PriceBreakdown:
        subtotal = round_money(subtotal)
        discount = round_money(min(discount, subtotal))
        shipping_charge = round_money(self.shipping_charge(postal_code, subtotal))
        tax = round_money((subtotal - discount) * self.tax_rate)
        grand_total = round_money(subtotal - discount + shipping_charge + tax)
        return PriceBreakdown(
            subtotal=subtotal,
            discount=discount,
            shipping_charge=shipping_charge,
            tax=tax,
            grand_total=grand_total,
        )
