"""Carrier adapter abstraction: pluggable shipping carrier integration."""

from fulfillment.carrier.port import CarrierPort
from fulfillment.carrier.token import TokenCache
from shared.config import get_settings

_carrier_instance: CarrierPort | None = None


def build_carrier(token_cache: TokenCache | None = None) -> CarrierPort:
    """Build the carrier adapter named by ``ORDERSTREAM_CARRIER_ADAPTER``."""
    settings = get_settings()
    token_cache = token_cache or TokenCache()
    if settings.carrier_adapter == "fake":
        from fulfillment.carrier.fake_adapter import FakeCarrier

        return FakeCarrier(token_cache=token_cache)
    if settings.carrier_adapter == "shiprocket":
        from fulfillment.carrier.shiprocket_adapter import ShiprocketCarrier

        return ShiprocketCarrier(
            email=settings.carrier_email,
            password=settings.carrier_password,
            token_cache=token_cache,
            base_url=settings.carrier_base_url,
            token_ttl_seconds=settings.carrier_token_ttl_seconds,
        )
    raise ValueError(f"Unknown carrier adapter: {settings.carrier_adapter}")


def get_carrier() -> CarrierPort:
    """Return the configured carrier adapter (singleton).

    Uses FakeCarrier by default.
    """
    global _carrier_instance
    if _carrier_instance is None:
        _carrier_instance = build_carrier()
    return _carrier_instance


def set_carrier(carrier: CarrierPort) -> None:
    global _carrier_instance
    _carrier_instance = carrier


def reset_carrier():
    """Reset the carrier singleton (useful for testing)."""
    global _carrier_instance
    _carrier_instance = None
