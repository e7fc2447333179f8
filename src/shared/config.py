"""Runtime configuration for the reconciliation engine.

Values are read from the environment (prefix ``ORDERSTREAM_``) and an optional
``.env`` file. ``ORDERSTREAM_ENV`` selects the overlay, mirroring the
``development`` / ``test`` / ``production`` split used by the logging setup.
"""

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_METRO_POSTAL_CODES = ["400001", "110001", "600001", "700001", "500001", "560001"]


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="ORDERSTREAM_",
        env_file=".env",
        extra="ignore",
    )

    env: str = "development"
    log_level: str | None = None
    log_dir: str | None = "logs"
    database_url: str = "sqlite:///./orderstream.db"
    currency: str = "INR"

    # Pricing
    tax_rate: float = 0.03
    free_shipping_threshold: float = 5000.0
    metro_shipping_charge: float = 50.0
    standard_shipping_charge: float = 100.0
    metro_postal_codes: list[str] = Field(default_factory=lambda: list(DEFAULT_METRO_POSTAL_CODES))

    # Inventory
    low_stock_threshold: int = 20

    # Payment gateway
    gateway_adapter: str = "fake"
    gateway_base_url: str = "https://api.razorpay.com/v1"
    gateway_key_id: str = ""
    gateway_key_secret: str = "test-key-secret"
    gateway_webhook_secret: str = "test-webhook-secret"

    # Shipping carrier
    carrier_adapter: str = "fake"
    carrier_base_url: str = "https://apiv2.shiprocket.in/v1/external"
    carrier_email: str = ""
    carrier_password: str = ""
    carrier_token_ttl_seconds: int = 24 * 60 * 60
    carrier_webhook_secret: str = ""
    carrier_tracking_url: str = "https://shiprocket.co/tracking/{awb}"
    pickup_location: str = "Primary"
    pickup_postal_code: str = "110001"
    parcel_weight_kg: float = 0.3

    # Shipment outbox
    outbox_base_delay_seconds: int = 30
    outbox_max_delay_seconds: int = 3600
    outbox_max_attempts: int = 8
    outbox_batch_size: int = 50
    outbox_poll_interval_seconds: float = 5.0


@lru_cache
def get_settings() -> Settings:
    return Settings()
