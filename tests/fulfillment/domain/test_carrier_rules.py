"""Tests for carrier status mapping, token caching, ETD parsing and outbox backoff."""

from datetime import UTC, datetime, timedelta

import pytest
from fulfillment.carrier.token import CarrierToken, TokenCache
from fulfillment.shipment.outbox import BackoffPolicy
from fulfillment.shipment.reconciler import parse_etd
from fulfillment.shipment.status_codes import CarrierStatus, parse_carrier_status, shipping_status_for
from shared.status import ShippingStatus

NOW = datetime(2026, 1, 5, 10, 0, tzinfo=UTC)


class TestCarrierStatusCodes:
    @pytest.mark.parametrize(
        "code,expected",
        [
            (1, ShippingStatus.CONFIRMED),
            (6, ShippingStatus.SHIPPED),
            (7, ShippingStatus.SHIPPED),
            (8, ShippingStatus.DELIVERED),
            (9, ShippingStatus.CANCELLED),
            (12, ShippingStatus.CANCELLED),
            (10, ShippingStatus.RETURNED),
            (11, ShippingStatus.RETURNED),
            (13, ShippingStatus.RETURNED),
            (42, ShippingStatus.SHIPPED),
        ],
    )
    def test_known_codes(self, code, expected):
        assert shipping_status_for(code) == expected

    def test_numeric_strings_accepted(self):
        assert parse_carrier_status("8") == CarrierStatus.DELIVERED

    @pytest.mark.parametrize("code", [0, 21, 99, "delivered", None])
    def test_unknown_codes_map_to_nothing(self, code):
        assert shipping_status_for(code) is None

    def test_every_code_has_a_shipping_status(self):
        for status in CarrierStatus:
            assert isinstance(status.shipping_status, ShippingStatus)


class TestTokenCache:
    def test_empty_cache(self):
        assert TokenCache().get(NOW) is None

    def test_valid_token_is_returned(self):
        cache = TokenCache()
        token = CarrierToken(value="abc", expires_at=NOW + timedelta(hours=24))
        cache.store(token)

        assert cache.get(NOW) is token

    def test_token_about_to_expire_is_refreshed(self):
        cache = TokenCache()
        cache.store(CarrierToken(value="abc", expires_at=NOW + timedelta(seconds=30)))

        assert cache.get(NOW) is None

    def test_clear(self):
        cache = TokenCache()
        cache.store(CarrierToken(value="abc", expires_at=NOW + timedelta(hours=1)))
        cache.clear()

        assert cache.get(NOW) is None


class TestEstimatedDelivery:
    @pytest.mark.parametrize(
        "value,expected",
        [
            ("2026-01-09", datetime(2026, 1, 9, tzinfo=UTC)),
            ("2026-01-09 18:30:00", datetime(2026, 1, 9, 18, 30, tzinfo=UTC)),
            ("09-01-2026", datetime(2026, 1, 9, tzinfo=UTC)),
            ("Jan 09, 2026", datetime(2026, 1, 9, tzinfo=UTC)),
        ],
    )
    def test_carrier_formats(self, value, expected):
        assert parse_etd(value) == expected

    @pytest.mark.parametrize("value", [None, "", "soon"])
    def test_unparseable_values(self, value):
        assert parse_etd(value) is None


class TestBackoffPolicy:
    def test_delay_doubles(self):
        policy = BackoffPolicy(base_delay_seconds=30, max_delay_seconds=3600)

        assert [policy.delay(n).total_seconds() for n in (1, 2, 3, 4)] == [30, 60, 120, 240]

    def test_delay_is_capped(self):
        policy = BackoffPolicy(base_delay_seconds=30, max_delay_seconds=3600)

        assert policy.delay(10) == timedelta(hours=1)
