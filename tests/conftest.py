import json
import os
from datetime import UTC, datetime, timedelta
from itertools import count
from pathlib import Path

import pytest


def pytest_addoption(parser):
    parser.addoption(
        "--env",
        action="store",
        default="test",
        help="Config environment to run tests on",
    )


def pytest_sessionstart(session):
    """Pytest hook to run before collecting tests.

    Selects the config environment, initializes the domain on the in-memory
    provider and pushes its domain_context. The activated domain can then be
    referred to elsewhere as `current_domain`.
    """
    os.environ["ORDERSTREAM_ENV"] = session.config.option.env
    os.environ["ORDERSTREAM_DATABASE_URL"] = "memory://"

    from shared.domain import init_domain

    init_domain().domain_context().push()


def pytest_collection_modifyitems(config, items):
    """Automatically mark tests based on their directory location."""
    for item in items:
        test_path = Path(item.fspath)

        if "/domain/" in str(test_path):
            item.add_marker(pytest.mark.domain)
        elif "/application/" in str(test_path):
            item.add_marker(pytest.mark.application)
        elif "/integration/" in str(test_path):
            item.add_marker(pytest.mark.integration)
            # Integration tests are often slower
            if not any(m.name == "fast" for m in item.iter_markers()):
                item.add_marker(pytest.mark.slow)


# ---------------------------------------------------------------------------
# Clock
# ---------------------------------------------------------------------------
class FrozenClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture()
def clock():
    return FrozenClock(datetime(2026, 1, 5, 10, 0, tzinfo=UTC))


# ---------------------------------------------------------------------------
# Infrastructure
# ---------------------------------------------------------------------------
@pytest.fixture(autouse=True)
def run_around_tests():
    """Reset process-wide adapters, sinks and settings after every test."""
    from fulfillment.carrier import reset_carrier
    from notifications.sink import reset_sinks
    from payments.gateway import reset_gateway
    from shared.config import get_settings
    from shared.context import reset_context

    get_settings.cache_clear()
    yield

    from protean import current_domain

    # Clear all databases
    for _, provider in current_domain.providers.items():
        provider._data_reset()

    # Drain event stores
    current_domain.event_store.store._data_reset()

    reset_context()
    reset_gateway()
    reset_carrier()
    reset_sinks()
    get_settings.cache_clear()


@pytest.fixture()
def settings():
    from shared.config import Settings

    return Settings(env="test", database_url="memory://")


@pytest.fixture()
def gateway():
    from payments.gateway.fake_adapter import FakeGateway

    return FakeGateway()


@pytest.fixture()
def carrier():
    from fulfillment.carrier.fake_adapter import FakeCarrier

    return FakeCarrier()


@pytest.fixture()
def notifications():
    from notifications.sink import RecordingNotificationSink

    return RecordingNotificationSink()


@pytest.fixture()
def stock_alerts():
    from notifications.sink import RecordingStockAlertSink

    return RecordingStockAlertSink()


@pytest.fixture()
def context(settings, gateway, carrier, notifications, stock_alerts, clock):
    from shared.context import Reconciliation, set_context

    reconciliation = Reconciliation(
        settings=settings,
        gateway=gateway,
        carrier=carrier,
        notifications=notifications,
        stock_alerts=stock_alerts,
        clock=clock,
    )
    set_context(reconciliation)
    return reconciliation


@pytest.fixture()
def client(context):
    from fastapi.testclient import TestClient

    from app import app

    with TestClient(app) as test_client:
        yield test_client


# ---------------------------------------------------------------------------
# Domain helpers
# ---------------------------------------------------------------------------
_sku_counter = count(1)


@pytest.fixture()
def make_product(context):
    def _make(name="Brass Diya", price=500.0, stock=10, sku=None, threshold=None, image_url=None):
        return context.ledger.register_product(
            name=name,
            sku=sku or f"SKU-{next(_sku_counter):05d}",
            price=price,
            initial_quantity=stock,
            image_url=image_url,
            low_stock_threshold=threshold,
        )

    return _make


@pytest.fixture()
def customer():
    from ordering.customer import Address, Customer

    return Customer(
        id="cust-001",
        name="Asha Rao",
        email="asha@example.com",
        addresses=(
            Address(
                id="addr-home",
                name="Asha Rao",
                phone="+91 98765 43210",
                line1="12 MG Road",
                city="Bengaluru",
                state="Karnataka",
                postal_code="560001",
                is_default=True,
            ),
            Address(
                id="addr-office",
                name="Asha Rao",
                phone="080-4123-4567",
                line1="4th Floor, Tech Park",
                city="Jaipur",
                state="Rajasthan",
                postal_code="302 001",
            ),
        ),
    )


@pytest.fixture()
def fill_cart(context):
    """Put ``(product, quantity)`` lines into the customer's cart and return the cart."""
    from protean import current_domain

    from ordering.cart.cart import Cart

    def _fill(customer_id, *lines):
        carts = current_domain.repository_for(Cart)
        cart = carts.for_customer(customer_id) or Cart(customer_id=customer_id)
        for product, quantity in lines:
            cart.add_item(str(product.id), quantity)
        carts.add(cart)
        return carts.get(cart.id)

    return _fill


@pytest.fixture()
def place_order(context, customer, make_product, fill_cart):
    """Check out a cart of ``lines`` (default: two units of a 500.00 product)."""

    def _place(payment_method="razorpay", lines=None, coupon_code=None, **kwargs):
        if lines is None:
            lines = [(make_product(), 2)]
        cart = fill_cart(customer.id, *lines)
        return context.checkout.create_order(cart, customer, payment_method, coupon_code=coupon_code, **kwargs)

    return _place


@pytest.fixture()
def load_order(context):
    from protean import current_domain

    from ordering.order.order import Order

    def _load(order_number):
        return current_domain.repository_for(Order).find_by_number(order_number)

    return _load


# ---------------------------------------------------------------------------
# Webhook helpers
# ---------------------------------------------------------------------------
WEBHOOK_SECRET = "test-webhook-secret"
KEY_SECRET = "test-key-secret"


@pytest.fixture()
def signed():
    """Serialise a webhook body and sign it the way the gateway does."""
    from payments.payment.signature import compute_signature

    def _sign(body: dict, secret: str = WEBHOOK_SECRET) -> tuple[bytes, str]:
        raw = json.dumps(body).encode("utf-8")
        return raw, compute_signature(secret, raw)

    return _sign


@pytest.fixture()
def gateway_event():
    """Build a gateway webhook body for a payment or refund entity."""

    def _event(event, gateway_order_id=None, payment_id="pay_test001", amount=1080.0, order_number=None, refund=None):
        payment = {
            "id": payment_id,
            "order_id": gateway_order_id,
            "amount": int(round(amount * 100)),
            "currency": "INR",
            "status": "failed" if event == "payment.failed" else "captured",
            "notes": {"order_number": order_number} if order_number else {},
        }
        if event == "payment.failed":
            payment["error_description"] = "Card declined"
        payload = {"payment": {"entity": payment}}
        if refund is not None:
            refund_id, refund_amount = refund
            payload["refund"] = {
                "entity": {"id": refund_id, "payment_id": payment_id, "amount": int(round(refund_amount * 100))}
            }
        return {"event": event, "payload": payload}

    return _event


@pytest.fixture()
def capture_payment(context, signed, gateway_event):
    """Deliver a signed ``payment.captured`` webhook for an order."""
    from protean import current_domain

    from ordering.order.order import Order

    def _capture(order_number, payment_id="pay_test001", event_id=None):
        order = current_domain.repository_for(Order).get_by_number(order_number)
        gateway_order_id, amount = order.gateway_order_id, order.grand_total
        raw, signature = signed(
            gateway_event("payment.captured", gateway_order_id, payment_id, amount, order_number=order_number)
        )
        return context.payments.handle_webhook(raw, signature, event_id)

    return _capture
