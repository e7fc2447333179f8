"""Tests for CheckoutOrchestrator: pricing, stock debits, numbering and saga compensation."""

from datetime import UTC, datetime

import pytest
from protean import current_domain

from fulfillment.shipment.outbox import ShipmentTask, ShipmentTaskStatus
from inventory.stock.movement import StockMovement
from inventory.stock.product import Product
from notifications.sink import NotificationKind
from ordering.cart.cart import Cart
from ordering.checkout.coupons import Coupon, CouponRedemption
from shared.db import as_utc
from shared.exceptions import AuthorizationError, StockError, ValidationError
from shared.status import OrderStatus, PaymentStatus, ShippingStatus


def _stock(context, product_id):
    return current_domain.repository_for(Product).get(product_id).stock_quantity


def _cart_lines(context, customer_id):
    return current_domain.repository_for(Cart).for_customer(customer_id).lines()


@pytest.fixture()
def welcome_coupon(context):
    coupon = Coupon(
        code="WELCOME10",
        name="Welcome offer",
        discount_type="percentage",
        discount_value=10,
        max_discount_amount=500,
        valid_from=datetime(2026, 1, 1, tzinfo=UTC),
        valid_until=datetime(2026, 2, 1, tzinfo=UTC),
        usage_limit=100,
    )
    current_domain.repository_for(Coupon).add(coupon)
    return coupon


class TestOnlineCheckout:
    def test_creates_pending_order_with_priced_snapshot(self, context, place_order, load_order, gateway):
        result = place_order()

        assert result.order_number == "ORD202601050001"
        assert result.invoice_number == "INV202601050001"
        assert result.grand_total == 1080.0
        assert result.status == OrderStatus.PENDING.value
        assert result.payment_status == PaymentStatus.PENDING.value
        assert result.shipping_status == ShippingStatus.PENDING.value

        order = load_order(result.order_number)
        assert order.subtotal == 1000.0
        assert order.shipping_charge == 50.0
        assert order.tax == 30.0
        assert [(i.quantity, i.unit_price) for i in order.items] == [(2, 500.0)]
        assert as_utc(order.created_at) == datetime(2026, 1, 5, 10, 0, tzinfo=UTC)

    def test_opens_gateway_order_for_grand_total(self, place_order, gateway):
        result = place_order()

        [call] = gateway.calls_to("create_order")
        assert call["amount"] == 1080.0
        assert call["receipt"] == result.order_number
        assert result.gateway_order_id.startswith("order_fake")

    def test_gateway_failure_leaves_order_payable(self, place_order, gateway, load_order):
        gateway.configure(should_succeed=False)

        result = place_order()

        assert result.gateway_order_id is None
        assert load_order(result.order_number).status == OrderStatus.PENDING.value

    def test_snapshots_shipping_and_billing_addresses(self, place_order, load_order):
        result = place_order(billing_address_id="addr-office")

        order = load_order(result.order_number)
        assert order.shipping_address.postal_code == "560001"
        assert order.shipping_address.phone == "9876543210"
        assert order.billing_address.postal_code == "302001"
        assert order.billing_address.phone == "8041234567"
        assert order.shipping_address.email == "asha@example.com"

    def test_debits_stock_per_line(self, context, place_order, make_product):
        lamp = make_product(name="Lamp", price=250.0, stock=4)
        bowl = make_product(name="Bowl", price=100.0, stock=10)

        result = place_order(lines=[(lamp, 3), (bowl, 1)])

        assert _stock(context, lamp.id) == 1
        assert _stock(context, bowl.id) == 9
        movements = (
            current_domain.repository_for(StockMovement)._dao.query.filter(order_number=result.order_number).all().items
        )
        assert sorted(m.quantity for m in movements) == [1, 3]

    def test_clears_cart(self, context, customer, place_order):
        place_order()

        assert _cart_lines(context, customer.id) == []

    def test_emits_new_order_and_purchase_event(self, place_order, notifications):
        result = place_order()

        [new_order] = notifications.of_kind(NotificationKind.NEW_ORDER)
        assert new_order["order_number"] == result.order_number
        assert new_order["grand_total"] == 1080.0
        [purchase] = notifications.analytics
        assert purchase["value"] == 1080.0
        assert purchase["currency"] == "INR"

    def test_order_numbers_follow_daily_sequence(self, place_order, clock):
        first = place_order()
        second = place_order()
        clock.advance(days=1)
        next_day = place_order()

        assert first.order_number == "ORD202601050001"
        assert second.order_number == "ORD202601050002"
        assert next_day.order_number == "ORD202601060001"


class TestCashOnDelivery:
    def test_cod_order_books_shipment_immediately(self, context, place_order, carrier, load_order):
        result = place_order(payment_method="cod")

        order = load_order(result.order_number)
        assert order.status == OrderStatus.PENDING.value
        assert order.payment_status == PaymentStatus.PENDING.value
        assert order.shipping_status == ShippingStatus.CONFIRMED.value
        assert order.carrier_order_id == "1001"
        assert order.carrier_shipment_id == "5001"
        assert order.awb_code == "AWB00000002"
        assert order.courier_company_id == "24"
        assert order.tracking_url == "https://shiprocket.co/tracking/AWB00000002"
        assert result.awb_code == "AWB00000002"

    def test_cod_does_not_touch_gateway(self, place_order, gateway):
        place_order(payment_method="COD")

        assert gateway.calls == []

    def test_carrier_outage_leaves_retryable_task(self, context, place_order, carrier, load_order):
        carrier.configure(should_succeed=False)

        result = place_order(payment_method="cod")

        assert load_order(result.order_number).awb_code is None
        task = current_domain.repository_for(ShipmentTask).for_order(result.order_number)
        assert task.status == ShipmentTaskStatus.PENDING.value
        assert task.attempts == 1


class TestCoupons:
    def test_coupon_discount_applies_before_tax(self, context, place_order, welcome_coupon):
        result = place_order(coupon_code="welcome10")

        assert result.grand_total == 977.0
        assert current_domain.repository_for(Coupon).get(welcome_coupon.id).used_count == 1
        [redemption] = current_domain.repository_for(CouponRedemption)._dao.query.all().items
        assert redemption.order_number == result.order_number
        assert redemption.discount == 100.0

    def test_unknown_coupon_rejected_before_any_write(self, context, place_order, customer):
        with pytest.raises(ValidationError) as exc:
            place_order(coupon_code="NOPE")

        assert "coupon_code" in exc.value.messages
        assert len(_cart_lines(context, customer.id)) == 1

    def test_expired_coupon_rejected(self, place_order, welcome_coupon, clock):
        clock.advance(days=60)

        with pytest.raises(ValidationError):
            place_order(coupon_code="WELCOME10")


class TestCheckoutRejections:
    def test_empty_cart(self, context, customer):
        cart = current_domain.repository_for(Cart).get_or_create(customer.id)
        assert cart.is_empty

        with pytest.raises(ValidationError) as exc:
            context.checkout.create_order(cart, customer, "razorpay")
        assert "cart" in exc.value.messages

    def test_cart_of_another_customer(self, context, customer, make_product, fill_cart):
        cart = fill_cart("cust-999", (make_product(), 1))

        with pytest.raises(AuthorizationError):
            context.checkout.create_order(cart, customer, "razorpay")

    def test_unknown_payment_method(self, place_order):
        with pytest.raises(ValidationError) as exc:
            place_order(payment_method="barter")
        assert "payment_method" in exc.value.messages

    def test_insufficient_stock_rejected_in_preflight(self, context, place_order, make_product, load_order):
        lamp = make_product(stock=1)

        with pytest.raises(StockError) as exc:
            place_order(lines=[(lamp, 2)])

        assert exc.value.available == 1
        assert _stock(context, lamp.id) == 1
        assert load_order("ORD202601050001") is None

    def test_inactive_product_rejected(self, context, place_order, make_product):
        lamp = make_product(stock=5)
        products = current_domain.repository_for(Product)
        product = products.get(lamp.id)
        product.is_active = False
        products.add(product)

        with pytest.raises(ValidationError) as exc:
            place_order(lines=[(lamp, 1)])
        assert "items" in exc.value.messages

    def test_unknown_address_rejected(self, place_order):
        with pytest.raises(ValidationError):
            place_order(shipping_address_id="addr-moon")


class TestSagaCompensation:
    def test_failed_debit_voids_order_and_credits_earlier_lines(
        self, context, customer, place_order, make_product, load_order, notifications, monkeypatch
    ):
        lamp = make_product(name="Lamp", stock=5)
        bowl = make_product(name="Bowl", stock=5)
        real_debit = context.ledger.debit

        def debit(product_id, quantity, *args, **kwargs):
            if product_id == str(bowl.id):
                # Another channel sells the last bowls between preflight and debit
                context.ledger.adjust(bowl.id, 0, "Marketplace sync")
            return real_debit(product_id, quantity, *args, **kwargs)

        monkeypatch.setattr(context.ledger, "debit", debit)

        with pytest.raises(StockError):
            place_order(lines=[(lamp, 2), (bowl, 1)])

        assert _stock(context, lamp.id) == 5
        order = load_order("ORD202601050001")
        assert order.status == OrderStatus.CANCELLED.value
        assert order.cancellation_reason.startswith("Checkout voided:")
        assert order.cancelled_by == "system"
        assert len(_cart_lines(context, customer.id)) == 2
        assert notifications.of_kind(NotificationKind.NEW_ORDER) == []

    def test_failed_cart_clear_releases_coupon(
        self, context, customer, place_order, make_product, welcome_coupon, load_order, monkeypatch
    ):
        lamp = make_product(stock=5)

        def broken_clear(cart_id):
            raise RuntimeError("cart store unavailable")

        monkeypatch.setattr(context.checkout, "_clear_cart", broken_clear)

        with pytest.raises(RuntimeError):
            place_order(lines=[(lamp, 2)], coupon_code="WELCOME10")

        assert _stock(context, lamp.id) == 5
        assert load_order("ORD202601050001").status == OrderStatus.CANCELLED.value
        assert current_domain.repository_for(Coupon).get(welcome_coupon.id).used_count == 0
        [redemption] = current_domain.repository_for(CouponRedemption)._dao.query.all().items
        assert redemption.released
        assert redemption.released_at is not None

    def test_voided_order_does_not_consume_a_shipment(self, context, place_order, make_product, monkeypatch):
        lamp = make_product(stock=5)
        def broken_clear(cart_id):
            raise RuntimeError("cart store unavailable")

        monkeypatch.setattr(context.checkout, "_clear_cart", broken_clear)

        with pytest.raises(RuntimeError):
            place_order(payment_method="cod", lines=[(lamp, 1)])

        assert context.carrier.calls_to("create_shipment") == []
