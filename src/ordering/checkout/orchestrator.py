"""CheckoutOrchestrator: turns a cart into a pending Order.

Validation and the stock preflight run before anything is written. The
writes then run as a saga: the order, its address snapshots, one stock
debit per line, the coupon redemption and the cart clear each commit on
their own and register a compensation. If a later step fails, debited
stock is credited back, the coupon is released and the order is voided
(cancelled through the gate), so a failed checkout leaves no live order.
"""

from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime

import structlog
from protean.exceptions import ValidationError
from protean.utils.globals import current_domain

from fulfillment.shipment.outbox import ShipmentOutbox, enqueue_shipment
from inventory.stock.ledger import INSUFFICIENT_STOCK, StockLedger
from inventory.stock.product import Product
from notifications.sink import AnalyticsEvent, NotificationKind, NotificationSink, emit, track_event
from ordering.cart.cart import Cart
from ordering.checkout.coupons import Coupon, CouponRedemption, redeem, release, validate_coupon
from ordering.checkout.pricing import PriceBreakdown, PricingPolicy
from ordering.checkout.saga import Saga
from ordering.customer import Address, Customer
from ordering.order.gate import OrderStateGate
from ordering.order.order import (
    AddressType,
    CancellationActor,
    Order,
    OrderAddress,
    OrderItem,
    OrderSequence,
    next_order_numbers,
    normalize_phone,
    normalize_postal_code,
    round_money,
)
from payments.payment.reconciler import PaymentReconciler
from shared.db import utcnow
from shared.domain import unit_of_work
from shared.exceptions import AuthorizationError, StockError
from shared.status import OrderStatus, PaymentMethod

logger = structlog.get_logger(__name__)

@dataclass(frozen=True)
class _Line:
    product_id: str
    quantity: int
    unit_price: float
    sku: str
    name: str
    image: str | None


@dataclass(frozen=True)
class CheckoutResult:
    order_number: str
    invoice_number: str
    grand_total: float
    payment_method: str
    status: str
    payment_status: str
    shipping_status: str
    gateway_order_id: str | None = None
    awb_code: str | None = None


def parse_payment_method(value) -> PaymentMethod:
    try:
        return PaymentMethod(str(value).strip().lower())
    except ValueError:
        allowed = ", ".join(m.value for m in PaymentMethod)
        raise ValidationError({"payment_method": [f"Unknown payment method {value!r}; expected one of {allowed}"]})


class CheckoutOrchestrator:
    def __init__(
        self,
        ledger: StockLedger,
        gate: OrderStateGate,
        pricing: PricingPolicy,
        payments: PaymentReconciler,
        outbox: ShipmentOutbox,
        notifications: NotificationSink,
        currency: str = "INR",
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.ledger = ledger
        self.gate = gate
        self.pricing = pricing
        self.payments = payments
        self.outbox = outbox
        self.notifications = notifications
        self.currency = currency
        self.clock = clock

    @property
    def orders(self):
        return current_domain.repository_for(Order)

    def create_order(
        self,
        cart: Cart,
        customer: Customer,
        payment_method: str,
        coupon_code: str | None = None,
        shipping_address_id: str | None = None,
        billing_address_id: str | None = None,
    ) -> CheckoutResult:
        method = parse_payment_method(payment_method)
        if cart.customer_id != customer.id:
            raise AuthorizationError("Cart belongs to another customer", customer_id=customer.id)
        if cart.is_empty:
            raise ValidationError({"cart": ["Cart is empty"]})

        log = logger.bind(customer_id=customer.id, cart_id=str(cart.id), payment_method=method.value)
        lines = self._preflight(cart.lines())

        shipping = customer.resolve_address(shipping_address_id, "shipping_address_id")
        billing = (
            customer.resolve_address(billing_address_id, "billing_address_id") if billing_address_id else shipping
        )
        addresses = [
            self._address_snapshot(shipping, AddressType.SHIPPING, customer),
            self._address_snapshot(billing, AddressType.BILLING, customer),
        ]

        subtotal = round_money(sum(line.unit_price * line.quantity for line in lines))
        coupon_id, discount = None, 0.0
        if coupon_code:
            coupon = validate_coupon(coupon_code, subtotal, customer.id, self.clock())
            coupon_id, discount = str(coupon.id), coupon.discount_for(subtotal)
            coupon_code = coupon.code
        price = self.pricing.quote(subtotal, discount, addresses[0]["postal_code"])

        with Saga("checkout", customer_id=customer.id) as saga:
            order_number = saga.step(
                "create_order",
                lambda: self._insert_order(customer, method, lines, price, coupon_code),
                compensate=self._void_order,
            )
            saga.bind(order_number=order_number)
            log = log.bind(order_number=order_number)

            saga.step("snapshot_addresses", lambda: self._attach_addresses(order_number, addresses))

            for line in lines:
                saga.step(
                    f"debit_stock:{line.product_id}",
                    lambda line=line: self.ledger.debit(
                        line.product_id,
                        line.quantity,
                        reason=f"Order {order_number}",
                        order_ref=order_number,
                        actor=customer.id,
                    ),
                    compensate=lambda movement, error, line=line: self.ledger.credit(
                        line.product_id,
                        line.quantity,
                        reason=f"Checkout voided for order {order_number}",
                        order_ref=order_number,
                    ),
                )

            if coupon_id:
                saga.step(
                    "redeem_coupon",
                    lambda: self._redeem(coupon_id, customer.id, order_number, price.discount),
                    compensate=self._release,
                )

            saga.step(
                "clear_cart",
                lambda: self._clear_cart(str(cart.id)),
                compensate=lambda removed, error: self._restore_cart(str(cart.id), removed),
            )

        log.info("checkout_completed", grand_total=price.grand_total, lines=len(lines))
        emit(
            self.notifications,
            NotificationKind.NEW_ORDER,
            order_number=order_number,
            customer_id=customer.id,
            customer_name=customer.name,
            grand_total=price.grand_total,
            payment_method=method.value,
        )
        track_event(
            self.notifications,
            AnalyticsEvent.PURCHASE,
            order_number=order_number,
            customer_id=customer.id,
            value=price.grand_total,
            currency=self.currency,
            items=[{"product_id": line.product_id, "quantity": line.quantity} for line in lines],
        )

        if method == PaymentMethod.COD:
            # Cash on delivery ships right away; the outbox keeps retrying if the carrier fails now
            self.outbox.process_order(order_number)
        else:
            self.payments.create_gateway_order(order_number)

        return self._result(order_number)

    # -------------------------------------------------------------------
    # Validation
    # -------------------------------------------------------------------
    def _preflight(self, cart_lines: list[tuple[str, int]]) -> list[_Line]:
        report = self.ledger.check_availability(cart_lines)
        for shortfall in report.shortfalls:
            if shortfall.reason != INSUFFICIENT_STOCK:
                raise ValidationError({"items": [f"{shortfall.reason}: {shortfall.name or shortfall.product_id}"]})
        if not report.ok:
            shortfall = report.shortfalls[0]
            raise StockError(
                f"Insufficient stock for {shortfall.name}. Available: {shortfall.available}",
                product_id=shortfall.product_id,
                requested=shortfall.requested,
                available=shortfall.available,
            )

        products = current_domain.repository_for(Product).find_many(pid for pid, _ in cart_lines)
        return [
            _Line(
                product_id=product_id,
                quantity=quantity,
                unit_price=round_money(products[product_id].price),
                sku=products[product_id].sku,
                name=products[product_id].name,
                image=products[product_id].image_url,
            )
            for product_id, quantity in cart_lines
        ]

    @staticmethod
    def _address_snapshot(address: Address, address_type: AddressType, customer: Customer) -> dict:
        return dict(
            address_type=address_type.value,
            name=address.name,
            phone=normalize_phone(address.phone),
            line1=address.line1,
            landmark=address.landmark,
            city=address.city,
            state=address.state,
            postal_code=normalize_postal_code(address.postal_code),
            country=address.country or "India",
            email=address.email or customer.email,
        )

    # -------------------------------------------------------------------
    # Saga steps and compensations
    # -------------------------------------------------------------------
    def _insert_order(
        self,
        customer: Customer,
        method: PaymentMethod,
        lines: list[_Line],
        price: PriceBreakdown,
        coupon_code: str | None,
    ) -> str:
        with unit_of_work():
            now = self.clock()
            # The day's sequence advances in the same unit of work as the insert
            order_number, invoice_number = next_order_numbers(
                now.date(), current_domain.repository_for(OrderSequence)
            )
            order = Order.place(
                order_number,
                invoice_number,
                now,
                customer_id=customer.id,
                subtotal=price.subtotal,
                discount=price.discount,
                shipping_charge=price.shipping_charge,
                tax=price.tax,
                grand_total=price.grand_total,
                currency=self.currency,
                coupon_code=coupon_code,
                payment_method=method.value,
                items=[
                    OrderItem(
                        product_id=line.product_id,
                        quantity=line.quantity,
                        unit_price=line.unit_price,
                        sku=line.sku,
                        product_name=line.name,
                        product_image=line.image,
                    )
                    for line in lines
                ],
            )
            self.orders.add(order)
            if method == PaymentMethod.COD:
                enqueue_shipment(order_number, now)
        return order_number

    def _void_order(self, order_number: str, error: BaseException) -> None:
        with unit_of_work():
            order = self.orders.find_by_number(order_number)
            if order is None:
                return
            self.gate.transition(order, OrderStatus.CANCELLED, "checkout.voided")
            order.mark_cancelled(f"Checkout voided: {error}", CancellationActor.SYSTEM, self.clock())
            self.orders.add(order)
        logger.warning("checkout_voided", order_number=order_number, error=str(error))

    def _attach_addresses(self, order_number: str, addresses: list[dict]) -> None:
        with unit_of_work():
            order = self.orders.get_by_number(order_number)
            order.add_addresses([OrderAddress(**address) for address in addresses])
            self.orders.add(order)

    def _redeem(self, coupon_id: str, customer_id: str, order_number: str, discount: float) -> str:
        with unit_of_work():
            coupon = current_domain.repository_for(Coupon).get(coupon_id)
            return str(redeem(coupon, customer_id, order_number, discount, self.clock()).id)

    def _release(self, redemption_id: str, error: BaseException) -> None:
        with unit_of_work():
            release(current_domain.repository_for(CouponRedemption).get(redemption_id), self.clock())

    def _clear_cart(self, cart_id: str) -> list[tuple[str, int]]:
        carts = current_domain.repository_for(Cart)
        with unit_of_work():
            cart = carts.get(cart_id)
            removed = cart.clear()
            carts.add(cart)
        return removed

    def _restore_cart(self, cart_id: str, lines: list[tuple[str, int]]) -> None:
        carts = current_domain.repository_for(Cart)
        with unit_of_work():
            cart = carts.get(cart_id)
            cart.restore(lines)
            carts.add(cart)

    def _result(self, order_number: str) -> CheckoutResult:
        order = self.orders.get_by_number(order_number)
        return CheckoutResult(
            order_number=order.order_number,
            invoice_number=order.invoice_number,
            grand_total=order.grand_total,
            payment_method=order.payment_method,
            status=order.status,
            payment_status=order.payment_status,
            shipping_status=order.shipping_status,
            gateway_order_id=order.gateway_order_id,
            awb_code=order.awb_code,
        )
