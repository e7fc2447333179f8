"""Wiring: one ``Reconciliation`` holds the engine's collaborators.

The API, the worker and the tests all resolve the ledger, reconcilers and
orchestrator from here rather than building their own. Adapters come from
the payments/fulfillment factories and the sinks from the notifications
registry, so ``set_gateway``/``set_carrier``/``set_notification_sink`` swap
them for a context built afterwards.
"""

from collections.abc import Callable
from datetime import datetime

import structlog

from fulfillment.carrier import get_carrier
from fulfillment.carrier.port import CarrierPort
from fulfillment.shipment.outbox import BackoffPolicy, ShipmentOutbox
from fulfillment.shipment.reconciler import ShippingOptions, ShippingReconciler
from fulfillment.shipment.webhook import CarrierWebhookHandler
from inventory.stock.ledger import StockLedger
from notifications.sink import NotificationSink, StockAlertSink, get_notification_sink, get_stock_alert_sink
from ordering.checkout.orchestrator import CheckoutOrchestrator
from ordering.checkout.pricing import PricingPolicy
from ordering.order.cancellation import OrderDesk
from ordering.order.gate import OrderStateGate
from payments.gateway import get_gateway
from payments.gateway.port import PaymentGateway
from payments.payment.reconciler import PaymentReconciler, PaymentSecrets
from shared.config import Settings, get_settings
from shared.db import setup_db, utcnow
from shared.domain import init_domain, orderstream

logger = structlog.get_logger(__name__)


class Reconciliation:
    def __init__(
        self,
        settings: Settings | None = None,
        gateway: PaymentGateway | None = None,
        carrier: CarrierPort | None = None,
        notifications: NotificationSink | None = None,
        stock_alerts: StockAlertSink | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.settings = settings or get_settings()
        self.gateway = gateway or get_gateway()
        self.carrier = carrier or get_carrier()
        self.notifications = notifications or get_notification_sink()
        self.stock_alerts = stock_alerts or get_stock_alert_sink()
        self.clock = clock

        self.gate = OrderStateGate(clock=clock)
        self.ledger = StockLedger(
            self.stock_alerts,
            low_stock_threshold=self.settings.low_stock_threshold,
            clock=clock,
        )
        self.shipping = ShippingReconciler(
            self.carrier,
            self.gate,
            self.ledger,
            self.notifications,
            options=ShippingOptions(
                pickup_location=self.settings.pickup_location,
                pickup_postal_code=self.settings.pickup_postal_code,
                parcel_weight_kg=self.settings.parcel_weight_kg,
                tracking_url_template=self.settings.carrier_tracking_url,
            ),
            clock=clock,
        )
        backoff = BackoffPolicy(
            base_delay_seconds=self.settings.outbox_base_delay_seconds,
            max_delay_seconds=self.settings.outbox_max_delay_seconds,
            max_attempts=self.settings.outbox_max_attempts,
        )
        self.outbox = ShipmentOutbox(
            self.shipping,
            policy=backoff,
            batch_size=self.settings.outbox_batch_size,
            clock=clock,
        )
        self.carrier_webhooks = CarrierWebhookHandler(
            self.shipping,
            api_key=self.settings.carrier_webhook_secret,
            retry_policy=backoff,
            clock=clock,
        )
        self.payments = PaymentReconciler(
            self.gateway,
            self.gate,
            self.shipping,
            self.notifications,
            PaymentSecrets(
                key_secret=self.settings.gateway_key_secret,
                webhook_secret=self.settings.gateway_webhook_secret,
            ),
            currency=self.settings.currency,
            retry_policy=backoff,
            clock=clock,
        )
        self.checkout = CheckoutOrchestrator(
            self.ledger,
            self.gate,
            PricingPolicy.from_settings(self.settings),
            self.payments,
            self.outbox,
            self.notifications,
            currency=self.settings.currency,
            clock=clock,
        )
        self.orders = OrderDesk(self.ledger, self.gate, self.shipping, self.notifications, clock=clock)


_context: Reconciliation | None = None


def get_context() -> Reconciliation:
    """Return the process-wide context, building it from settings on first use."""
    global _context
    if _context is None:
        settings = get_settings()
        init_domain(settings)
        setup_db(orderstream)
        _context = Reconciliation(settings)
        logger.info("reconciliation_context_ready", database=settings.database_url.split("://")[0])
    return _context


def set_context(context: Reconciliation) -> None:
    global _context
    _context = context


def reset_context() -> None:
    global _context
    _context = None
