"""Carrier webhook intake: authenticate, record, then apply."""

import hashlib
import hmac
import json
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime

import structlog
from protean.exceptions import ValidationError
from protean.utils.globals import current_domain

from fulfillment.shipment.outbox import BackoffPolicy
from fulfillment.shipment.reconciler import CarrierEventResult, ShippingReconciler
from shared.db import utcnow
from shared.domain import unit_of_work
from shared.exceptions import WebhookAuthenticationError
from shared.webhooks import WebhookRecord, WebhookSource, pending_webhooks, record_webhook

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class CarrierWebhookOutcome:
    record_id: str
    duplicate: bool = False
    result: CarrierEventResult | None = None
    error: str | None = None


class CarrierWebhookHandler:
    def __init__(
        self,
        reconciler: ShippingReconciler,
        api_key: str = "",
        retry_policy: BackoffPolicy | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.reconciler = reconciler
        self.api_key = api_key
        self.retry_policy = retry_policy or BackoffPolicy()
        self.clock = clock

    @property
    def records(self):
        return current_domain.repository_for(WebhookRecord)

    def authenticate(self, presented: str | None) -> None:
        """No configured key means the endpoint is open."""
        if not self.api_key:
            return
        if not presented or not hmac.compare_digest(presented, self.api_key):
            logger.warning("carrier_webhook_unauthorized")
            raise WebhookAuthenticationError("Invalid carrier webhook key")

    def handle(self, raw_body: bytes, api_key: str | None = None) -> CarrierWebhookOutcome:
        self.authenticate(api_key)
        try:
            payload = json.loads(raw_body)
        except ValueError as exc:
            raise ValidationError({"body": ["Webhook body is not valid JSON"]}) from exc
        if not isinstance(payload, dict):
            raise ValidationError({"body": ["Webhook body must be a JSON object"]})

        event = str(payload.get("current_status") or payload.get("shipment_status") or "tracking_update")
        record, created = record_webhook(
            WebhookSource.SHIPPING_CARRIER,
            event,
            payload,
            hashlib.sha256(raw_body).hexdigest(),
        )
        if not created and (record.processed or record.dead):
            return CarrierWebhookOutcome(record_id=str(record.id), duplicate=True)
        return self.process_record(str(record.id))

    def process_record(self, record_id: str) -> CarrierWebhookOutcome:
        payload = self.records.get(record_id).payload

        try:
            result = self.reconciler.apply_carrier_event(payload)
        except Exception as exc:
            logger.exception("carrier_webhook_failed", record_id=record_id)
            with unit_of_work():
                record = self.records.get(record_id)
                record.mark_failed(
                    str(exc),
                    self.clock(),
                    retry_in=self.retry_policy.delay(record.attempts + 1),
                    max_attempts=self.retry_policy.max_attempts,
                )
                self.records.add(record)
            return CarrierWebhookOutcome(record_id=record_id, error=str(exc))

        with unit_of_work():
            record = self.records.get(record_id)
            record.order_number = result.order_number
            record.mark_processed(self.clock())
            self.records.add(record)
        return CarrierWebhookOutcome(record_id=record_id, result=result)

    def replay_pending(self, now: datetime | None = None, limit: int = 50) -> list[CarrierWebhookOutcome]:
        records = pending_webhooks(WebhookSource.SHIPPING_CARRIER, now or self.clock(), limit)
        return [self.process_record(str(record.id)) for record in records]
