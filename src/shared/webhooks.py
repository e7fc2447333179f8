"""Inbound webhook audit records.

Every webhook is stored before any business effect is applied. The stored
record is the substrate for deduplication (``dedupe_key`` is unique per
source) and for replaying events whose processing failed. A record that
keeps failing is marked dead once it runs out of attempts and is no longer
replayed.
"""

import json
from datetime import datetime, timedelta
from enum import Enum

import structlog
from protean.exceptions import ValidationError
from protean.fields import Boolean, DateTime, Integer, String, Text
from protean.utils.globals import current_domain

from shared.db import as_utc, fetch_all, utcnow
from shared.domain import orderstream, unit_of_work

logger = structlog.get_logger(__name__)


class WebhookSource(Enum):
    PAYMENT_GATEWAY = "payment_gateway"
    SHIPPING_CARRIER = "shipping_carrier"


@orderstream.aggregate
class WebhookRecord:
    source = String(required=True, max_length=30, choices=WebhookSource)
    event = String(required=True, max_length=100)
    payload_json = Text(required=True)
    # "<source>:<key>" so the same provider key from two sources never collides
    dedupe_key = String(required=True, max_length=160, unique=True)
    order_number = String(max_length=50)
    processed = Boolean(default=False)
    processed_at = DateTime()
    dead = Boolean(default=False)
    error = Text()
    attempts = Integer(default=0, min_value=0)
    next_retry_at = DateTime()
    created_at = DateTime(default=utcnow)

    @property
    def payload(self) -> dict:
        return json.loads(self.payload_json)

    def mark_processed(self, now: datetime | None = None) -> None:
        self.attempts = (self.attempts or 0) + 1
        self.processed = True
        self.processed_at = now or utcnow()
        self.error = None
        self.next_retry_at = None

    def mark_failed(
        self,
        error: str,
        now: datetime | None = None,
        retry_in: timedelta | None = None,
        max_attempts: int | None = None,
    ) -> None:
        now = now or utcnow()
        self.attempts = (self.attempts or 0) + 1
        self.error = error
        if max_attempts is not None and self.attempts >= max_attempts:
            self.dead = True
            self.next_retry_at = None
            logger.error("webhook_dead", source=self.source, record_id=str(self.id), attempts=self.attempts)
            return
        self.next_retry_at = now + retry_in if retry_in else None

    def due(self, now: datetime) -> bool:
        if self.processed or self.dead:
            return False
        return self.next_retry_at is None or as_utc(self.next_retry_at) <= now


@orderstream.repository(part_of=WebhookRecord)
class WebhookRecordRepository:
    def find_by_key(self, source: WebhookSource, dedupe_key: str) -> WebhookRecord | None:
        return self._dao.query.filter(dedupe_key=_scoped(source, dedupe_key)).all().first

    def unprocessed(self, source: WebhookSource) -> list[WebhookRecord]:
        return fetch_all(self._dao.query.filter(source=source.value, processed=False, dead=False))


def _scoped(source: WebhookSource, dedupe_key: str) -> str:
    return f"{source.value}:{dedupe_key}"


def record_webhook(
    source: WebhookSource,
    event: str,
    payload: dict,
    dedupe_key: str,
    order_number: str | None = None,
) -> tuple[WebhookRecord, bool]:
    """Persist an inbound webhook in its own unit of work, returning ``(record, created)``.

    A redelivery of an already recorded event returns the stored record with
    ``created=False``.
    """
    records = current_domain.repository_for(WebhookRecord)
    existing = records.find_by_key(source, dedupe_key)
    if existing is not None:
        logger.info(
            "webhook_duplicate",
            source=source.value,
            webhook_event=event,
            dedupe_key=dedupe_key,
            processed=existing.processed,
        )
        return existing, False

    record = WebhookRecord(
        source=source.value,
        event=event,
        payload_json=json.dumps(payload, default=str),
        dedupe_key=_scoped(source, dedupe_key),
        order_number=order_number,
    )
    try:
        with unit_of_work():
            records.add(record)
    except ValidationError:
        # A concurrent delivery of the same event won the insert
        existing = records.find_by_key(source, dedupe_key)
        if existing is None:
            raise
        return existing, False

    logger.info("webhook_recorded", source=source.value, webhook_event=event, record_id=str(record.id))
    return record, True


def pending_webhooks(source: WebhookSource, now: datetime | None = None, limit: int = 50) -> list[WebhookRecord]:
    """Unprocessed, live records of ``source`` whose retry time has come, oldest first."""
    now = now or utcnow()
    records = current_domain.repository_for(WebhookRecord).unprocessed(source)
    due = sorted((r for r in records if r.due(now)), key=lambda r: as_utc(r.created_at))
    return due[:limit]
