"""Shipment outbox: durable ``create_shipment`` tasks and their worker.

A task is written in the same unit of work as the payment transition that
requires a shipment, so a captured payment always leaves a task behind even
if the process dies before the carrier is called. ``ShipmentOutbox`` drains
due tasks, retrying failures with exponential backoff until they succeed or
run out of attempts. The ``BookShipment`` command runs one order's task
right away; the booking process manager sends it.
"""

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum

import structlog
from protean import handle
from protean.fields import DateTime, Integer, String, Text
from protean.utils.globals import current_domain

from fulfillment.shipment.reconciler import ShippingReconciler
from shared.db import as_utc, utcnow
from shared.domain import orderstream, unit_of_work

logger = structlog.get_logger(__name__)

CLAIM_LEASE = timedelta(minutes=5)


class ShipmentTaskStatus(Enum):
    PENDING = "pending"
    DONE = "done"
    DEAD = "dead"


@orderstream.aggregate
class ShipmentTask:
    """One order's pending ``create_shipment`` call; at most one per order."""

    order_number = String(required=True, max_length=20, unique=True)
    status = String(max_length=10, choices=ShipmentTaskStatus, default=ShipmentTaskStatus.PENDING.value)
    attempts = Integer(default=0, min_value=0)
    lease_seq = Integer(default=0)
    next_attempt_at = DateTime(required=True)
    last_error = Text()
    created_at = DateTime(default=utcnow)
    completed_at = DateTime()

    @property
    def task_status(self) -> ShipmentTaskStatus:
        return ShipmentTaskStatus(self.status)

    def to_dict(self) -> dict:
        return {
            "id": str(self.id),
            "kind": "create_shipment",
            "order_number": self.order_number,
            "status": self.status,
            "attempts": self.attempts,
            "next_attempt_at": as_utc(self.next_attempt_at).isoformat() if self.next_attempt_at else None,
            "last_error": self.last_error,
        }


@orderstream.repository(part_of=ShipmentTask)
class ShipmentTaskRepository:
    def for_order(self, order_number: str) -> ShipmentTask | None:
        return self._dao.query.filter(order_number=order_number).all().first

    def due(self, now: datetime, limit: int) -> list[ShipmentTask]:
        return (
            self._dao.query.filter(status=ShipmentTaskStatus.PENDING.value, next_attempt_at__lte=now)
            .order_by("next_attempt_at")
            .limit(limit)
            .all()
            .items
        )

    def claim(self, task: ShipmentTask, now: datetime) -> bool:
        """Push the task's next attempt past a lease so no other worker picks it up."""
        claimed = self._dao.query.filter(
            id=str(task.id),
            status=ShipmentTaskStatus.PENDING.value,
            lease_seq=task.lease_seq,
        ).update_all(lease_seq=task.lease_seq + 1, next_attempt_at=now + CLAIM_LEASE)
        return claimed == 1


def enqueue_shipment(order_number: str, now: datetime | None = None) -> ShipmentTask:
    """Add the order's ``create_shipment`` task to the open unit of work."""
    repository = current_domain.repository_for(ShipmentTask)
    existing = repository.for_order(order_number)
    if existing is not None:
        return existing

    task = ShipmentTask(order_number=order_number, next_attempt_at=now or utcnow())
    repository.add(task)
    logger.info("shipment_task_enqueued", order_number=order_number, task_id=str(task.id))
    return task


@orderstream.command(part_of=ShipmentTask)
class BookShipment:
    order_number = String(required=True, max_length=20)


@orderstream.command_handler(part_of=ShipmentTask)
class ShipmentTaskCommandHandler:
    @handle(BookShipment)
    def book_shipment(self, command: BookShipment):
        from shared.context import get_context

        return get_context().outbox.process_order(command.order_number)


@dataclass(frozen=True)
class BackoffPolicy:
    base_delay_seconds: int = 30
    max_delay_seconds: int = 3600
    max_attempts: int = 8

    def delay(self, attempts: int) -> timedelta:
        """Delay before the next try after ``attempts`` failures."""
        seconds = self.base_delay_seconds * (2 ** max(attempts - 1, 0))
        return timedelta(seconds=min(seconds, self.max_delay_seconds))

    def exhausted(self, attempts: int) -> bool:
        return attempts >= self.max_attempts


@dataclass
class OutboxRunResult:
    processed: int = 0
    succeeded: int = 0
    retried: int = 0
    dead: int = 0
    order_numbers: list[str] = field(default_factory=list)


class ShipmentOutbox:
    def __init__(
        self,
        reconciler: ShippingReconciler,
        policy: BackoffPolicy | None = None,
        batch_size: int = 50,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.reconciler = reconciler
        self.policy = policy or BackoffPolicy()
        self.batch_size = batch_size
        self.clock = clock

    @property
    def tasks(self) -> ShipmentTaskRepository:
        return current_domain.repository_for(ShipmentTask)

    def due_tasks(self, now: datetime | None = None) -> list[ShipmentTask]:
        return self.tasks.due(now or self.clock(), self.batch_size)

    def process_due(self, now: datetime | None = None) -> OutboxRunResult:
        """Run every task whose next attempt time has come."""
        now = now or self.clock()
        outcome = OutboxRunResult()
        for task in self.due_tasks(now):
            self._run(task, now, outcome)
        if outcome.processed:
            logger.info(
                "outbox_drained",
                processed=outcome.processed,
                succeeded=outcome.succeeded,
                retried=outcome.retried,
                dead=outcome.dead,
            )
        return outcome

    def process_order(self, order_number: str, now: datetime | None = None) -> OutboxRunResult:
        """Run the order's pending task right away if it is due."""
        now = now or self.clock()
        outcome = OutboxRunResult()
        task = self.tasks.for_order(order_number)
        if (
            task is not None
            and task.task_status == ShipmentTaskStatus.PENDING
            and as_utc(task.next_attempt_at) <= now
        ):
            self._run(task, now, outcome)
        return outcome

    def _run(self, task: ShipmentTask, now: datetime, outcome: OutboxRunResult) -> None:
        with unit_of_work():
            if not self.tasks.claim(task, now):
                return

        order_number = task.order_number
        result = self.reconciler.create_shipment_for_order(order_number)

        with unit_of_work():
            task = self.tasks.get(task.id)
            task.attempts += 1
            outcome.processed += 1
            outcome.order_numbers.append(order_number)
            log = logger.bind(order_number=order_number, task_id=str(task.id), attempts=task.attempts)

            if result.success:
                task.status = ShipmentTaskStatus.DONE.value
                task.completed_at = self.clock()
                task.last_error = result.warning
                outcome.succeeded += 1
                log.info("shipment_task_done", awb_code=result.awb_code, warning=result.warning)
            elif not result.retryable or self.policy.exhausted(task.attempts):
                task.status = ShipmentTaskStatus.DEAD.value
                task.last_error = result.error
                outcome.dead += 1
                log.error("shipment_task_dead", error=result.error)
            else:
                task.next_attempt_at = now + self.policy.delay(task.attempts)
                task.last_error = result.error
                outcome.retried += 1
                log.warning(
                    "shipment_task_retry_scheduled",
                    error=result.error,
                    next_attempt_at=task.next_attempt_at.isoformat(),
                )
            self.tasks.add(task)
