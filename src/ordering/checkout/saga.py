"""In-process saga with per-step compensations.

Each step runs its own unit of work. When a later step raises, the
compensations registered by the completed steps run in reverse order and
the original error is re-raised. A failing compensation is logged and the
remaining ones still run.

Usage:

    with Saga("checkout", customer_id=...) as saga:
        order = saga.step("create_order", create, compensate=void)
        saga.step("debit_stock", debit, compensate=credit_back)
"""

from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

import structlog

logger = structlog.get_logger(__name__)

Compensation = Callable[[Any, BaseException], None]


@dataclass
class _CompletedStep:
    name: str
    result: Any
    compensate: Compensation | None


class Saga:
    def __init__(self, name: str, **context) -> None:
        self.name = name
        self.context = context
        self.completed: list[_CompletedStep] = []
        self.failed_compensations: list[str] = []

    def __enter__(self) -> "Saga":
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        if exc is not None:
            self.compensate(exc)
        return False

    def bind(self, **context) -> None:
        self.context.update(context)

    def step(self, name: str, action: Callable[[], Any], compensate: Compensation | None = None) -> Any:
        result = action()
        self.completed.append(_CompletedStep(name=name, result=result, compensate=compensate))
        logger.debug("saga_step_completed", saga=self.name, step=name, **self.context)
        return result

    def compensate(self, error: BaseException) -> None:
        logger.warning(
            "saga_compensating",
            saga=self.name,
            error=str(error),
            completed=[s.name for s in self.completed],
            **self.context,
        )
        for completed in reversed(self.completed):
            if completed.compensate is None:
                continue
            try:
                completed.compensate(completed.result, error)
            except Exception:
                self.failed_compensations.append(completed.name)
                logger.exception("saga_compensation_failed", saga=self.name, step=completed.name, **self.context)
        self.completed.clear()
