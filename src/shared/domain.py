"""The OrderStream domain: one Protean domain shared by every bounded context.

Checkout debits stock, redeems coupons and writes the order in compensating
steps, and cancellation credits stock and releases coupons in the same unit
of work as the status change, so all contexts register their elements on a
single domain and share its providers.

The database provider is picked from ``ORDERSTREAM_DATABASE_URL``:

    memory://                 in-process store (tests, local experiments)
    sqlite:///./orders.db     SQLite through SQLAlchemy
    postgresql://...          PostgreSQL through SQLAlchemy
"""

from collections.abc import Callable, Iterator
from contextlib import contextmanager
from contextvars import ContextVar

import structlog
from protean import UnitOfWork
from protean.domain import Domain
from protean.utils.globals import current_uow

from shared.config import Settings, get_settings

orderstream = Domain(name="orderstream")

logger = structlog.get_logger(__name__)

_initialized = False
_after_commit: ContextVar[list | None] = ContextVar("orderstream_after_commit", default=None)


def database_config(url: str) -> dict:
    if url.startswith("memory"):
        return {"provider": "memory"}
    if url.startswith("sqlite"):
        return {"provider": "sqlite", "database_uri": url}
    return {"provider": "postgresql", "database_uri": url}


def _register_elements() -> None:
    """Import every module that registers aggregates, entities, events or handlers."""
    import fulfillment.shipment.outbox  # noqa: F401
    import fulfillment.shipment.saga  # noqa: F401
    import inventory.stock.movement  # noqa: F401
    import inventory.stock.product  # noqa: F401
    import ordering.cart.cart  # noqa: F401
    import ordering.checkout.coupons  # noqa: F401
    import ordering.order.events  # noqa: F401
    import ordering.order.order  # noqa: F401
    import payments.payment.refund  # noqa: F401
    import shared.webhooks  # noqa: F401


def init_domain(settings: Settings | None = None) -> Domain:
    """Configure providers from settings and initialise the domain once per process."""
    global _initialized
    if _initialized:
        return orderstream

    settings = settings or get_settings()
    orderstream.config["databases"]["default"] = database_config(settings.database_url)
    # Projectors, event handlers and the process manager run in the Engine
    orderstream.config["event_processing"] = "async"
    orderstream.config["command_processing"] = "sync"

    _register_elements()
    orderstream.init(traverse=False)
    _initialized = True
    logger.info("domain_initialized", domain=orderstream.name, provider=database_config(settings.database_url)["provider"])
    return orderstream


# ---------------------------------------------------------------------------
# Units of work
# ---------------------------------------------------------------------------
@contextmanager
def unit_of_work() -> Iterator[None]:
    """Join the active unit of work, or open one that commits on success.

    Callbacks registered with ``on_commit`` inside an outermost unit of work
    run after it commits and are dropped if it rolls back.
    """
    if current_uow:
        yield
        return

    callbacks: list = []
    token = _after_commit.set(callbacks)
    try:
        with UnitOfWork():
            yield
    except Exception:
        if callbacks:
            logger.info("after_commit_callbacks_discarded", count=len(callbacks))
        raise
    finally:
        _after_commit.reset(token)

    for callback in callbacks:
        callback()


def on_commit(callback: Callable[[], None]) -> None:
    """Run ``callback`` once the enclosing unit of work commits (right away outside one)."""
    callbacks = _after_commit.get()
    if callbacks is None:
        callback()
    else:
        callbacks.append(callback)
