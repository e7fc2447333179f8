"""Background workers for the reconciliation engine.

Two loops run side by side:
- the Protean Engine, which delivers order events to the shipment booking
  process manager
- the poller, which drains due shipment outbox tasks and replays webhook
  records whose processing failed, on a fixed interval

Usage:
    python src/server.py              # Engine and poller
    python src/server.py --once       # One poller pass and exit
    python src/server.py --no-engine  # Poller only
    python src/server.py --interval 2 # Poll every 2 seconds
"""

import argparse
import asyncio
import threading

import structlog
from protean.server.engine import Engine

from shared.context import Reconciliation, get_context
from shared.domain import orderstream
from shared.logging import configure_logging

logger = structlog.get_logger(__name__)


def run_once(context: Reconciliation) -> None:
    with orderstream.domain_context():
        now = context.clock()
        outbox = context.outbox.process_due()
        payments = context.payments.replay_pending(now=now)
        carrier = context.carrier_webhooks.replay_pending(now=now)
    if outbox.processed or payments or carrier:
        logger.info(
            "worker_pass_completed",
            shipments=outbox.processed,
            payment_webhooks=len(payments),
            carrier_webhooks=len(carrier),
        )


async def poll(context: Reconciliation, interval: float, once: bool = False) -> None:
    logger.info("poller_started", interval=interval)
    while True:
        try:
            await asyncio.to_thread(run_once, context)
        except Exception:
            logger.exception("worker_pass_failed")
        if once:
            return
        await asyncio.sleep(interval)


async def run_engine() -> None:
    engines = [Engine(orderstream)]
    await asyncio.gather(*(engine.run() for engine in engines))


def main():
    configure_logging()
    parser = argparse.ArgumentParser(description="OrderStream engine and outbox/webhook replay worker")
    parser.add_argument(
        "--interval",
        type=float,
        default=None,
        help="Seconds between passes (default: ORDERSTREAM_OUTBOX_POLL_INTERVAL_SECONDS)",
    )
    parser.add_argument("--once", action="store_true", help="Run a single poller pass and exit")
    parser.add_argument("--no-engine", action="store_true", help="Run the poller without the Engine")
    args = parser.parse_args()

    context = get_context()
    interval = args.interval if args.interval is not None else context.settings.outbox_poll_interval_seconds

    try:
        if args.once or args.no_engine:
            asyncio.run(poll(context, interval, once=args.once))
            return

        poller = threading.Thread(
            target=lambda: asyncio.run(poll(context, interval)), name="orderstream-poller", daemon=True
        )
        poller.start()
        logger.info("engine_starting", domain=orderstream.name)
        asyncio.run(run_engine())
    except KeyboardInterrupt:
        logger.info("worker_stopped")


if __name__ == "__main__":
    main()
