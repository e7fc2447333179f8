"""OrderStream FastAPI application.

Serves checkout, order, payment, shipment and inventory routes plus the two
inbound webhooks. Every request runs inside the orderstream domain context.
Protean and engine errors are translated to HTTP responses by the handler
registered below.

Usage:
    uvicorn app:app --app-dir src --host 0.0.0.0 --port 8000 --reload
"""

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from protean.exceptions import ProteanException

from fulfillment.api import carrier_webhook_router, shipment_router
from inventory.api import inventory_router
from ordering.api import admin_router, cart_router, order_router
from payments.api import payment_router, payment_webhook_router
from shared.context import get_context
from shared.domain import init_domain, orderstream
from shared.exceptions import error_body, error_message, status_for
from shared.logging import configure_logging

configure_logging()
logger = structlog.get_logger(__name__)

# The domain is initialized at module level so uvicorn workers share it
init_domain()

# ---------------------------------------------------------------------------
# FastAPI app
# ---------------------------------------------------------------------------
app = FastAPI(
    title="OrderStream API",
    description="Order fulfillment reconciliation: stock, checkout, payments and shipping",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def domain_context_middleware(request: Request, call_next):
    """Push the orderstream domain context for each request."""
    with orderstream.domain_context():
        response = await call_next(request)
    return response


@app.exception_handler(ProteanException)
async def protean_error_handler(request: Request, exc: ProteanException) -> JSONResponse:
    status_code = status_for(exc)
    if status_code >= 500:
        logger.error("request_failed", path=request.url.path, error=type(exc).__name__, message=error_message(exc))
    else:
        logger.info("request_rejected", path=request.url.path, error=type(exc).__name__, message=error_message(exc))
    return JSONResponse(status_code=status_code, content=error_body(exc))


# ---------------------------------------------------------------------------
# Routers
# ---------------------------------------------------------------------------
app.include_router(cart_router)
app.include_router(order_router)
app.include_router(admin_router)
app.include_router(payment_router)
app.include_router(payment_webhook_router)
app.include_router(shipment_router)
app.include_router(carrier_webhook_router)
app.include_router(inventory_router)


# ---------------------------------------------------------------------------
# Health / root
# ---------------------------------------------------------------------------
@app.get("/health")
async def health():
    context = get_context()
    return JSONResponse(
        content={
            "status": "ok",
            "env": context.settings.env,
            "domain": orderstream.name,
            "adapters": {
                "gateway": type(context.gateway).__name__,
                "carrier": type(context.carrier).__name__,
            },
        }
    )
