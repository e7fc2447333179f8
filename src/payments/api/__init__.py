from payments.api.routes import payment_router
from payments.api.routes import webhook_router as payment_webhook_router

__all__ = ["payment_router", "payment_webhook_router"]
