from fulfillment.api.routes import shipment_router
from fulfillment.api.routes import webhook_router as carrier_webhook_router

__all__ = ["shipment_router", "carrier_webhook_router"]
