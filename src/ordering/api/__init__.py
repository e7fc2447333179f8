from ordering.api.routes import admin_router, cart_router, order_router

__all__ = ["cart_router", "order_router", "admin_router"]
