"""API route registration."""

from fastapi import FastAPI

from src.api.routes import address, cart, checkout, orders, system


def include_api_routes(app: FastAPI) -> None:
    """Attach all API routers to the application."""

    app.include_router(system.router)
    app.include_router(cart.router)
    app.include_router(address.router)
    app.include_router(checkout.router)
    app.include_router(orders.router)
