"""Router aggregation: mounts every feature router under ``/api``."""

from fastapi import FastAPI

from . import categories, recurring, transactions


def register_routers(app: FastAPI) -> None:
    """Attach all API routes to the FastAPI application."""

    app.include_router(categories.router, prefix="/api")
    app.include_router(transactions.router, prefix="/api")
    app.include_router(recurring.router, prefix="/api")
