"""FastAPI application for the ledger API."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from chama import __version__
from chama.api.routes import router
from chama.services import get_engine, init_db

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create missing tables before serving requests."""
    init_db(get_engine())
    yield
    get_engine().dispose()
    logger.info("Database engine disposed")


def create_app() -> FastAPI:
    """Build the ledger API application."""
    app = FastAPI(
        title="Chama Ledger",
        description="Contribution-cycle ledger and balance reconciliation",
        version=__version__,
        lifespan=lifespan,
    )
    app.include_router(router)

    # Register health check endpoint
    @app.get("/health")
    def health_check() -> dict:
        """Health check endpoint for monitoring."""
        return {"status": "ok"}

    return app


__all__ = ["create_app", "lifespan"]
