# cartlock/main.py
from contextlib import asynccontextmanager

from fastapi import FastAPI
import uvicorn

from cartlock.api.routers import carts, health
from cartlock.services.cart_session import SessionRegistry
from cartlock.utils.settings import CART_SERVICE_URL, PRICING_SERVICE_URL
from cartlock.utils.logging import get_logger

logger = get_logger(__name__)


def create_app(registry: SessionRegistry | None = None) -> FastAPI:
    if registry is None:
        registry = SessionRegistry(CART_SERVICE_URL, PRICING_SERVICE_URL)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(f"Cart engine up, cart service at {registry.cart_url}")
        yield
        await registry.aclose()

    app = FastAPI(
        title="Cart Price Lock Service",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.registry = registry

    # Include routers
    app.include_router(health.router)
    app.include_router(carts.router)

    return app


app = create_app()

if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=8000)
