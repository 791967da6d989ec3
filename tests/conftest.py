"""
Shared fixtures: a controllable clock, the dev pricing service mounted
through httpx.ASGITransport, and a cart session wired to it.
"""
from datetime import datetime, timedelta, timezone

import httpx
import pytest
import pytest_asyncio

from cartlock.pricing_service.main import PricingBackend, create_app as create_pricing_app
from cartlock.services.cart_session import CartSession

SERVICE_URL = "http://pricing.test"
TOKEN = "shopper-token"


class FakeClock:
    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> datetime:
        self.now = self.now + timedelta(seconds=seconds)
        return self.now


class CountingTransport(httpx.AsyncBaseTransport):
    """Wraps a transport and records every request that goes through it."""

    def __init__(self, inner: httpx.AsyncBaseTransport):
        self.inner = inner
        self.requests: list[httpx.Request] = []

    @property
    def count(self) -> int:
        return len(self.requests)

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return await self.inner.handle_async_request(request)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2026, 1, 15, 10, 0, 0, tzinfo=timezone.utc))


@pytest.fixture
def backend(clock) -> PricingBackend:
    return PricingBackend(clock=clock, lock_ttl=15 * 60)


@pytest.fixture
def pricing_app(backend):
    return create_pricing_app(backend)


@pytest.fixture
def transport(pricing_app) -> CountingTransport:
    return CountingTransport(httpx.ASGITransport(app=pricing_app))


@pytest_asyncio.fixture
async def session(transport, clock):
    s = CartSession.for_token(
        TOKEN,
        cart_url=SERVICE_URL,
        pricing_url=SERVICE_URL,
        transport=transport,
        clock=clock,
    )
    yield s
    await s.aclose()
