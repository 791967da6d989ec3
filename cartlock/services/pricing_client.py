# cartlock/services/pricing_client.py
import asyncio
from decimal import Decimal
from typing import Dict, Iterable

from cartlock.domain.errors import NetworkError
from cartlock.domain.schemas import ItemKey
from cartlock.services.http_client import ServiceClient
from cartlock.utils.settings import PRICING_SERVICE_URL
from cartlock.utils.logging import get_logger

logger = get_logger(__name__)


class PricingClient(ServiceClient):
    """Read-only access to the current authoritative unit price per (product, purity)."""

    name = "PricingClient"

    def __init__(self, base_url: str | None = None, **kwargs):
        super().__init__(base_url or PRICING_SERVICE_URL, **kwargs)

    async def fetch_product(self, product_ref: str, variant_key: str) -> dict:
        return await self._request(
            "GET",
            f"/products/{product_ref}",
            "Failed to fetch product",
            params={"purity": variant_key},
            idempotent=True,
        )

    async def get_unit_price(self, product_ref: str, variant_key: str) -> Decimal:
        pdata = await self.fetch_product(product_ref, variant_key)
        pricing = (pdata or {}).get("pricing") or {}
        if "finalPrice" not in pricing:
            raise NetworkError(f"Product {product_ref} ({variant_key}) has no price")
        return Decimal(str(pricing["finalPrice"]))

    async def get_unit_prices(self, pairs: Iterable[ItemKey]) -> Dict[ItemKey, Decimal]:
        keys = list(dict.fromkeys(pairs))
        if not keys:
            return {}

        logger.info(f"Fetching current unit prices for {len(keys)} product/purity pairs")
        tasks = [asyncio.create_task(self.get_unit_price(ref, variant)) for ref, variant in keys]
        try:
            prices = await asyncio.gather(*tasks)
        except BaseException:
            # first failure wins, the remaining lookups are cancelled and collected
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise
        return dict(zip(keys, prices))
