# cartlock/services/cart_client.py
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from cartlock.domain.errors import NetworkError
from cartlock.domain.schemas import WireCart, WirePriceLock
from cartlock.services.http_client import ServiceClient
from cartlock.utils.settings import CART_SERVICE_URL
from cartlock.utils.logging import get_logger

logger = get_logger(__name__)


class CartClient(ServiceClient):
    """
    Contract with the external cart-persistence service.
    Every cart call returns the full snapshot; the caller replaces its state with it.
    """

    name = "CartClient"

    def __init__(self, base_url: str | None = None, **kwargs):
        super().__init__(base_url or CART_SERVICE_URL, **kwargs)

    @staticmethod
    def _parse_cart(data: Any, fallback: str) -> WireCart:
        try:
            return WireCart.model_validate(data or {})
        except PydanticValidationError as e:
            logger.error(f"Malformed cart snapshot: {e}")
            raise NetworkError(f"{fallback}: malformed cart snapshot") from e

    #query
    async def get_cart(self) -> WireCart:
        fallback = "Failed to fetch cart"
        data = await self._request("GET", "/cart", fallback, idempotent=True)
        return self._parse_cart(data, fallback)

    #commands
    async def add_item(self, product_ref: str, variant_key: str, quantity: int) -> WireCart:
        fallback = "Failed to add item"
        data = await self._request(
            "POST",
            "/cart/items",
            fallback,
            json={
                "productId": product_ref,
                "selectedPurity": variant_key,
                "quantity": quantity,
            },
        )
        return self._parse_cart(data, fallback)

    async def update_item(self, product_ref: str, variant_key: str, quantity: int) -> WireCart:
        fallback = "Failed to update item"
        data = await self._request(
            "PUT",
            f"/cart/items/{product_ref}",
            fallback,
            json={"quantity": quantity, "selectedPurity": variant_key},
        )
        return self._parse_cart(data, fallback)

    async def remove_item(self, product_ref: str, variant_key: str) -> WireCart:
        fallback = "Failed to remove item"
        data = await self._request(
            "DELETE",
            f"/cart/items/{product_ref}",
            fallback,
            json={"selectedPurity": variant_key},
        )
        return self._parse_cart(data, fallback)

    async def clear_cart(self) -> None:
        # acknowledgment only, the body is not a snapshot
        await self._request("DELETE", "/cart", "Failed to clear cart")

    async def request_price_lock(self) -> WirePriceLock:
        fallback = "Failed to refresh prices"
        data = await self._request("POST", "/price-lock", fallback)
        try:
            return WirePriceLock.model_validate(data or {})
        except PydanticValidationError as e:
            logger.error(f"Malformed price lock descriptor: {e}")
            raise NetworkError(f"{fallback}: malformed price lock") from e
