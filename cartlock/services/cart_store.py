# cartlock/services/cart_store.py
from decimal import Decimal
from typing import Awaitable, Callable, Dict, List

from cartlock.domain.errors import CartError, ValidationError
from cartlock.domain.schemas import (
    ZERO_SUMMARY,
    CartSnapshot,
    CartSummary,
    ItemKey,
    LineItem,
    PriceLock,
    WireCart,
    WireItem,
)
from cartlock.services.cart_client import CartClient
from cartlock.services.price_lock import PriceLockController
from cartlock.utils.logging import get_logger

logger = get_logger(__name__)


class CartStore:
    """
    Local copy of the cart, always the last server snapshot.
    commands (fetch, add, update, remove, clear) replace state wholesale on success
    and leave it untouched on failure; queries only read.

    Each request takes a sequence number when issued. A response older than the
    last applied one is dropped so a late reply cannot resurrect earlier state.
    """

    def __init__(self, client: CartClient, lock_controller: PriceLockController):
        self.client = client
        self.lock_controller = lock_controller

        self._items: List[LineItem] = []
        self._summary: CartSummary = ZERO_SUMMARY
        self._warnings: List[str] = []
        # prices the shopper explicitly accepted, keyed by (product_ref, variant_key)
        self._acknowledged: Dict[ItemKey, Decimal] = {}

        self._issued_seq = 0
        self._applied_seq = 0
        self._in_flight = 0
        self.last_error: str | None = None

    #query
    @property
    def items(self) -> List[LineItem]:
        return list(self._items)

    @property
    def summary(self) -> CartSummary:
        return self._summary

    @property
    def warnings(self) -> List[str]:
        return list(self._warnings)

    @property
    def is_loading(self) -> bool:
        return self._in_flight > 0

    @property
    def is_empty(self) -> bool:
        return not self._items

    @property
    def snapshot(self) -> CartSnapshot:
        return CartSnapshot(
            items=self._items,
            summary=self._summary,
            price_lock=self.lock_controller.lock,
            warnings=self._warnings,
        )

    def find_item(self, product_ref: str, variant_key: str) -> LineItem | None:
        for item in self._items:
            if item.key == (product_ref, variant_key):
                return item
        return None

    #internals
    def _to_line_item(self, wire: WireItem) -> LineItem:
        current = wire.price
        server_last_known = wire.server_last_known

        if server_last_known == current:
            last_known = current
        else:
            last_known = self._acknowledged.get(wire.key, server_last_known)

        if wire.price_change_warning != (server_last_known != current):
            logger.debug(
                f"Server warning flag for {wire.key} disagrees with prices "
                f"({server_last_known} -> {current}), using prices"
            )
        return LineItem(
            product_ref=wire.product_id,
            variant_key=wire.selected_purity,
            quantity=wire.quantity,
            last_known_unit_price=last_known,
            current_unit_price=current,
            title=wire.title,
        )

    def _apply(self, wire: WireCart, seq: int, fallback_lock: PriceLock | None = None) -> bool:
        if seq < self._applied_seq:
            logger.warning(
                f"Discarding stale cart response #{seq} (already applied #{self._applied_seq})"
            )
            return False

        items = [self._to_line_item(w) for w in wire.items]
        if wire.price_lock is not None:
            lock = wire.price_lock.to_domain()
        else:
            lock = fallback_lock or PriceLock.unlocked()
        summary = wire.summary.to_domain()

        # keep acknowledgments only while the server still reports the older price
        pending = {w.key for w in wire.items if w.server_last_known != w.price}
        self._acknowledged = {k: v for k, v in self._acknowledged.items() if k in pending}
        self._items = items
        self._summary = summary
        self._warnings = [str(w) for w in wire.warnings]
        self.lock_controller.apply(lock)
        self._applied_seq = seq

        affected = sum(1 for i in items if i.price_change_warning)
        if affected:
            logger.warning(f"Cart response #{seq}: {affected} item(s) changed price, acknowledgment required")
        return True

    def _reset(self, seq: int) -> None:
        self._items = []
        self._summary = ZERO_SUMMARY
        self._warnings = []
        self._acknowledged = {}
        self.lock_controller.reset()
        self._applied_seq = seq

    async def _run(
        self,
        operation: str,
        call: Callable[[], Awaitable[WireCart]],
        fallback_lock: PriceLock | None = None,
    ) -> CartSnapshot:
        self._issued_seq += 1
        seq = self._issued_seq
        self._in_flight += 1
        self.last_error = None

        try:
            wire = await call()
        except CartError as e:
            self.last_error = e.message
            logger.error(f"Cart {operation} #{seq} failed ({e.kind}): {e.message}")
            raise
        finally:
            self._in_flight -= 1

        self._apply(wire, seq, fallback_lock)
        return self.snapshot

    #commands
    async def fetch(self, fallback_lock: PriceLock | None = None) -> CartSnapshot:
        return await self._run("fetch", self.client.get_cart, fallback_lock)

    async def add_item(self, product_ref: str, variant_key: str, quantity: int) -> CartSnapshot:
        # local validation, nothing is sent
        if quantity < 1:
            raise ValidationError("Quantity must be at least 1")
        if not product_ref or not variant_key:
            raise ValidationError("Product and purity are required")

        logger.info(f"Adding {quantity} x {product_ref} ({variant_key})")
        return await self._run(
            "add",
            lambda: self.client.add_item(product_ref, variant_key, quantity),
        )

    async def update_item(self, product_ref: str, variant_key: str, quantity: int) -> CartSnapshot:
        #quantity < 1 is a no-op, removal has its own operation
        if quantity < 1:
            logger.info(f"Ignoring update of {product_ref} ({variant_key}) to quantity {quantity}")
            return self.snapshot

        logger.info(f"Updating {product_ref} ({variant_key}) to quantity {quantity}")
        return await self._run(
            "update",
            lambda: self.client.update_item(product_ref, variant_key, quantity),
        )

    async def remove_item(self, product_ref: str, variant_key: str) -> CartSnapshot:
        logger.info(f"Removing {product_ref} ({variant_key})")
        return await self._run(
            "remove",
            lambda: self.client.remove_item(product_ref, variant_key),
        )

    async def clear(self) -> CartSnapshot:
        self._issued_seq += 1
        seq = self._issued_seq
        self._in_flight += 1
        self.last_error = None

        try:
            await self.client.clear_cart()
        except CartError as e:
            self.last_error = e.message
            logger.error(f"Cart clear #{seq} failed ({e.kind}): {e.message}")
            raise
        finally:
            self._in_flight -= 1

        if seq < self._applied_seq:
            logger.warning(f"Discarding stale clear #{seq} (already applied #{self._applied_seq})")
        else:
            self._reset(seq)
            logger.info("Cart cleared, price lock released")
        return self.snapshot

    def apply_acknowledgment(self, acknowledged: List[LineItem]) -> None:
        """Record prices the shopper accepted; only items whose key is still in the cart count."""
        by_key = {i.key: i for i in acknowledged}
        updated = []
        for item in self._items:
            accepted = by_key.get(item.key)
            if (
                item.price_change_warning
                and accepted is not None
                and accepted.last_known_unit_price == item.current_unit_price
            ):
                self._acknowledged[item.key] = accepted.last_known_unit_price
                item = accepted
            updated.append(item)
        self._items = updated
