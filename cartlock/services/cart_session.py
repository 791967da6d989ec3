# cartlock/services/cart_session.py
import asyncio
from datetime import datetime
from decimal import Decimal
from typing import Any, Callable, Dict, List

import httpx

from cartlock.domain.errors import LockExpiredError, ReconciliationRequiredError
from cartlock.domain.schemas import (
    CartSnapshot,
    CartSummary,
    ItemKey,
    LineItem,
    LockState,
    LockTick,
    PriceLock,
    ReconciliationView,
)
from cartlock.services import reconciler
from cartlock.services.cart_client import CartClient
from cartlock.services.cart_store import CartStore
from cartlock.services.price_lock import PriceLockController, lock_state, utc_now
from cartlock.services.pricing_client import PricingClient
from cartlock.tasks.countdown import LockCountdown
from cartlock.utils.settings import (
    LOCK_TICK_INTERVAL_SECONDS,
    LOW_TIME_THRESHOLD_SECONDS,
    MAX_SESSIONS,
    SESSION_IDLE_SECONDS,
)
from cartlock.utils.logging import get_logger

logger = get_logger(__name__)


def checkout_allowed(lock: PriceLock, view: ReconciliationView, now: datetime) -> bool:
    """locked AND now < expires_at AND nothing left to acknowledge."""
    return lock_state(lock, now) is LockState.LOCKED and not view.requires_acknowledgment


class CartSession:
    """
    One shopper's cart: holds the only mutable snapshot and wires the
    store, the price lock controller and the reconciler together.
    Service calls are serialized per cart; reads (tick, gate, reconciliation) never wait on them.
    While a lock is held the session runs a countdown that reports each tick to `on_tick`.
    """

    def __init__(
        self,
        cart_client: CartClient,
        pricing_client: PricingClient | None = None,
        clock: Callable[[], datetime] = utc_now,
        low_time_threshold: int = LOW_TIME_THRESHOLD_SECONDS,
        on_tick: Callable[[LockTick], Any] | None = None,
        tick_interval: float = LOCK_TICK_INTERVAL_SECONDS,
    ):
        self.cart_client = cart_client
        self.pricing_client = pricing_client
        self.clock = clock
        self.lock_controller = PriceLockController(cart_client, clock, low_time_threshold)
        self.store = CartStore(cart_client, self.lock_controller)
        self.countdown = LockCountdown(self, on_tick=on_tick, interval_seconds=tick_interval)
        self._mutex = asyncio.Lock()

    @classmethod
    def for_token(
        cls,
        token: str | None,
        cart_url: str | None = None,
        pricing_url: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        clock: Callable[[], datetime] = utc_now,
        **kwargs,
    ) -> "CartSession":
        return cls(
            CartClient(cart_url, token=token, transport=transport),
            PricingClient(pricing_url, token=token, transport=transport),
            clock=clock,
            **kwargs,
        )

    async def aclose(self) -> None:
        await self.countdown.stop()
        await self.cart_client.aclose()
        if self.pricing_client is not None:
            await self.pricing_client.aclose()

    #query
    @property
    def items(self) -> List[LineItem]:
        return self.store.items

    @property
    def summary(self) -> CartSummary:
        return self.store.summary

    @property
    def price_lock(self) -> PriceLock:
        return self.lock_controller.lock

    @property
    def snapshot(self) -> CartSnapshot:
        return self.store.snapshot

    @property
    def is_loading(self) -> bool:
        return self.store.is_loading

    @property
    def last_error(self) -> str | None:
        return self.store.last_error

    @property
    def reconciliation(self) -> ReconciliationView:
        return reconciler.evaluate(self.store.items, self.store.summary)

    def lock_state(self, now: datetime | None = None) -> LockState:
        return self.lock_controller.state(now)

    def tick(self, now: datetime | None = None) -> LockTick:
        return self.lock_controller.tick(now)

    def can_checkout(self, now: datetime | None = None) -> bool:
        now = now or self.clock()
        self.lock_controller.state(now)
        return checkout_allowed(self.price_lock, self.reconciliation, now)

    def ensure_checkout_allowed(self, now: datetime | None = None) -> CartSummary:
        """
        Checkout entry: every condition is re-read here, nothing is cached.
        The lock is checked first; a lock rejection still carries any pending
        reconciliation so both blockers are reported together.
        """
        now = now or self.clock()
        view = self.reconciliation

        if not self.lock_controller.is_valid(now):
            state = self.lock_controller.state(now)
            pending = view if view.requires_acknowledgment else None
            logger.info(f"Checkout blocked: price lock {state.value}, reconciliation pending: {pending is not None}")
            if state is LockState.EXPIRED:
                raise LockExpiredError("Price lock expired. Please refresh prices to continue.", view=pending)
            raise LockExpiredError("Prices are not locked. Please refresh prices to continue.", view=pending)

        if view.requires_acknowledgment:
            logger.info(
                f"Checkout blocked: {len(view.affected_items)} item(s) need price acknowledgment "
                f"({view.old_total} -> {view.new_total})"
            )
            raise ReconciliationRequiredError(
                "Prices changed since these items were added. Review and accept the new prices.",
                view=view,
            )

        return self.summary

    def _follow_lock(self, snapshot: CartSnapshot) -> CartSnapshot:
        # the countdown stops by itself once the lock lapses or the cart empties
        if not self.store.is_empty and self.lock_state() is LockState.LOCKED:
            self.countdown.start()
        return snapshot

    #commands
    async def fetch(self) -> CartSnapshot:
        async with self._mutex:
            return self._follow_lock(await self.store.fetch())

    async def add_item(self, product_ref: str, variant_key: str, quantity: int) -> CartSnapshot:
        async with self._mutex:
            return self._follow_lock(await self.store.add_item(product_ref, variant_key, quantity))

    async def update_item(self, product_ref: str, variant_key: str, quantity: int) -> CartSnapshot:
        async with self._mutex:
            return self._follow_lock(await self.store.update_item(product_ref, variant_key, quantity))

    async def remove_item(self, product_ref: str, variant_key: str) -> CartSnapshot:
        async with self._mutex:
            return self._follow_lock(await self.store.remove_item(product_ref, variant_key))

    async def clear(self) -> CartSnapshot:
        async with self._mutex:
            snapshot = await self.store.clear()
            await self.countdown.stop()
            return snapshot

    async def refresh_lock(self) -> CartSnapshot:
        async with self._mutex:
            return self._follow_lock(await self.lock_controller.refresh(self.store))

    async def acknowledge_reconciliation(self) -> CartSnapshot:
        """
        Accept the new prices, then re-fetch so the cart and lock come from the server again.
        Acknowledging clears the warnings, it does not lock anything by itself.
        """
        async with self._mutex:
            view = self.reconciliation
            if view.requires_acknowledgment:
                logger.info(
                    f"Shopper accepted new prices for {len(view.affected_items)} item(s): "
                    f"{view.old_total} -> {view.new_total}"
                )
                self.store.apply_acknowledgment(reconciler.acknowledge(self.store.items))
            return self._follow_lock(await self.store.fetch())

    async def check_live_prices(self) -> Dict[ItemKey, Decimal]:
        """Live prices that have drifted from the cart; read only, the cart is not touched."""
        if self.pricing_client is None or self.store.is_empty:
            return {}
        items = self.store.items
        live = await self.pricing_client.get_unit_prices(i.key for i in items)
        drift = reconciler.price_drift(items, live)
        if drift:
            logger.info(f"Live prices drifted for {len(drift)} item(s): {sorted(drift)}")
        return drift


class SessionRegistry:
    """
    Cart sessions keyed by the shopper's bearer token.
    Sessions idle for `idle_seconds` are closed, and past `max_sessions`
    the least recently used one is closed. Sessions with a call in flight are kept.
    """

    def __init__(
        self,
        cart_url: str | None = None,
        pricing_url: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        clock: Callable[[], datetime] = utc_now,
        idle_seconds: int = SESSION_IDLE_SECONDS,
        max_sessions: int = MAX_SESSIONS,
    ):
        self.cart_url = cart_url
        self.pricing_url = pricing_url
        self.transport = transport
        self.clock = clock
        self.idle_seconds = idle_seconds
        self.max_sessions = max(1, max_sessions)
        # insertion order is recency order, most recently used last
        self._sessions: Dict[str, CartSession] = {}
        self._last_seen: Dict[str, datetime] = {}

    async def get(self, token: str) -> CartSession:
        now = self.clock()
        for stale in [t for t, seen in self._last_seen.items() if (now - seen).total_seconds() >= self.idle_seconds]:
            await self._close(stale, "idle")

        session = self._sessions.pop(token, None)
        if session is None:
            logger.info("Opening cart session")
            session = CartSession.for_token(
                token,
                cart_url=self.cart_url,
                pricing_url=self.pricing_url,
                transport=self.transport,
                clock=self.clock,
            )
        self._sessions[token] = session
        self._last_seen[token] = now

        overflow = len(self._sessions) - self.max_sessions
        for oldest in list(self._sessions)[:-1]:
            if overflow <= 0:
                break
            if await self._close(oldest, "session limit reached"):
                overflow -= 1
        return session

    async def _close(self, token: str, reason: str) -> bool:
        session = self._sessions.get(token)
        if session is None:
            return False
        if session.is_loading:
            return False
        del self._sessions[token]
        self._last_seen.pop(token, None)
        logger.info(f"Closing cart session ({reason}), {len(self._sessions)} open")
        await session.aclose()
        return True

    def __contains__(self, token: str) -> bool:
        return token in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)

    async def aclose(self) -> None:
        for session in self._sessions.values():
            await session.aclose()
        self._sessions.clear()
        self._last_seen.clear()
