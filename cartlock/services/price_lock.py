# cartlock/services/price_lock.py
import math
from datetime import datetime, timezone
from typing import Callable, TYPE_CHECKING

from cartlock.domain.errors import CartError
from cartlock.domain.schemas import CartSnapshot, LockState, LockTick, PriceLock
from cartlock.services.cart_client import CartClient
from cartlock.utils.settings import LOW_TIME_THRESHOLD_SECONDS
from cartlock.utils.logging import get_logger

if TYPE_CHECKING:
    from cartlock.services.cart_store import CartStore

logger = get_logger(__name__)

EXPIRED_LABEL = "Expired"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def lock_state(lock: PriceLock, now: datetime) -> LockState:
    """
    Pure read of the lock at `now`.
    Boundary tick (now == expires_at) is already EXPIRED.
    """
    if not lock.locked or lock.expires_at is None:
        return LockState.UNLOCKED
    if now >= lock.expires_at:
        return LockState.EXPIRED
    return LockState.LOCKED


def format_countdown(seconds: int) -> str:
    minutes, secs = divmod(max(seconds, 0), 60)
    return f"{minutes}:{secs:02d}"


def tick(
    lock: PriceLock,
    now: datetime,
    low_time_threshold: int = LOW_TIME_THRESHOLD_SECONDS,
) -> LockTick:
    state = lock_state(lock, now)

    if state is LockState.UNLOCKED:
        return LockTick(state=state)

    if state is LockState.EXPIRED:
        return LockTick(state=state, seconds_remaining=0, label=EXPIRED_LABEL)

    remaining = math.floor((lock.expires_at - now).total_seconds())
    return LockTick(
        state=state,
        seconds_remaining=remaining,
        label=format_countdown(remaining),
        low_time=0 < remaining < low_time_threshold,
    )


class PriceLockController:
    """
    Owns the current PriceLock.
    UNLOCKED -> LOCKED on a response with a future expires_at
    LOCKED -> EXPIRED once the clock reaches expires_at (no server call)
    EXPIRED -> LOCKED only through refresh()
    """

    def __init__(
        self,
        client: CartClient,
        clock: Callable[[], datetime] = utc_now,
        low_time_threshold: int = LOW_TIME_THRESHOLD_SECONDS,
    ):
        self.client = client
        self.clock = clock
        self.low_time_threshold = low_time_threshold
        self._lock = PriceLock.unlocked()
        self._last_state = LockState.UNLOCKED

    @property
    def lock(self) -> PriceLock:
        return self._lock

    def _observe(self, now: datetime) -> LockState:
        state = lock_state(self._lock, now)
        if state is not self._last_state:
            logger.info(f"Price lock {self._last_state.value} -> {state.value} (expires_at={self._lock.expires_at})")
            self._last_state = state
        return state

    def apply(self, lock: PriceLock, now: datetime | None = None) -> LockState:
        """Replace the lock wholesale with the one from a server response."""
        now = now or self.clock()
        self._lock = lock

        if lock.locked and lock.expires_at is not None and lock.expires_at <= now:
            # late response: keep it, but it only ever reads as EXPIRED
            logger.warning(f"Applied price lock already past expiry ({lock.expires_at} <= {now})")

        return self._observe(now)

    def reset(self) -> None:
        self._lock = PriceLock.unlocked()
        self._observe(self.clock())

    def state(self, now: datetime | None = None) -> LockState:
        return self._observe(now or self.clock())

    def is_valid(self, now: datetime | None = None) -> bool:
        return self.state(now) is LockState.LOCKED

    def tick(self, now: datetime | None = None) -> LockTick:
        now = now or self.clock()
        self._observe(now)
        return tick(self._lock, now, self.low_time_threshold)

    async def refresh(self, store: "CartStore") -> CartSnapshot:
        """
        Ask the pricing service for a new lock, then re-fetch the cart at the locked rates.
        Nothing is applied unless both calls succeed.
        """
        logger.info(f"Refreshing price lock (state={self.state().value})")
        try:
            wire_lock = await self.client.request_price_lock()
            snapshot = await store.fetch(fallback_lock=wire_lock.to_domain())
        except CartError as e:
            logger.error(f"Price lock refresh failed, state stays {self.state().value}: {e.message}")
            raise

        logger.info(f"Price lock refreshed, expires_at={self._lock.expires_at}")
        return snapshot
