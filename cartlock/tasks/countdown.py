# cartlock/tasks/countdown.py
import asyncio
import inspect
from typing import Any, Callable, TYPE_CHECKING

from cartlock.domain.schemas import LockState, LockTick
from cartlock.utils.settings import LOCK_TICK_INTERVAL_SECONDS
from cartlock.utils.logging import get_logger

if TYPE_CHECKING:
    from cartlock.services.cart_session import CartSession

logger = get_logger(__name__)


class LockCountdown:
    """
    Recurring tick for one cart session's price lock.
    Reads only local timestamps, so it never waits on an in-flight cart call.
    Stops by itself after reporting EXPIRED/UNLOCKED or once the cart is empty.
    """

    def __init__(
        self,
        session: "CartSession",
        on_tick: Callable[[LockTick], Any] | None = None,
        interval_seconds: float = LOCK_TICK_INTERVAL_SECONDS,
    ):
        self.session = session
        self.on_tick = on_tick
        self.interval_seconds = interval_seconds
        self.last_tick: LockTick | None = None
        self._task: asyncio.Task | None = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.is_running:
            return
        logger.info(f"Countdown started (every {self.interval_seconds}s)")
        self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("Countdown stopped")

    async def wait(self) -> None:
        if self._task is not None:
            await self._task

    async def __aenter__(self) -> "LockCountdown":
        self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.stop()

    def _delay(self) -> float:
        # wake up right at expiry instead of up to one interval late
        lock = self.session.price_lock
        if lock.expires_at is None:
            return self.interval_seconds
        until_expiry = (lock.expires_at - self.session.clock()).total_seconds()
        return max(0.0, min(self.interval_seconds, until_expiry))

    async def _deliver(self, tick: LockTick) -> None:
        if self.on_tick is None:
            return
        try:
            result = self.on_tick(tick)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.warning(f"Countdown listener failed on {tick.state.value} tick: {e}")

    async def _run(self) -> None:
        while True:
            tick = self.session.tick()
            self.last_tick = tick
            await self._deliver(tick)

            if tick.state is not LockState.LOCKED:
                logger.info(f"Countdown finished: price lock {tick.state.value}")
                return
            if self.session.store.is_empty:
                logger.info("Countdown finished: cart is empty")
                return

            await asyncio.sleep(self._delay())
