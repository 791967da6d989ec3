"""
Tests for the price lock state machine: pure lock_state/tick functions
and the PriceLockController that owns the current lock.
"""
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, Mock

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from cartlock.domain.errors import NetworkError
from cartlock.domain.schemas import LockState, PriceLock, WirePriceLock
from cartlock.services.price_lock import (
    EXPIRED_LABEL,
    PriceLockController,
    format_countdown,
    lock_state,
    tick,
)

T0 = datetime(2026, 1, 15, 10, 0, 0, tzinfo=timezone.utc)


def _lock(minutes: float = 15, locked: bool = True) -> PriceLock:
    return PriceLock(locked=locked, locked_at=T0, expires_at=T0 + timedelta(minutes=minutes))


class TestLockState:

    def test_unlocked_by_default(self):
        assert lock_state(PriceLock.unlocked(), T0) is LockState.UNLOCKED

    def test_locked_flag_false_is_unlocked_even_with_future_expiry(self):
        assert lock_state(_lock(locked=False), T0) is LockState.UNLOCKED

    def test_locked_without_expiry_is_unlocked(self):
        assert lock_state(PriceLock(locked=True), T0) is LockState.UNLOCKED

    def test_locked_before_expiry(self):
        assert lock_state(_lock(), T0 + timedelta(minutes=14, seconds=59)) is LockState.LOCKED

    def test_boundary_tick_is_expired(self):
        """now == expires_at must never allow checkout."""
        assert lock_state(_lock(), T0 + timedelta(minutes=15)) is LockState.EXPIRED

    def test_after_expiry(self):
        assert lock_state(_lock(), T0 + timedelta(hours=1)) is LockState.EXPIRED

    @given(offset=st.integers(min_value=-3600, max_value=3600))
    @settings(max_examples=200)
    def test_locked_iff_now_before_expiry(self, offset):
        lock = _lock()
        now = lock.expires_at + timedelta(seconds=offset)
        assert (lock_state(lock, now) is LockState.LOCKED) == (now < lock.expires_at)


class TestTick:

    def test_full_window(self):
        t = tick(_lock(), T0)

        assert t.state is LockState.LOCKED
        assert t.seconds_remaining == 900
        assert t.label == "15:00"
        assert t.low_time is False

    def test_partial_seconds_are_floored(self):
        t = tick(_lock(), T0 + timedelta(seconds=0.4))
        assert t.seconds_remaining == 899
        assert t.label == "14:59"

    def test_low_time_under_a_minute(self):
        t = tick(_lock(), T0 + timedelta(minutes=14, seconds=5))
        assert t.seconds_remaining == 55
        assert t.label == "0:55"
        assert t.low_time is True

    def test_expired(self):
        t = tick(_lock(), T0 + timedelta(minutes=15))

        assert t.state is LockState.EXPIRED
        assert t.expired
        assert t.seconds_remaining == 0
        assert t.label == EXPIRED_LABEL
        assert t.low_time is False

    def test_unlocked_has_no_countdown(self):
        t = tick(PriceLock.unlocked(), T0)
        assert t.state is LockState.UNLOCKED
        assert t.seconds_remaining is None
        assert t.label is None

    def test_custom_low_time_threshold(self):
        t = tick(_lock(), T0 + timedelta(minutes=13), low_time_threshold=180)
        assert t.low_time is True

    def test_format_countdown(self):
        assert format_countdown(0) == "0:00"
        assert format_countdown(61) == "1:01"
        assert format_countdown(-5) == "0:00"


class TestPriceLockController:

    @pytest.fixture
    def clock(self):
        clock = Mock(return_value=T0)
        return clock

    @pytest.fixture
    def controller(self, clock):
        return PriceLockController(client=AsyncMock(), clock=clock)

    def test_starts_unlocked(self, controller):
        assert controller.state() is LockState.UNLOCKED
        assert controller.lock == PriceLock.unlocked()

    def test_apply_future_lock_locks(self, controller):
        assert controller.apply(_lock()) is LockState.LOCKED
        assert controller.is_valid()

    def test_expires_without_server_call(self, controller, clock):
        controller.apply(_lock())
        clock.return_value = T0 + timedelta(minutes=15)

        assert controller.state() is LockState.EXPIRED
        assert controller.is_valid() is False
        controller.client.request_price_lock.assert_not_called()

    def test_late_lock_reads_as_expired(self, controller):
        """A response that arrives after its own expiry is kept but never honoured."""
        state = controller.apply(_lock(), now=T0 + timedelta(minutes=16))

        assert state is LockState.EXPIRED
        assert controller.lock.expires_at == T0 + timedelta(minutes=15)

    def test_reset(self, controller):
        controller.apply(_lock())
        controller.reset()
        assert controller.state() is LockState.UNLOCKED

    def test_tick_uses_clock(self, controller, clock):
        controller.apply(_lock())
        clock.return_value = T0 + timedelta(minutes=10)
        assert controller.tick().label == "5:00"

    @pytest.mark.asyncio
    async def test_refresh_requests_lock_then_fetches(self, controller, clock):
        clock.return_value = T0 + timedelta(minutes=20)
        new_lock = WirePriceLock(
            locked=True,
            lockedAt=T0 + timedelta(minutes=20),
            expiresAt=T0 + timedelta(minutes=35),
        )
        controller.client.request_price_lock = AsyncMock(return_value=new_lock)
        store = Mock()
        store.fetch = AsyncMock(side_effect=lambda fallback_lock: controller.apply(fallback_lock))

        await controller.refresh(store)

        controller.client.request_price_lock.assert_awaited_once()
        store.fetch.assert_awaited_once()
        assert controller.state() is LockState.LOCKED
        assert controller.lock.expires_at == T0 + timedelta(minutes=35)

    @pytest.mark.asyncio
    async def test_failed_refresh_keeps_expired(self, controller, clock):
        controller.apply(_lock())
        clock.return_value = T0 + timedelta(minutes=15)
        controller.client.request_price_lock = AsyncMock(side_effect=NetworkError("Failed to refresh prices"))
        store = Mock()
        store.fetch = AsyncMock()

        with pytest.raises(NetworkError):
            await controller.refresh(store)

        store.fetch.assert_not_awaited()
        assert controller.state() is LockState.EXPIRED

    @pytest.mark.asyncio
    async def test_failed_fetch_after_lock_applies_nothing(self, controller, clock):
        controller.apply(_lock())
        clock.return_value = T0 + timedelta(minutes=15)
        controller.client.request_price_lock = AsyncMock(
            return_value=WirePriceLock(locked=True, lockedAt=T0, expiresAt=T0 + timedelta(hours=1))
        )
        store = Mock()
        store.fetch = AsyncMock(side_effect=NetworkError("Failed to fetch cart"))

        with pytest.raises(NetworkError):
            await controller.refresh(store)

        assert controller.state() is LockState.EXPIRED
