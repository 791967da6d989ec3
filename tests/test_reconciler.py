"""Tests for the pure staleness reconciliation functions and the checkout gate."""
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from hypothesis import given, settings
from hypothesis import strategies as st

from cartlock.domain.schemas import CartSummary, LineItem, PriceLock, ReconciliationView
from cartlock.services import reconciler
from cartlock.services.cart_session import checkout_allowed

T0 = datetime(2026, 1, 15, 10, 0, 0, tzinfo=timezone.utc)


def _item(ref="ring-001", variant="22K", qty=2, last="10000", current="10000") -> LineItem:
    return LineItem(
        product_ref=ref,
        variant_key=variant,
        quantity=qty,
        last_known_unit_price=Decimal(last),
        current_unit_price=Decimal(current),
    )


prices = st.decimals(min_value=1, max_value=100000, places=2, allow_nan=False, allow_infinity=False)
line_items = st.builds(
    lambda ref, variant, qty, last, current: _item(ref, variant, qty, str(last), str(current)),
    st.sampled_from(["ring-001", "chain-002", "coin-003"]),
    st.sampled_from(["18K", "22K", "24K"]),
    st.integers(min_value=1, max_value=20),
    prices,
    prices,
)


class TestEvaluate:

    def test_no_changes(self):
        view = reconciler.evaluate([_item()], CartSummary(subtotal=Decimal("20000")))

        assert view.requires_acknowledgment is False
        assert view.affected_items == []
        assert view.old_total == Decimal("20000")

    def test_price_change_scenario(self):
        """10,000 -> 10,500 on two units: old total 20,000, new total from the server."""
        item = _item(current="10500")
        summary = CartSummary(subtotal=Decimal("21000"), tax=Decimal("630"), total=Decimal("21630"))

        view = reconciler.evaluate([item], summary)

        assert view.requires_acknowledgment is True
        assert view.affected_items == [item]
        assert view.old_total == Decimal("20000")
        assert view.new_total == Decimal("21000")
        assert view.delta == Decimal("1000")

    def test_new_total_is_server_subtotal_not_recomputed(self):
        item = _item(current="10500")
        view = reconciler.evaluate([item], CartSummary(subtotal=Decimal("20999.99")))
        assert view.new_total == Decimal("20999.99")

    def test_old_total_covers_unchanged_items_too(self):
        items = [_item(current="10500"), _item(ref="coin-003", variant="24K", qty=1, last="7100", current="7100")]
        view = reconciler.evaluate(items, CartSummary())
        assert view.old_total == Decimal("27100")
        assert len(view.affected_items) == 1

    def test_empty_cart(self):
        view = reconciler.evaluate([], CartSummary())
        assert view.requires_acknowledgment is False
        assert view.old_total == Decimal("0")

    @given(items=st.lists(line_items, max_size=6))
    @settings(max_examples=100)
    def test_requires_acknowledgment_iff_any_price_differs(self, items):
        view = reconciler.evaluate(items, CartSummary())
        differs = any(i.current_unit_price != i.last_known_unit_price for i in items)
        assert view.requires_acknowledgment == differs


class TestAcknowledge:

    def test_catches_up_last_known(self):
        acked = reconciler.acknowledge([_item(current="10500")])

        assert acked[0].last_known_unit_price == Decimal("10500")
        assert acked[0].price_change_warning is False

    def test_does_not_mutate_input(self):
        item = _item(current="10500")
        reconciler.acknowledge([item])
        assert item.last_known_unit_price == Decimal("10000")

    @given(items=st.lists(line_items, max_size=6))
    @settings(max_examples=100)
    def test_nothing_left_to_acknowledge(self, items):
        acked = reconciler.acknowledge(items)
        assert reconciler.evaluate(acked, CartSummary()).requires_acknowledgment is False
        assert [i.quantity for i in acked] == [i.quantity for i in items]


class TestPriceDrift:

    def test_reports_only_changed_prices(self):
        items = [_item(), _item(ref="coin-003", variant="24K", last="7100", current="7100")]
        live = {("ring-001", "22K"): Decimal("10250"), ("coin-003", "24K"): Decimal("7100")}

        assert reconciler.price_drift(items, live) == {("ring-001", "22K"): Decimal("10250")}

    def test_missing_live_price_is_ignored(self):
        assert reconciler.price_drift([_item()], {}) == {}


class TestCheckoutGate:

    @given(
        locked=st.booleans(),
        offset=st.integers(min_value=-120, max_value=120),
        items=st.lists(line_items, max_size=4),
    )
    @settings(max_examples=200)
    def test_gate_formula(self, locked, offset, items):
        lock = PriceLock(locked=locked, locked_at=T0, expires_at=T0 + timedelta(minutes=15))
        now = lock.expires_at + timedelta(seconds=offset)
        view = reconciler.evaluate(items, CartSummary())

        expected = locked and now < lock.expires_at and not view.requires_acknowledgment
        assert checkout_allowed(lock, view, now) == expected

    def test_boundary_blocks(self):
        lock = PriceLock(locked=True, locked_at=T0, expires_at=T0 + timedelta(minutes=15))
        assert checkout_allowed(lock, ReconciliationView(), lock.expires_at) is False
