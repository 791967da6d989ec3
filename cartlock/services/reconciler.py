# cartlock/services/reconciler.py
"""
Staleness reconciliation.
Pure functions only: they read line items and the summary and never touch the store.
"""
from decimal import Decimal
from typing import Dict, Iterable, List

from cartlock.domain.schemas import ZERO, CartSummary, ItemKey, LineItem, ReconciliationView


def evaluate(items: Iterable[LineItem], summary: CartSummary) -> ReconciliationView:
    items = list(items)
    affected = [i for i in items if i.price_change_warning]
    old_total = sum((i.last_known_unit_price * i.quantity for i in items), ZERO)

    return ReconciliationView(
        affected_items=affected,
        old_total=old_total,
        new_total=summary.subtotal,
    )


def acknowledge(items: Iterable[LineItem]) -> List[LineItem]:
    """The one place where last_known_unit_price catches up with current_unit_price."""
    return [
        i.model_copy(update={"last_known_unit_price": i.current_unit_price})
        if i.price_change_warning
        else i
        for i in items
    ]


def price_drift(items: Iterable[LineItem], live_prices: Dict[ItemKey, Decimal]) -> Dict[ItemKey, Decimal]:
    """Live prices that no longer match what the cart is currently showing."""
    return {
        i.key: live_prices[i.key]
        for i in items
        if i.key in live_prices and live_prices[i.key] != i.current_unit_price
    }
