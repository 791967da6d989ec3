#cartlock/api/routers/carts.py
from decimal import Decimal
from typing import Dict

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request

from cartlock.domain.errors import CartError
from cartlock.domain.schemas import (
    CartOut,
    CheckoutOut,
    ItemIn,
    LockTick,
    QuantityIn,
    ReconciliationView,
)
from cartlock.services.cart_session import CartSession, SessionRegistry

router = APIRouter(prefix="/cart", tags=["cart"])


def get_registry(request: Request) -> SessionRegistry:
    return request.app.state.registry


async def get_session(
    authorization: str | None = Header(None),
    registry: SessionRegistry = Depends(get_registry),
) -> CartSession:
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(status_code=401, detail={"message": "Not authorized", "kind": "unauthorized"})
    return await registry.get(authorization.removeprefix("Bearer ").strip())


def _http_error(e: CartError) -> HTTPException:
    detail = {"message": e.message, "kind": e.kind}
    view = getattr(e, "view", None)
    if view is not None:
        detail["reconciliation"] = view.model_dump(mode="json")
    return HTTPException(status_code=e.status_code, detail=detail)


def _cart_out(session: CartSession) -> CartOut:
    snapshot = session.snapshot
    return CartOut(
        items=snapshot.items,
        summary=snapshot.summary,
        price_lock=snapshot.price_lock,
        lock=session.tick(),
        reconciliation=session.reconciliation,
        warnings=snapshot.warnings,
        can_checkout=session.can_checkout(),
        is_loading=session.is_loading,
    )


@router.get("", response_model=CartOut)
async def get_cart(session: CartSession = Depends(get_session)):
    try:
        await session.fetch()
    except CartError as e:
        raise _http_error(e)
    return _cart_out(session)


@router.post("/items", response_model=CartOut)
async def add_item(payload: ItemIn, session: CartSession = Depends(get_session)):
    try:
        await session.add_item(payload.product_ref, payload.variant_key, payload.quantity)
    except CartError as e:
        raise _http_error(e)
    return _cart_out(session)


@router.put("/items/{product_ref}", response_model=CartOut)
async def update_item(product_ref: str, payload: QuantityIn, session: CartSession = Depends(get_session)):
    try:
        await session.update_item(product_ref, payload.variant_key, payload.quantity)
    except CartError as e:
        raise _http_error(e)
    return _cart_out(session)


@router.delete("/items/{product_ref}", response_model=CartOut)
async def remove_item(
    product_ref: str,
    variant_key: str = Query(..., min_length=1),
    session: CartSession = Depends(get_session),
):
    try:
        await session.remove_item(product_ref, variant_key)
    except CartError as e:
        raise _http_error(e)
    return _cart_out(session)


@router.delete("", response_model=CartOut)
async def clear_cart(session: CartSession = Depends(get_session)):
    try:
        await session.clear()
    except CartError as e:
        raise _http_error(e)
    return _cart_out(session)


#price lock
@router.get("/price-lock", response_model=LockTick)
def get_price_lock(session: CartSession = Depends(get_session)):
    return session.tick()


@router.post("/price-lock/refresh", response_model=CartOut)
async def refresh_price_lock(session: CartSession = Depends(get_session)):
    try:
        await session.refresh_lock()
    except CartError as e:
        raise _http_error(e)
    return _cart_out(session)


#reconciliation
@router.get("/reconciliation", response_model=ReconciliationView)
def get_reconciliation(session: CartSession = Depends(get_session)):
    return session.reconciliation


@router.post("/reconciliation/acknowledge", response_model=CartOut)
async def acknowledge_reconciliation(session: CartSession = Depends(get_session)):
    try:
        await session.acknowledge_reconciliation()
    except CartError as e:
        raise _http_error(e)
    return _cart_out(session)


@router.get("/live-prices", response_model=Dict[str, Decimal])
async def get_live_price_drift(session: CartSession = Depends(get_session)):
    try:
        drift = await session.check_live_prices()
    except CartError as e:
        raise _http_error(e)
    return {f"{ref}:{variant}": price for (ref, variant), price in drift.items()}


@router.post("/checkout", response_model=CheckoutOut)
def checkout(session: CartSession = Depends(get_session)):
    """
    Checkout gate only: order placement happens elsewhere.
    409 with kind lock_expired or reconciliation_required when blocked.
    """
    try:
        summary = session.ensure_checkout_allowed()
    except CartError as e:
        raise _http_error(e)
    return CheckoutOut(allowed=True, total=summary.total)
