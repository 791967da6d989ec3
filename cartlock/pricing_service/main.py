# pricing_service/main.py
"""
Cart + pricing service (dev mock).
In-memory stand-in for the external storefront API the cart engine talks to.
Prices are per product and purity; POST /_dev/rates moves the market.
"""
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from decimal import ROUND_HALF_EVEN, Decimal
from typing import Callable, Dict, Optional, Tuple

from fastapi import Body, FastAPI, Header, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from cartlock.utils.settings import PRICE_LOCK_TTL_SECONDS

TAX_RATE = Decimal("0.03")
CENT = Decimal("0.01")

PRODUCTS = {
    "ring-001": {"title": "Classic Band", "prices": {"22K": 10000, "18K": 8200}},
    "chain-002": {"title": "Rope Chain", "prices": {"22K": 45500, "24K": 49800}},
    "coin-003": {"title": "Lakshmi Coin", "prices": {"24K": 7100}},
}


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class AddItemIn(BaseModel):
    productId: str
    selectedPurity: str
    quantity: int


class UpdateItemIn(BaseModel):
    quantity: int
    selectedPurity: str


class RateIn(BaseModel):
    productId: str
    selectedPurity: str
    price: Decimal = Field(..., gt=0)


@dataclass
class _Line:
    quantity: int
    last_known_price: Decimal
    locked_price: Decimal


@dataclass
class _Cart:
    lines: Dict[Tuple[str, str], _Line] = field(default_factory=dict)
    locked_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None


class ServiceError(Exception):
    def __init__(self, status_code: int, message: str):
        super().__init__(message)
        self.status_code = status_code
        self.message = message


class PricingBackend:
    def __init__(self, clock: Callable[[], datetime] = _utc_now, lock_ttl: int = PRICE_LOCK_TTL_SECONDS):
        self.clock = clock
        self.lock_ttl = lock_ttl
        self.carts: Dict[str, _Cart] = {}
        self.prices: Dict[Tuple[str, str], Decimal] = {
            (pid, purity): Decimal(str(price))
            for pid, product in PRODUCTS.items()
            for purity, price in product["prices"].items()
        }

    def cart_for(self, token: str) -> _Cart:
        return self.carts.setdefault(token, _Cart())

    def live_price(self, product_id: str, purity: str) -> Decimal:
        if product_id not in PRODUCTS:
            raise ServiceError(404, "Product not found")
        price = self.prices.get((product_id, purity))
        if price is None:
            raise ServiceError(400, f"Purity {purity} is not available for this product")
        return price

    def lock_valid(self, cart: _Cart) -> bool:
        return cart.expires_at is not None and self.clock() < cart.expires_at

    def issue_lock(self, cart: _Cart) -> None:
        now = self.clock()
        cart.locked_at = now
        cart.expires_at = now + timedelta(seconds=self.lock_ttl)
        for (pid, purity), line in cart.lines.items():
            line.locked_price = self.live_price(pid, purity)

    def ensure_lock(self, cart: _Cart) -> None:
        if cart.lines and not self.lock_valid(cart):
            self.issue_lock(cart)

    def lock_payload(self, cart: _Cart) -> dict:
        if not cart.lines or cart.expires_at is None:
            return {"locked": False, "lockedAt": None, "expiresAt": None}
        return {
            "locked": self.lock_valid(cart),
            "lockedAt": cart.locked_at.isoformat(),
            "expiresAt": cart.expires_at.isoformat(),
        }

    def snapshot(self, cart: _Cart) -> dict:
        items = []
        subtotal = Decimal("0.00")
        changed = 0
        for (pid, purity), line in cart.lines.items():
            price = line.locked_price
            warning = price != line.last_known_price
            changed += warning
            subtotal += price * line.quantity
            items.append(
                {
                    "productId": pid,
                    "selectedPurity": purity,
                    "title": PRODUCTS[pid]["title"],
                    "quantity": line.quantity,
                    "price": str(price),
                    "lastKnownPrice": str(line.last_known_price),
                    "priceChangeWarning": warning,
                }
            )

        tax = (subtotal * TAX_RATE).quantize(CENT, rounding=ROUND_HALF_EVEN)
        shipping = Decimal("0.00")
        warnings = [f"Prices for {changed} item(s) changed since they were added"] if changed else []
        return {
            "items": items,
            "summary": {
                "subtotal": str(subtotal),
                "tax": str(tax),
                "shipping": str(shipping),
                "total": str(subtotal + tax + shipping),
            },
            "priceLock": self.lock_payload(cart),
            "warnings": warnings,
        }


def _token(authorization: Optional[str]) -> str:
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Not authorized")
    return authorization.removeprefix("Bearer ").strip()


def _ok(data=None, message: Optional[str] = None) -> dict:
    body = {"success": True, "data": data}
    if message:
        body["message"] = message
    return body


def create_app(backend: Optional[PricingBackend] = None) -> FastAPI:
    app = FastAPI(title="Cart Pricing Service (dev mock)")
    app.state.backend = backend or PricingBackend()

    @app.exception_handler(ServiceError)
    async def _service_error(request: Request, exc: ServiceError):
        return JSONResponse(status_code=exc.status_code, content={"success": False, "message": exc.message})

    @app.exception_handler(HTTPException)
    async def _http_error(request: Request, exc: HTTPException):
        return JSONResponse(status_code=exc.status_code, content={"success": False, "message": exc.detail})

    def _backend() -> PricingBackend:
        return app.state.backend

    @app.get("/products/{product_id}")
    def get_product(product_id: str, purity: Optional[str] = Query(None)):
        product = PRODUCTS.get(product_id)
        if not product:
            raise ServiceError(404, "Product not found")
        purity = purity or next(iter(product["prices"]))
        price = _backend().live_price(product_id, purity)
        return _ok(
            {
                "_id": product_id,
                "title": product["title"],
                "specifications": {"purity": purity, "metalType": "Gold"},
                "pricing": {"finalPrice": str(price)},
            }
        )

    @app.get("/cart")
    def get_cart(authorization: Optional[str] = Header(None)):
        backend = _backend()
        cart = backend.cart_for(_token(authorization))
        backend.ensure_lock(cart)
        return _ok(backend.snapshot(cart))

    @app.post("/cart/items")
    def add_item(payload: AddItemIn, authorization: Optional[str] = Header(None)):
        backend = _backend()
        cart = backend.cart_for(_token(authorization))
        if payload.quantity < 1:
            raise ServiceError(400, "Quantity must be at least 1")

        price = backend.live_price(payload.productId, payload.selectedPurity)
        key = (payload.productId, payload.selectedPurity)
        line = cart.lines.get(key)
        if line:
            line.quantity += payload.quantity
        else:
            cart.lines[key] = _Line(quantity=payload.quantity, last_known_price=price, locked_price=price)

        backend.ensure_lock(cart)
        return _ok(backend.snapshot(cart))

    @app.put("/cart/items/{product_id}")
    def update_item(product_id: str, payload: UpdateItemIn, authorization: Optional[str] = Header(None)):
        backend = _backend()
        cart = backend.cart_for(_token(authorization))
        line = cart.lines.get((product_id, payload.selectedPurity))
        if not line:
            raise ServiceError(404, "Item not found in cart")
        if payload.quantity < 1:
            raise ServiceError(400, "Quantity must be at least 1")

        line.quantity = payload.quantity
        backend.ensure_lock(cart)
        return _ok(backend.snapshot(cart))

    @app.delete("/cart/items/{product_id}")
    def remove_item(
        product_id: str,
        payload: Optional[dict] = Body(None),
        authorization: Optional[str] = Header(None),
    ):
        backend = _backend()
        cart = backend.cart_for(_token(authorization))
        key = (product_id, (payload or {}).get("selectedPurity"))
        if key not in cart.lines:
            raise ServiceError(404, "Item not found in cart")

        del cart.lines[key]
        if not cart.lines:
            cart.locked_at = cart.expires_at = None
        else:
            backend.ensure_lock(cart)
        return _ok(backend.snapshot(cart))

    @app.delete("/cart")
    def clear_cart(authorization: Optional[str] = Header(None)):
        backend = _backend()
        backend.carts[_token(authorization)] = _Cart()
        return _ok(message="Cart cleared")

    @app.post("/price-lock")
    def price_lock(authorization: Optional[str] = Header(None)):
        backend = _backend()
        cart = backend.cart_for(_token(authorization))
        backend.issue_lock(cart)
        rates = {f"{pid}:{purity}": str(price) for (pid, purity), price in backend.prices.items()}
        return _ok(
            {
                "locked": True,
                "lockedAt": cart.locked_at.isoformat(),
                "expiresAt": cart.expires_at.isoformat(),
                "rates": rates,
            }
        )

    @app.post("/_dev/rates")
    def set_rate(payload: RateIn):
        backend = _backend()
        backend.live_price(payload.productId, payload.selectedPurity)
        backend.prices[(payload.productId, payload.selectedPurity)] = payload.price
        return _ok({"productId": payload.productId, "selectedPurity": payload.selectedPurity, "price": str(payload.price)})

    return app


app = create_app()
