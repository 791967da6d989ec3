# cartlock/domain/schemas.py
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator, model_validator

ZERO = Decimal("0.00")

ItemKey = Tuple[str, str]


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


# =====================================================
# DOMAIN
# =====================================================

class LockState(str, Enum):
    UNLOCKED = "UNLOCKED"
    LOCKED = "LOCKED"
    EXPIRED = "EXPIRED"


class LineItem(BaseModel):
    """Cart line; identity is (product_ref, variant_key)."""

    model_config = ConfigDict(frozen=True)

    product_ref: str
    variant_key: str
    quantity: int = Field(..., ge=1)
    last_known_unit_price: Decimal
    current_unit_price: Decimal
    title: Optional[str] = None

    @computed_field
    @property
    def price_change_warning(self) -> bool:
        return self.current_unit_price != self.last_known_unit_price

    @property
    def key(self) -> ItemKey:
        return (self.product_ref, self.variant_key)


class PriceLock(BaseModel):
    model_config = ConfigDict(frozen=True)

    locked: bool = False
    locked_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None

    @field_validator("locked_at", "expires_at")
    @classmethod
    def _utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return _as_utc(value)

    @classmethod
    def unlocked(cls) -> "PriceLock":
        return cls()


class CartSummary(BaseModel):
    model_config = ConfigDict(frozen=True)

    subtotal: Decimal = ZERO
    tax: Decimal = ZERO
    shipping: Decimal = ZERO
    total: Decimal = ZERO


ZERO_SUMMARY = CartSummary()


class CartSnapshot(BaseModel):
    """Everything one server response says about the cart."""

    model_config = ConfigDict(frozen=True)

    items: List[LineItem] = Field(default_factory=list)
    summary: CartSummary = ZERO_SUMMARY
    price_lock: PriceLock = Field(default_factory=PriceLock.unlocked)
    warnings: List[str] = Field(default_factory=list)

    @classmethod
    def empty(cls) -> "CartSnapshot":
        return cls()

    @property
    def is_empty(self) -> bool:
        return not self.items


class ReconciliationView(BaseModel):
    model_config = ConfigDict(frozen=True)

    affected_items: List[LineItem] = Field(default_factory=list)
    old_total: Decimal = ZERO
    new_total: Decimal = ZERO

    @computed_field
    @property
    def requires_acknowledgment(self) -> bool:
        return bool(self.affected_items)

    @computed_field
    @property
    def delta(self) -> Decimal:
        return self.new_total - self.old_total


class LockTick(BaseModel):
    """Countdown reading for one instant."""

    model_config = ConfigDict(frozen=True)

    state: LockState
    seconds_remaining: Optional[int] = None
    label: Optional[str] = None
    low_time: bool = False

    @property
    def expired(self) -> bool:
        return self.state is LockState.EXPIRED


# =====================================================
# WIRE (external cart / pricing service)
# =====================================================

class WirePriceLock(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    locked: bool = False
    locked_at: Optional[datetime] = Field(None, alias="lockedAt")
    expires_at: Optional[datetime] = Field(None, alias="expiresAt")

    def to_domain(self) -> PriceLock:
        return PriceLock(locked=self.locked, locked_at=self.locked_at, expires_at=self.expires_at)


class WireSummary(BaseModel):
    model_config = ConfigDict(extra="ignore")

    subtotal: Decimal = ZERO
    tax: Decimal = ZERO
    shipping: Decimal = ZERO
    total: Decimal = ZERO

    def to_domain(self) -> CartSummary:
        return CartSummary(**self.model_dump())


class WireItem(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    product_id: str = Field(..., alias="productId")
    selected_purity: str = Field(..., alias="selectedPurity")
    quantity: int = Field(..., ge=1)
    price: Decimal
    last_known_price: Optional[Decimal] = Field(None, alias="lastKnownPrice")
    price_change_warning: bool = Field(False, alias="priceChangeWarning")
    title: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def _flatten_product(cls, data: Any) -> Any:
        # the service may embed the product document instead of a bare id
        if isinstance(data, dict) and "productId" not in data and isinstance(data.get("product"), dict):
            product = data["product"]
            data = dict(data)
            data["productId"] = str(product.get("_id") or product.get("id"))
            data.setdefault("title", product.get("title"))
            pricing = product.get("pricing") or {}
            if "price" not in data and "finalPrice" in pricing:
                data["price"] = pricing["finalPrice"]
        return data

    @field_validator("product_id", mode="before")
    @classmethod
    def _str_id(cls, value: Any) -> Any:
        return str(value) if value is not None else value

    @property
    def key(self) -> ItemKey:
        return (self.product_id, self.selected_purity)

    @property
    def server_last_known(self) -> Decimal:
        return self.last_known_price if self.last_known_price is not None else self.price


class WireCart(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    items: List[WireItem] = Field(default_factory=list)
    summary: WireSummary = Field(default_factory=WireSummary)
    price_lock: Optional[WirePriceLock] = Field(None, alias="priceLock")
    warnings: List[Any] = Field(default_factory=list)

    @field_validator("summary", mode="before")
    @classmethod
    def _summary_or_default(cls, value: Any) -> Any:
        return value if value is not None else {}

    @field_validator("items", "warnings", mode="before")
    @classmethod
    def _list_or_default(cls, value: Any) -> Any:
        return value if value is not None else []


# =====================================================
# UI-FACING REQUESTS / RESPONSES
# =====================================================

class ItemIn(BaseModel):
    """Adding a product to the cart."""

    product_ref: str = Field(..., min_length=1)
    variant_key: str = Field(..., min_length=1, description="Purity / grade, e.g. 22K")
    quantity: int = Field(..., gt=0, description="Must be > 0")


class QuantityIn(BaseModel):
    """Changing quantity; 0 is accepted here and ignored by the cart store."""

    variant_key: str = Field(..., min_length=1)
    quantity: int = Field(..., ge=0)


class CartOut(BaseModel):
    items: List[LineItem]
    summary: CartSummary
    price_lock: PriceLock
    lock: LockTick
    reconciliation: ReconciliationView
    warnings: List[str]
    can_checkout: bool
    is_loading: bool = False


class CheckoutOut(BaseModel):
    allowed: bool
    total: Decimal
