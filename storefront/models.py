"""
Pydantic models for catalog, cart, checkout requests, and persisted records.
"""
from datetime import datetime, timezone
from decimal import Decimal
from typing import List, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class Variant(BaseModel):
    """Purchasable size/weight option of a product"""
    model_config = ConfigDict(frozen=True)

    id: str = Field(..., description="Variant identifier, unique within a product")
    size: str = Field(..., description="Size label")
    weight: str = Field(..., description="Weight label")
    price: Decimal = Field(..., gt=0, description="Current price")
    original_price: Optional[Decimal] = Field(None, description="Pre-discount price")
    in_stock: bool = Field(True, description="Stock flag")

    @model_validator(mode="after")
    def validate_original_price(self) -> "Variant":
        if self.original_price is not None and self.original_price < self.price:
            raise ValueError("original_price cannot be lower than price")
        return self


class Product(BaseModel):
    """Catalog product with its variants"""
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    description: str = ""
    category: str
    images: List[str] = Field(default_factory=list)
    variants: List[Variant] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list)
    in_stock: bool = True
    rating: float = 0.0
    reviews: int = 0
    nutritional_info: Optional[str] = None
    storage_info: Optional[str] = None
    recipe_ideas: List[str] = Field(default_factory=list)

    def variant(self, variant_id: str) -> Optional[Variant]:
        for variant in self.variants:
            if variant.id == variant_id:
                return variant
        return None


class Category(BaseModel):
    """Catalog category"""
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    icon: str = ""
    count: int = 0


class CartLine(BaseModel):
    """One (product, variant, quantity) entry in the cart"""
    product_id: str
    variant_id: str
    quantity: int = Field(..., ge=1, description="Line quantity, never below 1")
    product: Product = Field(..., description="Product copy at time of insertion")
    variant: Variant = Field(..., description="Variant copy at time of insertion")

    @property
    def key(self) -> Tuple[str, str]:
        return (self.product_id, self.variant_id)

    @property
    def line_total(self) -> Decimal:
        return self.variant.price * self.quantity

    @model_validator(mode="after")
    def validate_denormalized_copies(self) -> "CartLine":
        if self.product.id != self.product_id or self.variant.id != self.variant_id:
            raise ValueError("Denormalized product/variant do not match the line key")
        return self


class PricingSnapshot(BaseModel):
    """Derived cart totals, recomputed on every read"""
    model_config = ConfigDict(frozen=True)

    item_count: int = 0
    subtotal: Decimal = Decimal("0")
    delivery_fee: Decimal = Decimal("0")
    loyalty_credits: int = 0
    total: Decimal = Decimal("0")


class LoyaltyProgress(BaseModel):
    """Credits earned toward the next unlockable reward"""
    earned_credits: Decimal
    target_amount: Decimal
    reward: Decimal
    percent: float
    remaining: Decimal
    unlocked: bool


class DeliveryOption(BaseModel):
    """Selectable delivery date"""
    value: str = Field(..., description="ISO date")
    label: str = Field(..., description="Human-readable date")


class TimeSlot(BaseModel):
    """Selectable delivery time slot"""
    value: str
    label: str


class PaymentMethod(BaseModel):
    """Selectable payment method"""
    value: str
    label: str
    enabled: bool = True


class Identity(BaseModel):
    """Signed-in account"""
    model_config = ConfigDict(frozen=True)

    user_id: str
    email: str
    display_name: str = ""


class AuthenticatedSession(BaseModel):
    """A shopper with a signed-in identity"""
    identity: Identity


class AnonymousSession(BaseModel):
    """A shopper without a signed-in identity"""
    pass


Session = Union[AuthenticatedSession, AnonymousSession]


# Request models

class CartItemRequest(BaseModel):
    """Request model for adding items to the cart"""
    product_id: str = Field(..., description="Product identifier")
    variant_id: str = Field(..., description="Variant identifier")
    quantity: int = Field(1, ge=1, description="Quantity to add")


class QuantityUpdateRequest(BaseModel):
    """Request model for setting a line quantity; zero or less removes the line"""
    quantity: int = Field(..., description="New quantity")


class PinCodeRequest(BaseModel):
    """Request model for choosing a delivery PIN code"""
    pin_code: str = Field(..., description="Postal PIN code")


class SignInRequest(BaseModel):
    """Request model for signing in with email and password"""
    email: str = Field(..., description="Account email")
    password: str = Field(..., description="Account password")


class SignUpRequest(SignInRequest):
    """Request model for creating an account"""
    full_name: str = Field("", description="Shopper's full name")

    @field_validator("email", "full_name")
    @classmethod
    def strip_whitespace(cls, v: str) -> str:
        return v.strip()


class CheckoutRequest(BaseModel):
    """Customer-entered checkout fields"""
    name: str = ""
    phone: str = ""
    email: str = ""
    address: str = ""
    landmark: str = ""
    additional_phone: Optional[str] = None
    delivery_date: str = Field("", description="ISO date picked from the delivery options")
    time_slot: str = Field("", description="Time slot value")
    payment_method: str = Field("cod", description="Payment method value")
    pin_code: Optional[str] = Field(None, description="Delivery PIN; defaults to the saved one")

    @field_validator("name", "phone", "email", "address", "landmark", "delivery_date", "time_slot")
    @classmethod
    def strip_whitespace(cls, v: str) -> str:
        return v.strip() if v else ""


# Response models

class CartResponse(BaseModel):
    """Response model for cart retrieval"""
    items: List[CartLine] = Field(default_factory=list)
    cart_count: int = 0
    pricing: PricingSnapshot = Field(default_factory=PricingSnapshot)


class OrderResult(BaseModel):
    """What the shopper is told after placing an order"""
    order_number: str
    delivery_date_label: str
    time_slot_label: str = ""
    persisted: bool
    pricing: PricingSnapshot = Field(default_factory=PricingSnapshot)


# Persisted records

def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ProfileRecord(BaseModel):
    """Shopper profile keyed by identity"""
    user_id: str
    full_name: str
    phone: str
    email: str
    address: str
    landmark: str
    additional_phone: Optional[str] = None
    pin_code: Optional[str] = None


class OrderRecord(BaseModel):
    """Order header as stored by the order store"""
    order_number: str
    user_id: str
    status: str = "pending"
    subtotal: Decimal
    delivery_fee: Decimal
    credits_earned: int
    total_amount: Decimal
    delivery_date: str
    time_slot: str
    payment_method: str
    customer_name: str
    customer_phone: str
    customer_email: str
    delivery_address: str
    landmark: str
    additional_phone: Optional[str] = None
    pin_code: Optional[str] = None
    created_at: datetime = Field(default_factory=_utcnow)


class OrderLineRecord(BaseModel):
    """Order line with price captured at submission time"""
    order_id: str
    product_id: str
    variant_id: str
    product_name: str
    variant_size: str
    quantity: int = Field(..., ge=1)
    unit_price: Decimal
    total_price: Decimal


class OrderHandle(BaseModel):
    """Identifier returned by the order store on insert"""
    id: str


class StoredOrder(BaseModel):
    """Order with its lines, as returned by account queries"""
    id: str
    order: OrderRecord
    lines: List[OrderLineRecord] = Field(default_factory=list)
