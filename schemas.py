"""
Vault Skate Database Schemas

Each Pydantic model below represents one MongoDB collection. The collection name is the lowercase
class name. Example: class User -> collection "user". Embedded models (Address, ProductVariation,
CartItem, OrderItem, ...) live inside their parent documents.

These schemas are used for validation before inserting/updating documents.
"""
import re
from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator, model_validator

from pricing import validate_variations

IMAGE_URL_RE = re.compile(r"^https?://.+\.(jpg|jpeg|png|gif|webp)$", re.IGNORECASE)
SKU_PATTERN = r"^[A-Za-z0-9-]+$"


class UserRole(str, Enum):
    CUSTOMER = "customer"
    ADMIN = "admin"
    MODERATOR = "moderator"


class ProductCategory(str, Enum):
    COMPLETE_SKATEBOARD = "Complete Skateboard"
    DECK = "Deck"
    TRUCKS = "Trucks"
    WHEELS = "Wheels"
    BEARINGS = "Bearings"
    GRIP_TAPE = "Grip Tape"
    HARDWARE = "Hardware"
    ACCESSORIES = "Accessories"


class ProductBrand(str, Enum):
    ELEMENT = "Element"
    SANTA_CRUZ = "Santa Cruz"
    ENJOI = "Enjoi"
    GIRL = "Girl"
    PLAN_B = "Plan B"
    ALMOST = "Almost"
    INDEPENDENT = "Independent"
    THUNDER = "Thunder"


class OrderStatus(str, Enum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    SHIPPED = "SHIPPED"
    DELIVERED = "DELIVERED"
    CANCELLED = "CANCELLED"
    REFUNDED = "REFUNDED"


class PaymentStatus(str, Enum):
    UNPAID = "UNPAID"
    PENDING = "PENDING"
    PAID = "PAID"
    FAILED = "FAILED"
    PARTIALLY_REFUNDED = "PARTIALLY_REFUNDED"
    REFUNDED = "REFUNDED"


class PaymentMethod(str, Enum):
    CREDIT_CARD = "Credit Card"
    DEBIT_CARD = "Debit Card"
    PAYPAL = "PayPal"
    STRIPE = "Stripe"


class ShippingMethod(str, Enum):
    STANDARD = "Standard"
    EXPRESS = "Express"
    OVERNIGHT = "Overnight"
    LOCAL_PICKUP = "Local Pickup"


class Record(BaseModel):
    # Enums are stored as their plain string values.
    model_config = ConfigDict(use_enum_values=True)


class Address(Record):
    street: str = Field(..., min_length=1)
    city: str = Field(..., min_length=1)
    state: str = Field(..., min_length=1)
    zip_code: str = Field(..., min_length=1)
    country: str = Field(..., min_length=1)
    is_default: bool = False
    label: Optional[str] = Field(None, description="e.g. Home, Work")
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class NotificationPreferences(Record):
    email: bool = True
    sms: bool = False


class UserPreferences(Record):
    language: str = "en"
    currency: str = "USD"
    notifications: NotificationPreferences = Field(default_factory=NotificationPreferences)


class User(Record):
    first_name: str
    last_name: str
    email: EmailStr
    password_hash: str
    role: UserRole = UserRole.CUSTOMER
    addresses: List[Address] = []
    phone_number: Optional[str] = None
    date_of_birth: Optional[datetime] = None
    profile_picture: Optional[str] = None
    is_active: bool = True
    is_email_verified: bool = False
    last_login: Optional[datetime] = None
    last_password_change: Optional[datetime] = None
    failed_login_attempts: int = 0
    lockout_until: Optional[datetime] = None
    preferences: UserPreferences = Field(default_factory=UserPreferences)


class ProductVariation(Record):
    size: Optional[str] = None
    color: Optional[str] = None
    sku: str = Field(..., min_length=1, description="SKU is required for each variation")
    stock_quantity: int = Field(..., ge=0)
    additional_price: float = 0


class ProductReview(Record):
    user_id: str
    rating: int = Field(..., ge=1, le=5)
    comment: Optional[str] = None
    created_at: datetime
    updated_at: Optional[datetime] = None


class ProductRatings(Record):
    average: float = Field(0, ge=0, le=5)
    count: int = Field(0, ge=0)


class ProductSpecs(Record):
    length: Optional[float] = None
    width: Optional[float] = None
    material: Optional[str] = None
    weight: Optional[float] = None


class Product(Record):
    name: str = Field(..., min_length=3, max_length=100)
    description: str = Field(..., min_length=10, max_length=1000)
    base_price: float = Field(..., ge=0)
    sale_price: Optional[float] = Field(None, ge=0)
    category: ProductCategory
    brand: ProductBrand
    sku: str = Field(..., pattern=SKU_PATTERN)
    stock: int = Field(0, ge=0)
    variations: List[ProductVariation] = []
    images: List[str] = []
    tags: List[str] = []
    features: List[str] = []
    specs: ProductSpecs = Field(default_factory=ProductSpecs)
    is_active: bool = True
    ratings: ProductRatings = Field(default_factory=ProductRatings)
    reviews: List[ProductReview] = []

    @field_validator("images")
    @classmethod
    def validate_images(cls, v: List[str]) -> List[str]:
        for url in v:
            if not IMAGE_URL_RE.match(url):
                raise ValueError("Invalid image URL")
        return v

    @model_validator(mode="after")
    def validate_variation_rules(self) -> "Product":
        validate_variations(self.base_price, self.variations)
        return self


class CartVariant(Record):
    size: Optional[str] = None
    color: Optional[str] = None
    sku: str


class CartItem(Record):
    product_id: str
    quantity: int = Field(..., ge=1)
    price: float = Field(..., ge=0)  # resolved price at the time of the last cart write
    variant: CartVariant


class Cart(Record):
    user_id: str
    items: List[CartItem] = []
    subtotal: float = 0
    version: int = 0
    expires_at: Optional[datetime] = None


class OrderVariant(Record):
    size: Optional[str] = None
    color: Optional[str] = None
    sku: Optional[str] = None


class OrderItem(Record):
    product_id: str
    name: str
    sku: str
    quantity: int = Field(..., ge=1)
    price: float = Field(..., ge=0)
    variant: Optional[OrderVariant] = None


class Order(Record):
    order_number: str
    user_id: str = Field(..., description="User id, or 'guest' for guest checkout")
    items: List[OrderItem]
    total_amount: float = Field(..., ge=0)
    shipping_address: Address
    billing_address: Address
    status: OrderStatus = OrderStatus.PENDING
    payment_method: PaymentMethod
    payment_status: PaymentStatus = PaymentStatus.UNPAID
    shipping_method: ShippingMethod = ShippingMethod.STANDARD
    tracking_number: Optional[str] = None
    notes: Optional[str] = None
    order_date: datetime
    shipped_date: Optional[datetime] = None
    delivered_date: Optional[datetime] = None
    estimated_delivery_date: Optional[datetime] = None
    refund_amount: Optional[float] = Field(None, ge=0)
    stock_restored: bool = False
