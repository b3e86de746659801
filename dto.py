"""
Request bodies.

Every route parses its body into one of these before any service is called.
"""
import re
from datetime import datetime
from typing import Annotated, List, Optional

from pydantic import AfterValidator, BaseModel, EmailStr, Field, model_validator

from pricing import validate_variations
from schemas import (
    SKU_PATTERN,
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
    ProductBrand,
    ProductCategory,
    ProductSpecs,
    ProductVariation,
    ShippingMethod,
)

PASSWORD_RE = re.compile(r"^(?=.*[a-z])(?=.*[A-Z])(?=.*\d)(?=.*[@$!%*?&])[A-Za-z\d@$!%*?&]{8,}$")
PASSWORD_MESSAGE = ("Password must contain at least 8 characters, including uppercase, lowercase, "
                    "number and special character")
PHONE_RE = re.compile(r"^\+?[\d\s\-()]{10,}$")


def _check_password(v: str) -> str:
    if not PASSWORD_RE.match(v):
        raise ValueError(PASSWORD_MESSAGE)
    return v


def _check_phone(v: str) -> str:
    if not PHONE_RE.match(v):
        raise ValueError("Please enter a valid phone number")
    return v


Password = Annotated[str, AfterValidator(_check_password)]
Phone = Annotated[str, AfterValidator(_check_phone)]


# Auth
class RegisterDTO(BaseModel):
    first_name: str = Field(..., min_length=2, max_length=50)
    last_name: str = Field(..., min_length=2, max_length=50)
    email: EmailStr
    password: Password
    phone_number: Optional[Phone] = None
    date_of_birth: Optional[datetime] = None


class LoginDTO(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=1)


class ProfileUpdateDTO(BaseModel):
    first_name: Optional[str] = Field(None, min_length=2, max_length=50)
    last_name: Optional[str] = Field(None, min_length=2, max_length=50)
    phone_number: Optional[Phone] = None
    profile_picture: Optional[str] = None
    date_of_birth: Optional[datetime] = None


class AddressDTO(BaseModel):
    street: str = Field(..., min_length=1)
    city: str = Field(..., min_length=1)
    state: str = Field(..., min_length=1)
    zip_code: str = Field(..., min_length=1)
    country: str = Field(..., min_length=1)
    is_default: bool = False
    label: Optional[str] = None


class ChangePasswordDTO(BaseModel):
    current_password: str = Field(..., min_length=1)
    new_password: Password


# Products
class ProductCreateDTO(BaseModel):
    name: str = Field(..., min_length=3, max_length=100)
    description: str = Field(..., min_length=10, max_length=1000)
    base_price: float = Field(..., ge=0)
    sale_price: Optional[float] = Field(None, ge=0)
    category: ProductCategory
    brand: ProductBrand
    sku: str = Field(..., pattern=SKU_PATTERN)
    stock: int = Field(..., ge=0)
    variations: List[ProductVariation] = []
    images: List[str] = []
    tags: List[str] = []
    features: List[str] = []
    specs: Optional[ProductSpecs] = None
    is_active: bool = True

    @model_validator(mode="after")
    def check_variations(self) -> "ProductCreateDTO":
        validate_variations(self.base_price, self.variations)
        return self


class ProductUpdateDTO(BaseModel):
    name: Optional[str] = Field(None, min_length=3, max_length=100)
    description: Optional[str] = Field(None, min_length=10, max_length=1000)
    base_price: Optional[float] = Field(None, ge=0)
    sale_price: Optional[float] = Field(None, ge=0)
    category: Optional[ProductCategory] = None
    brand: Optional[ProductBrand] = None
    sku: Optional[str] = Field(None, pattern=SKU_PATTERN)
    stock: Optional[int] = Field(None, ge=0)
    variations: Optional[List[ProductVariation]] = None
    images: Optional[List[str]] = None
    tags: Optional[List[str]] = None
    features: Optional[List[str]] = None
    specs: Optional[ProductSpecs] = None
    is_active: Optional[bool] = None


class ReviewDTO(BaseModel):
    rating: int = Field(..., ge=1, le=5)
    comment: Optional[str] = None


class StockAdjustDTO(BaseModel):
    quantity: int = Field(..., description="Positive to restock, negative to remove")


# Cart
class CartVariantDTO(BaseModel):
    size: str = Field(..., min_length=1)
    color: str = Field(..., min_length=1)
    sku: str = Field(..., min_length=1)


class AddCartItemDTO(BaseModel):
    product_id: str
    quantity: int = Field(..., ge=1)
    variant: CartVariantDTO


class UpdateCartItemDTO(BaseModel):
    product_id: str
    variant_sku: str = Field(..., min_length=1)
    quantity: int = Field(..., ge=0)


class RemoveCartItemDTO(BaseModel):
    product_id: str
    variant_sku: str = Field(..., min_length=1)


# Orders
class OrderVariantDTO(BaseModel):
    size: Optional[str] = None
    color: Optional[str] = None
    sku: Optional[str] = None


class OrderItemDTO(BaseModel):
    product: str = Field(..., description="Product id")
    quantity: int = Field(..., ge=1)
    price: float = Field(..., ge=0)
    name: Optional[str] = None
    sku: Optional[str] = None
    variant: Optional[OrderVariantDTO] = None


class CreateOrderDTO(BaseModel):
    items: List[OrderItemDTO] = Field(..., min_length=1)
    shipping_address: AddressDTO
    billing_address: AddressDTO
    payment_method: PaymentMethod
    shipping_method: ShippingMethod = ShippingMethod.STANDARD
    notes: Optional[str] = None


class OrderStatusDTO(BaseModel):
    status: OrderStatus
    tracking_number: Optional[str] = None


class PaymentStatusDTO(BaseModel):
    payment_status: PaymentStatus
