"""
Database Schemas for the Storefront

Each document model correlates to a MongoDB collection. The collection name is the lowercase of the class name.
- User -> "user"
- Product -> "product"
- Cart -> "cart"
- Order -> "order"

The *Request models validate inbound payloads at the HTTP edge before they reach a service.
"""

from datetime import datetime
from typing import Dict, List, Literal, Optional

from bson import ObjectId
from pydantic import BaseModel, ConfigDict, EmailStr, Field, model_validator

ORDER_STATUSES = ("pending", "confirmed", "shipped", "delivered", "cancelled")
PAYMENT_STATUSES = ("pending", "completed", "failed", "refunded")
PAYMENT_METHODS = ("credit_card", "debit_card", "net_banking", "wallet")

Role = Literal["admin", "customer"]
PaymentMethod = Literal["credit_card", "debit_card", "net_banking", "wallet"]
Category = Literal[
    "Electronics",
    "Clothing",
    "Home & Garden",
    "Books",
    "Sports & Outdoors",
    "Health & Personal Care",
    "Toys & Games",
]


class DocumentModel(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)


# Documents

class Address(DocumentModel):
    id: ObjectId = Field(default_factory=ObjectId, alias="_id")
    street: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zip_code: Optional[str] = None
    country: Optional[str] = None
    is_default: bool = False


class User(DocumentModel):
    name: str = Field(..., description="Full name")
    email: str = Field(..., description="Lowercased email address")
    password_hash: str = Field(..., description="BCrypt password hash")
    phone: Optional[str] = None
    role: Role = "customer"
    is_active: bool = True
    addresses: List[dict] = Field(default_factory=list)
    last_login: Optional[datetime] = None


class Ratings(BaseModel):
    average: float = Field(0, ge=0, le=5)
    count: int = Field(0, ge=0)


class Product(DocumentModel):
    name: str
    slug: str
    description: str
    category: Category
    price: float = Field(..., ge=0)
    discount_price: float = Field(0, ge=0)
    stock: int = Field(0, ge=0)
    sku: str
    images: List[str] = Field(default_factory=list)
    attributes: Dict[str, str] = Field(default_factory=dict)
    is_active: bool = True
    ratings: Ratings = Field(default_factory=Ratings)
    reviews: List[dict] = Field(default_factory=list)


class CartItem(DocumentModel):
    product_id: ObjectId
    quantity: int = Field(1, ge=1)


class Cart(DocumentModel):
    user_id: ObjectId
    items: List[CartItem] = Field(default_factory=list)
    total_items: int = 0
    total_price: float = 0


class ShippingAddress(BaseModel):
    street: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zip_code: Optional[str] = None
    country: Optional[str] = None


class OrderItem(DocumentModel):
    product_id: ObjectId
    product_name: str
    price: float
    quantity: int = Field(..., ge=1)
    discount: float = 0


class Order(DocumentModel):
    order_number: str
    user_id: ObjectId
    items: List[OrderItem]
    shipping_address: ShippingAddress
    subtotal: float
    shipping_cost: float = 0
    tax: float = 0
    discount_amount: float = 0
    total: float
    status: str = "pending"
    payment_status: str = "pending"
    payment_method: PaymentMethod
    tracking_number: Optional[str] = None
    estimated_delivery: Optional[datetime] = None
    shipped_date: Optional[datetime] = None
    delivered_date: Optional[datetime] = None
    cancelled_date: Optional[datetime] = None
    cancellation_reason: Optional[str] = None
    notes: Optional[str] = None


# Requests

class RegisterRequest(BaseModel):
    name: str = Field(..., min_length=1)
    email: EmailStr
    password: str = Field(..., min_length=6)
    confirm_password: str
    phone: Optional[str] = None

    @model_validator(mode="after")
    def passwords_match(self):
        if self.password != self.confirm_password:
            raise ValueError("Passwords do not match")
        return self


class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=1)


class ProfileUpdateRequest(BaseModel):
    name: Optional[str] = Field(None, min_length=1)
    phone: Optional[str] = None


class ChangePasswordRequest(BaseModel):
    old_password: str
    new_password: str = Field(..., min_length=6)


class AddressRequest(BaseModel):
    street: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zip_code: Optional[str] = None
    country: Optional[str] = None
    is_default: bool = False


class ProductCreateRequest(BaseModel):
    name: str = Field(..., min_length=1)
    description: str = Field(..., min_length=1)
    category: Category
    price: float = Field(..., ge=0)
    discount_price: float = Field(0, ge=0)
    stock: int = Field(0, ge=0)
    sku: str = Field(..., min_length=1)
    images: List[str] = Field(default_factory=list)
    attributes: Dict[str, str] = Field(default_factory=dict)


class ProductUpdateRequest(BaseModel):
    name: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None
    category: Optional[Category] = None
    price: Optional[float] = Field(None, ge=0)
    discount_price: Optional[float] = Field(None, ge=0)
    stock: Optional[int] = Field(None, ge=0)
    sku: Optional[str] = Field(None, min_length=1)
    images: Optional[List[str]] = None
    attributes: Optional[Dict[str, str]] = None
    is_active: Optional[bool] = None


class ReviewRequest(BaseModel):
    rating: int = Field(..., ge=1, le=5)
    comment: Optional[str] = None


class CartAddRequest(BaseModel):
    product_id: str
    quantity: int = Field(1, ge=1)


class CartRemoveRequest(BaseModel):
    product_id: str


class CartQuantityRequest(BaseModel):
    product_id: str
    quantity: int


class OrderItemRequest(BaseModel):
    product_id: str
    quantity: int = Field(..., ge=1)
    discount: float = Field(0, ge=0)


class CheckoutRequest(BaseModel):
    shipping_address: Optional[ShippingAddress] = None
    address_id: Optional[str] = None
    payment_method: PaymentMethod
    shipping_cost: float = Field(0, ge=0)
    tax: float = Field(0, ge=0)
    discount_amount: float = Field(0, ge=0)
    notes: Optional[str] = None

    @model_validator(mode="after")
    def address_given(self):
        if self.shipping_address is None and self.address_id is None:
            raise ValueError("Provide shipping_address or address_id")
        return self


class CreateOrderRequest(CheckoutRequest):
    items: List[OrderItemRequest] = Field(default_factory=list)


class OrderStatusRequest(BaseModel):
    status: str
    tracking_number: Optional[str] = None


class PaymentStatusRequest(BaseModel):
    payment_status: str


class CancelOrderRequest(BaseModel):
    reason: Optional[str] = None
