"""
Database Schemas for the Maktabati school-supplies store

Each Pydantic model represents a collection in MongoDB. The collection name is the lowercase of the class name.
Documents are stored and exchanged with camelCase keys (orderId, totalAmount, isActive, ...).
"""
import re
from datetime import datetime
from typing import List, Literal, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, EmailStr, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

PHONE_PATTERN = re.compile(r"^0[67][0-9]{8}$")

ORDER_STATUSES = ("pending", "confirmed", "processing", "shipped", "delivered", "cancelled")
OrderStatus = Literal["pending", "confirmed", "processing", "shipped", "delivered", "cancelled"]

Role = Literal["admin", "super_admin"]


def is_valid_phone(value: str) -> bool:
    """Moroccan mobile number: 06 or 07 followed by 8 digits."""
    return bool(PHONE_PATTERN.fullmatch(value or ""))


def same_amount(a: float, b: float) -> bool:
    return abs(a - b) < 0.005


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, str_strip_whitespace=True)

    def to_document(self, **kwargs) -> dict:
        return self.model_dump(by_alias=True, **kwargs)


class Category(CamelModel):
    name: str = Field(..., min_length=1, max_length=50, description="Category name, unique regardless of case")
    description: Optional[str] = Field(None, max_length=200, description="Category description")


class Product(CamelModel):
    name: str = Field(..., min_length=1, max_length=100, description="Product name")
    description: str = Field(..., min_length=1, max_length=1000, description="Product description")
    price: float = Field(..., gt=0, description="Price in MAD")
    category: str = Field(..., description="Category id")
    images: List[str] = Field(..., min_length=1, description="Image URLs, at least one")
    stock: int = Field(0, ge=0, description="Available quantity")
    is_active: bool = Field(True, description="Whether the product is visible in the storefront")
    tags: List[str] = Field(default_factory=list, description="Free-form search tags")


class ProductUpdate(CamelModel):
    """Partial update: only the fields present in the request are written."""
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = Field(None, min_length=1, max_length=1000)
    price: Optional[float] = Field(None, gt=0)
    category: Optional[str] = Field(None, validation_alias=AliasChoices("category", "categoryId"))
    images: Optional[List[str]] = Field(None, min_length=1)
    stock: Optional[int] = Field(None, ge=0)
    is_active: Optional[bool] = None
    tags: Optional[List[str]] = None


class Customer(CamelModel):
    name: str = Field(..., min_length=1)
    city: str = Field(..., min_length=1)
    phone: str

    @field_validator("phone")
    @classmethod
    def check_phone(cls, v: str) -> str:
        if not is_valid_phone(v):
            raise ValueError("Invalid phone number (10 digits starting with 06 or 07)")
        return v


class OrderItem(CamelModel):
    product_id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)
    price: float = Field(..., ge=0)
    quantity: int = Field(..., ge=1)
    total: float = Field(..., ge=0)
    category: Optional[str] = Field(None, description="Category id of the product when the order was placed")

    @model_validator(mode="after")
    def check_total(self):
        if not same_amount(self.total, self.price * self.quantity):
            raise ValueError(f"Item total for '{self.name}' does not equal price x quantity")
        return self


class OrderCreate(CamelModel):
    customer: Customer
    items: List[OrderItem] = Field(..., min_length=1)
    total_amount: float = Field(..., gt=0)
    total_items: int = Field(..., ge=1)

    @model_validator(mode="after")
    def check_totals(self):
        if not same_amount(self.total_amount, sum(i.total for i in self.items)):
            raise ValueError("totalAmount does not equal the sum of item totals")
        if self.total_items != sum(i.quantity for i in self.items):
            raise ValueError("totalItems does not equal the sum of item quantities")
        return self


class Order(OrderCreate):
    order_id: str = Field(..., description="Human-facing sequential id, ORD-000001")
    status: OrderStatus = "pending"


class OrderStatusUpdate(BaseModel):
    status: OrderStatus


class AdminUser(CamelModel):
    username: str = Field(..., min_length=3)
    email: EmailStr
    password_hash: str
    role: Role = "admin"
    is_active: bool = True
    last_login: Optional[datetime] = None


class AdminRegister(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    username: str = Field(..., min_length=3)
    email: EmailStr
    password: str = Field(..., min_length=6)


class AdminLogin(BaseModel):
    email: EmailStr
    password: str
