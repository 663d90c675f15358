"""
Database Schemas for the ZontropaTi storefront

Each Pydantic model mirrors a gateway table:
- Product -> "products"
- Order -> "orders"
- Contact -> "contacts"
- User -> "users"

The *In / form models validate what visitors and admins send before anything
reaches the gateway.
"""
from __future__ import annotations
from datetime import datetime
from typing import Any, Dict, Literal, Mapping, Optional, Type, TypeVar

import pydantic
from pydantic import BaseModel, ConfigDict, EmailStr, Field

from .errors import ValidationError

PHONE_PATTERN = r"^\+880[0-9]{10}$"
PHONE_PREFIX = "+880"

OrderStatus = Literal["Pending", "Shipped", "Delivered"]
ORDER_STATUSES: tuple[str, ...] = ("Pending", "Shipped", "Delivered")

PRODUCTS = "products"
ORDERS = "orders"
CONTACTS = "contacts"
USERS = "users"
PRODUCT_IMAGES = "product-images"


class Product(BaseModel):
    id: str
    name: str
    description: str = ""
    price: float = Field(..., gt=0)
    image_url: str = ""
    category: Optional[str] = None
    created_at: Optional[datetime] = None


class ProductIn(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(..., min_length=1)
    description: str = Field(..., min_length=1)
    price: float = Field(..., gt=0)
    category: Optional[str] = None


class CustomerDetails(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    customer_name: str = Field(..., min_length=1)
    email: EmailStr
    phone: str = Field(..., pattern=PHONE_PATTERN)
    address: str = Field(..., min_length=1)


class Order(BaseModel):
    id: str
    customer_name: str
    email: str
    phone: str
    address: str
    product_id: str
    quantity: int = Field(..., ge=1)
    status: OrderStatus = "Pending"
    order_date: Optional[datetime] = None
    user_id: Optional[str] = None


class StatusUpdate(BaseModel):
    status: OrderStatus


class ContactIn(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(..., min_length=1)
    email: EmailStr
    phone: str = Field(..., min_length=1)
    message: str = Field(..., min_length=1)


class Contact(BaseModel):
    id: str
    name: str
    email: str
    phone: Optional[str] = None
    message: str
    timestamp: Optional[datetime] = None


class Credentials(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=6)


# Inline messages shown next to each field
CHECKOUT_MESSAGES: Dict[str, Dict[str, str]] = {
    "customer_name": {"required": "Full name is required"},
    "email": {"required": "Email is required", "invalid": "Invalid email"},
    "phone": {
        "required": "Phone number is required",
        "invalid": "Phone must be in +880XXXXXXXXXX format",
    },
    "address": {"required": "Delivery address is required"},
}

CONTACT_MESSAGES: Dict[str, Dict[str, str]] = {
    "name": {"required": "Name is required"},
    "email": {"required": "Email is required", "invalid": "Invalid email"},
    "phone": {"required": "Phone number is required"},
    "message": {"required": "Message is required"},
}

PRODUCT_MESSAGES: Dict[str, Dict[str, str]] = {
    "name": {"required": "Product name is required"},
    "description": {"required": "Description is required"},
    "price": {"required": "Price is required", "invalid": "Price must be positive"},
}

M = TypeVar("M", bound=BaseModel)


def validate_fields(model: Type[M], data: Mapping[str, Any],
                    messages: Optional[Mapping[str, Mapping[str, str]]] = None) -> M:
    """Validate `data` against `model`, raising ValidationError with one message per field."""
    try:
        return model.model_validate(dict(data))
    except pydantic.ValidationError as exc:
        errors: Dict[str, str] = {}
        for err in exc.errors():
            field = str(err["loc"][0]) if err["loc"] else "__root__"
            if field in errors:
                continue
            value = data.get(field)
            blank = value is None or (isinstance(value, str) and not value.strip())
            kind = "required" if blank else "invalid"
            field_messages = (messages or {}).get(field, {})
            errors[field] = field_messages.get(kind) or field_messages.get("required") or err["msg"]
        raise ValidationError(errors) from exc
