"""Pydantic schemas for checkout"""
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, EmailStr, Field


class CheckoutItemRequest(BaseModel):
    product_id: str
    quantity: int = Field(..., ge=1)
    price: Optional[Decimal] = Field(None, ge=0)
    variant_id: Optional[str] = None


class CheckoutSessionRequest(BaseModel):
    items: List[CheckoutItemRequest] = Field(..., min_length=1)
    email: EmailStr
    order_id: str
    user_id: Optional[str] = None
    shipping_cost: Decimal = Field(Decimal("0"), ge=0)
    tax: Decimal = Field(Decimal("0"), ge=0)
    success_url: Optional[str] = None
    cancel_url: Optional[str] = None


class CheckoutSessionResponse(BaseModel):
    session_id: str
    url: str


class Address(BaseModel):
    name: str
    line1: str
    line2: Optional[str] = None
    postal_code: str
    city: str
    country: str
    phone: Optional[str] = None


class FinalizeCheckoutRequest(BaseModel):
    cart_id: str
    email: EmailStr
    delivery_method: str = "standard"
    shipping_address: Address
    billing_address: Optional[Address] = None
    success_url: Optional[str] = None
    cancel_url: Optional[str] = None


class FinalizeCheckoutResponse(BaseModel):
    order_id: str
    session_id: str
    url: str
    subtotal: Decimal
    shipping_cost: Decimal
    tax: Decimal
    total: Decimal
