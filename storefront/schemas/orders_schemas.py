from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field

from storefront.constants.order_status import OrderStatus


class AddressIn(BaseModel):
    first_name: str
    last_name: str
    email: Optional[str] = None
    phone: Optional[str] = None
    company: Optional[str] = None
    address: str
    city: str
    zip_code: str
    country: str = "FR"


class CheckoutRequest(BaseModel):
    shipping_address: AddressIn
    billing_address: Optional[AddressIn] = None
    customer_message: Optional[str] = Field(default=None, max_length=1000)


class StatusChangeRequest(BaseModel):
    status: OrderStatus
    reason: Optional[str] = Field(default=None, max_length=1000)
    tracking_number: Optional[str] = None
    carrier: Optional[str] = None


class CancelRequest(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=1000)


class HoldRequest(BaseModel):
    reason: str = Field(min_length=1, max_length=1000)


class RefundRequest(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=1000)
    amount: Optional[Decimal] = Field(default=None, ge=0)
