from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from storefront.constants.coupon import CouponType

CODE_PATTERN = r"^[A-Za-z0-9_-]{3,50}$"


class CouponApplyRequest(BaseModel):
    code: str = Field(min_length=1, max_length=50)


class CouponBase(BaseModel):
    value: Optional[Decimal] = Field(default=None, ge=0)
    minimum_amount: Optional[Decimal] = Field(default=None, ge=0)
    maximum_discount: Optional[Decimal] = Field(default=None, ge=0)
    valid_from: Optional[datetime] = None
    valid_until: Optional[datetime] = None
    max_usages: Optional[int] = Field(default=None, ge=0)
    max_usages_per_user: Optional[int] = Field(default=None, ge=0)
    first_order_only: bool = False
    allowed_customer_types: Optional[List[str]] = None
    is_active: bool = True
    public_message: Optional[str] = Field(default=None, max_length=255)
    internal_note: Optional[str] = None

    @model_validator(mode="after")
    def check_window(self):
        if self.valid_from and self.valid_until and self.valid_until < self.valid_from:
            raise ValueError("valid_until must be after valid_from")
        return self


class CouponCreate(CouponBase):
    code: str = Field(pattern=CODE_PATTERN)
    type: CouponType = CouponType.percentage

    @field_validator("code")
    @classmethod
    def normalize_code(cls, v: str) -> str:
        return v.strip().upper()

    @model_validator(mode="after")
    def check_value(self):
        if self.type == CouponType.percentage:
            if self.value is None or not (0 < self.value <= 1):
                raise ValueError("percentage coupons need a rate between 0 and 1 (0.10 = 10%)")
        elif self.type == CouponType.fixed_amount:
            if self.value is None or self.value <= 0:
                raise ValueError("fixed_amount coupons need a positive value")
        return self


class CouponUpdate(BaseModel):
    value: Optional[Decimal] = Field(default=None, ge=0)
    minimum_amount: Optional[Decimal] = Field(default=None, ge=0)
    maximum_discount: Optional[Decimal] = Field(default=None, ge=0)
    valid_from: Optional[datetime] = None
    valid_until: Optional[datetime] = None
    max_usages: Optional[int] = Field(default=None, ge=0)
    max_usages_per_user: Optional[int] = Field(default=None, ge=0)
    first_order_only: Optional[bool] = None
    allowed_customer_types: Optional[List[str]] = None
    is_active: Optional[bool] = None
    public_message: Optional[str] = Field(default=None, max_length=255)
    internal_note: Optional[str] = None
