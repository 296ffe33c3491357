from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import Column, JSON, UniqueConstraint
from sqlmodel import SQLModel, Field

from storefront.constants.coupon import CouponType


class Coupon(SQLModel, table=True):
    __table_args__ = (UniqueConstraint("site_id", "code", name="uq_coupon_site_code"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    site_id: int = Field(foreign_key="site.id", index=True)

    code: str = Field(index=True)  # stored upper-cased
    type: CouponType = CouponType.percentage
    # percentage coupons store a rate: 0.10 is 10%
    value: Optional[Decimal] = Field(default=None, max_digits=10, decimal_places=4)

    minimum_amount: Optional[Decimal] = Field(default=None, max_digits=10, decimal_places=2)
    maximum_discount: Optional[Decimal] = Field(default=None, max_digits=10, decimal_places=2)

    valid_from: Optional[datetime] = None
    valid_until: Optional[datetime] = None

    max_usages: Optional[int] = None
    max_usages_per_user: Optional[int] = None
    usage_count: int = Field(default=0)  # only ever incremented

    first_order_only: bool = False
    allowed_customer_types: Optional[List[str]] = Field(default=None, sa_column=Column(JSON))

    is_active: bool = True
    public_message: Optional[str] = None
    internal_note: Optional[str] = None

    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        now = now or datetime.utcnow()
        if self.valid_from and self.valid_from > now:
            return True
        if self.valid_until and self.valid_until < now:
            return True
        return False

    def is_exhausted(self) -> bool:
        if self.max_usages is None:
            return False
        return self.usage_count >= self.max_usages

    def offers_free_shipping(self) -> bool:
        return CouponType(self.type) == CouponType.free_shipping

    def remaining_usages(self) -> Optional[int]:
        if self.max_usages is None:
            return None
        return max(0, self.max_usages - self.usage_count)

    def description(self) -> str:
        if self.type == CouponType.percentage:
            return f"{Decimal(self.value or 0) * 100:.0f}% off"
        if self.type == CouponType.fixed_amount:
            return f"{Decimal(self.value or 0):.2f} off"
        return "Free shipping"

    def summary(self, now: Optional[datetime] = None) -> dict:
        return {
            "code": self.code,
            "type": CouponType(self.type).value,
            "description": self.description(),
            "public_message": self.public_message,
            "minimum_amount": self.minimum_amount,
            "max_usages_per_user": self.max_usages_per_user,
            "is_expired": self.is_expired(now),
            "is_exhausted": self.is_exhausted(),
            "remaining_usages": self.remaining_usages(),
            "valid_until": self.valid_until,
        }

    def terms_snapshot(self) -> dict:
        """Frozen copy of the coupon terms stored on an order."""
        def _num(v):
            return None if v is None else str(v)

        return {
            "id": self.id,
            "code": self.code,
            "type": CouponType(self.type).value,
            "value": _num(self.value),
            "minimum_amount": _num(self.minimum_amount),
            "maximum_discount": _num(self.maximum_discount),
            "description": self.description(),
        }
