from sqlmodel import SQLModel, Field, Relationship
from typing import List, Optional
from datetime import datetime
from decimal import Decimal
from enum import Enum

from storefront.models.user import CustomerType


class CartStatus(str, Enum):
    active = "active"
    locked = "locked"      # during payment
    archived = "archived"  # converted into an order


class Cart(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    site_id: int = Field(foreign_key="site.id", index=True)
    user_id: Optional[int] = Field(default=None, foreign_key="user.id", index=True)
    session_token: Optional[str] = Field(default=None, index=True)

    status: CartStatus = CartStatus.active
    customer_type: CustomerType = CustomerType.b2c
    currency: str = Field(default="EUR")

    coupon_id: Optional[int] = Field(default=None, foreign_key="coupon.id")

    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    items: List["CartItem"] = Relationship(back_populates="cart")

    def is_empty(self) -> bool:
        return not self.items

    def touch(self):
        self.updated_at = datetime.utcnow()


class CartItem(SQLModel, table=True):
    __tablename__ = "cart_item"

    id: Optional[int] = Field(default=None, primary_key=True)
    cart_id: int = Field(foreign_key="cart.id", index=True)
    product_id: int = Field(foreign_key="product.id")

    product_name: str
    unit_price: Decimal = Field(max_digits=10, decimal_places=2)
    quantity: int = 1
    created_at: datetime = Field(default_factory=datetime.utcnow)

    cart: Optional[Cart] = Relationship(back_populates="items")
