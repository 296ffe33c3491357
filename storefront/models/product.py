from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlmodel import SQLModel, Field


class Product(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    site_id: int = Field(foreign_key="site.id", index=True)

    sku: str = Field(index=True)
    name: str
    price: Decimal = Field(max_digits=10, decimal_places=2)
    stock: int = 0
    is_active: bool = True

    created_at: datetime = Field(default_factory=datetime.utcnow)

    def has_stock(self, quantity: int) -> bool:
        return self.stock >= quantity
