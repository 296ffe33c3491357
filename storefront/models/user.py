from enum import Enum
from sqlmodel import SQLModel, Field
from typing import Optional
from datetime import datetime


class CustomerType(str, Enum):
    b2c = "B2C"
    b2b = "B2B"


class User(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    site_id: int = Field(foreign_key="site.id", index=True)
    first_name: str
    last_name: str
    email: str = Field(index=True)
    phone: Optional[str] = None
    role: str = Field(default="user")
    customer_type: CustomerType = CustomerType.b2c
    can_login: bool = Field(default=True)
    created_at: datetime = Field(default_factory=datetime.utcnow)
