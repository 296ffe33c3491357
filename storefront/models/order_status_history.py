from datetime import datetime
from typing import Optional, TYPE_CHECKING
from uuid import uuid4

from sqlmodel import SQLModel, Field, Relationship
from sqlalchemy import Column, JSON, event

from storefront.constants.order_status import OrderStatus
from storefront.exceptions import AuditTrailImmutable

if TYPE_CHECKING:
    from storefront.models.order import Order


ACTOR_TYPES = ("system", "customer", "admin")


class OrderStatusHistory(SQLModel, table=True):
    __tablename__ = "order_status_history"
    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)

    order_id: int = Field(foreign_key="order.id", index=True)
    from_status: Optional[OrderStatus] = None  # None for the creation record
    to_status: OrderStatus = Field(index=True)

    changed_by_id: Optional[int] = Field(default=None, foreign_key="user.id")
    changed_by_type: str = Field(default="system")
    reason: Optional[str] = Field(default=None, max_length=1000)
    meta: Optional[dict] = Field(default=None, sa_column=Column(JSON))

    created_at: datetime = Field(default_factory=datetime.utcnow, index=True)

    order: Optional["Order"] = Relationship(back_populates="status_history")


# append-only audit trail
@event.listens_for(OrderStatusHistory, "before_update")
def _forbid_history_update(mapper, connection, target):
    raise AuditTrailImmutable(
        "Order status history is append-only",
        {"history_id": target.id},
    )

