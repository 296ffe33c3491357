from sqlmodel import SQLModel, Field, Relationship
from sqlalchemy import Column, JSON, event
from sqlalchemy.orm import Session
from typing import List, Optional
from datetime import datetime
from decimal import Decimal

from storefront.constants.order_status import OrderStatus, PAID_STATUSES
from storefront.exceptions import AuditTrailImmutable, OrderDeletionProhibited
from storefront.models.order_item import OrderItem
from storefront.models.order_status_history import OrderStatusHistory
from storefront.models.user import CustomerType, User


class Order(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    reference: str = Field(index=True, unique=True, max_length=20)  # YYYY-MM-NNNNN

    site_id: int = Field(foreign_key="site.id", index=True)
    user_id: Optional[int] = Field(default=None, foreign_key="user.id", index=True)

    # only written through services.order_status_service
    status: OrderStatus = Field(default=OrderStatus.pending, index=True)
    currency: str = Field(default="EUR")
    customer_type: CustomerType = CustomerType.b2c

    # frozen totals
    subtotal: Decimal = Field(default=Decimal("0"), max_digits=10, decimal_places=2)
    discount_amount: Decimal = Field(default=Decimal("0"), max_digits=10, decimal_places=2)
    tax_rate: Decimal = Field(default=Decimal("0"), max_digits=5, decimal_places=2)
    tax_amount: Decimal = Field(default=Decimal("0"), max_digits=10, decimal_places=2)
    shipping_cost: Decimal = Field(default=Decimal("0"), max_digits=10, decimal_places=2)
    grand_total: Decimal = Field(default=Decimal("0"), max_digits=10, decimal_places=2)

    coupon_id: Optional[int] = Field(default=None, foreign_key="coupon.id", index=True)
    applied_coupon: Optional[dict] = Field(default=None, sa_column=Column(JSON))

    shipping_address: dict = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))
    billing_address: dict = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))
    customer_snapshot: dict = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))
    customer_message: Optional[str] = None
    meta: Optional[dict] = Field(default=None, sa_column=Column(JSON))

    created_at: datetime = Field(default_factory=datetime.utcnow, index=True)
    updated_at: datetime = Field(default_factory=datetime.utcnow)
    validated_at: Optional[datetime] = None
    status_changed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None

    # relationships
    user: Optional["User"] = Relationship()
    items: List["OrderItem"] = Relationship(back_populates="order")
    status_history: List["OrderStatusHistory"] = Relationship(
        back_populates="order",
        sa_relationship_kwargs={"order_by": "OrderStatusHistory.created_at"},
    )

    @property
    def is_paid(self) -> bool:
        return OrderStatus(self.status) in PAID_STATUSES

    @property
    def is_guest_order(self) -> bool:
        return self.user_id is None


# orders and their status history are kept for audit
@event.listens_for(Session, "before_flush")
def _forbid_order_delete(session, flush_context, instances):
    for target in session.deleted:
        if isinstance(target, Order):
            raise OrderDeletionProhibited(
                f"Order {target.reference} cannot be deleted",
                {"reference": target.reference},
            )
        if isinstance(target, OrderStatusHistory):
            raise AuditTrailImmutable(
                "Order status history is append-only",
                {"history_id": target.id},
            )
