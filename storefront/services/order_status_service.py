"""
Every order status write goes through ``change_order_status``.

The transition table in ``storefront.constants.order_status`` is consulted
first; a rejected transition raises ``InvalidStatusTransition`` and leaves
the order and its history untouched. An accepted one applies the stock side
effects, stamps the order and appends one ``OrderStatusHistory`` row.
"""

import logging
from datetime import datetime, timedelta
from decimal import Decimal
from typing import List, Optional

from sqlmodel import Session, select

from storefront.config import settings
from storefront.constants.order_status import (
    OrderStatus,
    can_transition_to,
    is_cancellable,
    label,
    should_decrement_stock,
    should_notify_customer,
    should_restore_stock,
)
from storefront.exceptions import BusinessRuleError, InvalidStatusTransition
from storefront.models.order import Order
from storefront.models.order_status_history import ACTOR_TYPES, OrderStatusHistory
from storefront.models.user import User
from storefront.services.inventory_service import reduce_inventory, restock_order_items

logger = logging.getLogger(__name__)


def log_status_change(
    session: Session,
    order: Order,
    from_status: Optional[OrderStatus],
    to_status: OrderStatus,
    changed_by: Optional[User] = None,
    changed_by_type: str = "system",
    reason: Optional[str] = None,
    meta: Optional[dict] = None,
) -> OrderStatusHistory:
    """
    Append-only status timeline
    """
    if changed_by_type not in ACTOR_TYPES:
        raise ValueError(f"Unknown actor type {changed_by_type}")

    entry = OrderStatusHistory(
        order_id=order.id,
        from_status=from_status,
        to_status=to_status,
        changed_by_id=changed_by.id if changed_by is not None else None,
        changed_by_type=changed_by_type,
        reason=reason,
        meta=meta,
        created_at=datetime.utcnow(),
    )
    session.add(entry)
    return entry


def change_order_status(
    session: Session,
    order: Order,
    target,
    changed_by: Optional[User] = None,
    changed_by_type: str = "system",
    reason: Optional[str] = None,
    meta: Optional[dict] = None,
) -> Order:
    current = OrderStatus(order.status)

    if not can_transition_to(current, target):
        logger.warning(
            f"Order {order.reference}: rejected transition {current.value} -> {getattr(target, 'value', target)}"
        )
        raise InvalidStatusTransition(current, target)

    target = OrderStatus(target)

    if should_decrement_stock(current, target):
        reduce_inventory(session, order)
    elif should_restore_stock(target, current):
        restock_order_items(session, order)

    now = datetime.utcnow()
    order.status = target
    order.status_changed_at = now
    order.updated_at = now

    if target == OrderStatus.confirmed and order.validated_at is None:
        order.validated_at = now
    elif target == OrderStatus.cancelled:
        order.cancelled_at = now
    elif target == OrderStatus.delivered:
        order.delivered_at = now

    session.add(order)
    log_status_change(session, order, current, target, changed_by, changed_by_type, reason, meta)
    session.commit()
    session.refresh(order)

    logger.info(f"Order {order.reference}: {current.value} -> {target.value} by {changed_by_type}")
    if should_notify_customer(target):
        logger.info(f"Order {order.reference}: customer to be notified ({label(target)})")

    return order


def confirm_payment(session: Session, order: Order, payment_reference: Optional[str] = None) -> Order:
    meta = {"payment_reference": payment_reference} if payment_reference else None
    return change_order_status(session, order, OrderStatus.confirmed, reason="Payment received", meta=meta)


def mark_as_processing(session: Session, order: Order, changed_by: Optional[User] = None) -> Order:
    actor = "admin" if changed_by is not None else "system"
    return change_order_status(session, order, OrderStatus.processing, changed_by, actor)


def mark_as_shipped(
    session: Session,
    order: Order,
    tracking_number: Optional[str] = None,
    carrier: Optional[str] = None,
    changed_by: Optional[User] = None,
) -> Order:
    shipping = {"tracking_number": tracking_number, "carrier": carrier}
    if can_transition_to(order.status, OrderStatus.shipped):
        # JSON columns only notice reassignment
        order.meta = {**(order.meta or {}), "shipping": shipping}

    actor = "admin" if changed_by is not None else "system"
    return change_order_status(session, order, OrderStatus.shipped, changed_by, actor, meta=shipping)


def mark_as_delivered(session: Session, order: Order, changed_by: Optional[User] = None) -> Order:
    actor = "admin" if changed_by is not None else "system"
    return change_order_status(session, order, OrderStatus.delivered, changed_by, actor)


def complete_order(session: Session, order: Order, changed_by: Optional[User] = None) -> Order:
    actor = "admin" if changed_by is not None else "system"
    return change_order_status(session, order, OrderStatus.completed, changed_by, actor)


def cancel_order(
    session: Session,
    order: Order,
    changed_by: Optional[User] = None,
    changed_by_type: str = "customer",
    reason: Optional[str] = None,
) -> Order:
    if not is_cancellable(order.status):
        raise BusinessRuleError(
            "order_not_cancellable",
            f"Order {order.reference} can no longer be cancelled.",
            {"reference": order.reference, "status": OrderStatus(order.status).value},
        )
    return change_order_status(session, order, OrderStatus.cancelled, changed_by, changed_by_type, reason)


def refund_order(
    session: Session,
    order: Order,
    changed_by: Optional[User] = None,
    reason: Optional[str] = None,
    amount=None,
) -> Order:
    if not can_transition_to(order.status, OrderStatus.refunded):
        raise BusinessRuleError(
            "order_not_refundable",
            f"Order {order.reference} cannot be refunded.",
            {"reference": order.reference, "status": OrderStatus(order.status).value},
        )

    if amount is not None and Decimal(amount) > Decimal(order.grand_total):
        raise BusinessRuleError(
            "refund_exceeds_total",
            f"Refund of {amount} exceeds the order total of {order.grand_total}.",
            {"reference": order.reference, "amount": str(amount), "grand_total": str(order.grand_total)},
        )

    meta = {"amount": str(amount if amount is not None else order.grand_total)}
    return change_order_status(session, order, OrderStatus.refunded, changed_by, "admin", reason, meta)


def put_on_hold(session: Session, order: Order, reason: str, changed_by: Optional[User] = None) -> Order:
    actor = "admin" if changed_by is not None else "system"
    return change_order_status(session, order, OrderStatus.on_hold, changed_by, actor, reason)


def mark_as_failed(session: Session, order: Order, reason: Optional[str] = None) -> Order:
    return change_order_status(session, order, OrderStatus.failed, reason=reason or "Payment refused")


def expire_pending_orders(session: Session, now: Optional[datetime] = None) -> List[Order]:
    """Cancel pending orders left unpaid for ``pending_order_expiry_days``."""
    now = now or datetime.utcnow()
    cutoff = now - timedelta(days=settings.pending_order_expiry_days)

    orders = session.exec(
        select(Order)
        .where(Order.status == OrderStatus.pending)
        .where(Order.created_at < cutoff)
    ).all()

    for order in orders:
        change_order_status(
            session,
            order,
            OrderStatus.cancelled,
            reason=f"Payment not received within {settings.pending_order_expiry_days} days",
        )

    logger.info(f"Expired {len(orders)} unpaid orders")
    return list(orders)


def get_status_history(session: Session, order: Order) -> List[OrderStatusHistory]:
    return session.exec(
        select(OrderStatusHistory)
        .where(OrderStatusHistory.order_id == order.id)
        .order_by(OrderStatusHistory.created_at)
    ).all()
