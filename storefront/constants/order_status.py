"""
Order lifecycle.

Standard path:
    pending -> confirmed -> processing -> shipped -> delivered -> completed

Side exits: on_hold (problem needing action), cancelled, refunded,
failed (payment refused). completed, cancelled, refunded and failed are
terminal.
"""

from enum import Enum
from typing import FrozenSet


class OrderStatus(str, Enum):
    pending = "pending"
    confirmed = "confirmed"
    processing = "processing"
    shipped = "shipped"
    delivered = "delivered"
    completed = "completed"
    on_hold = "on_hold"
    cancelled = "cancelled"
    refunded = "refunded"
    failed = "failed"


ALLOWED_TRANSITIONS = {
    OrderStatus.pending: [OrderStatus.confirmed, OrderStatus.failed, OrderStatus.cancelled],
    OrderStatus.confirmed: [OrderStatus.processing, OrderStatus.on_hold, OrderStatus.cancelled],
    OrderStatus.processing: [OrderStatus.shipped, OrderStatus.on_hold, OrderStatus.cancelled],
    OrderStatus.shipped: [OrderStatus.delivered, OrderStatus.on_hold],
    OrderStatus.delivered: [OrderStatus.completed, OrderStatus.refunded],
    OrderStatus.on_hold: [OrderStatus.processing, OrderStatus.cancelled, OrderStatus.refunded],
    OrderStatus.completed: [],
    OrderStatus.cancelled: [],
    OrderStatus.refunded: [],
    OrderStatus.failed: [],
}

FINAL_STATUSES: FrozenSet[OrderStatus] = frozenset(
    s for s, targets in ALLOWED_TRANSITIONS.items() if not targets
)

CANCELLABLE_STATUSES: FrozenSet[OrderStatus] = frozenset(
    s for s, targets in ALLOWED_TRANSITIONS.items() if OrderStatus.cancelled in targets
)

REFUNDABLE_STATUSES: FrozenSet[OrderStatus] = frozenset(
    s for s, targets in ALLOWED_TRANSITIONS.items() if OrderStatus.refunded in targets
)

# statuses in which the ordered quantities are held out of stock
STOCK_HOLDING_STATUSES = frozenset({
    OrderStatus.confirmed,
    OrderStatus.processing,
    OrderStatus.shipped,
    OrderStatus.delivered,
    OrderStatus.completed,
    OrderStatus.on_hold,
})

STOCK_RESTORING_STATUSES = frozenset({OrderStatus.cancelled, OrderStatus.refunded})

PAID_STATUSES = frozenset({
    OrderStatus.confirmed,
    OrderStatus.processing,
    OrderStatus.shipped,
    OrderStatus.delivered,
    OrderStatus.completed,
    OrderStatus.refunded,
})

ACTIVE_STATUSES = frozenset({
    OrderStatus.pending,
    OrderStatus.confirmed,
    OrderStatus.processing,
    OrderStatus.shipped,
    OrderStatus.on_hold,
})

CUSTOMER_NOTIFICATIONS = {
    OrderStatus.confirmed: "Your order has been confirmed and will be prepared shortly.",
    OrderStatus.shipped: "Your order has been shipped.",
    OrderStatus.delivered: "Your order has been delivered. Thank you for shopping with us!",
    OrderStatus.cancelled: "Your order has been cancelled.",
    OrderStatus.refunded: "Your order has been refunded.",
    OrderStatus.on_hold: "Your order needs your attention.",
}

LABELS = {
    OrderStatus.pending: "Awaiting payment",
    OrderStatus.confirmed: "Confirmed",
    OrderStatus.processing: "Being prepared",
    OrderStatus.shipped: "Shipped",
    OrderStatus.delivered: "Delivered",
    OrderStatus.completed: "Completed",
    OrderStatus.on_hold: "On hold",
    OrderStatus.cancelled: "Cancelled",
    OrderStatus.refunded: "Refunded",
    OrderStatus.failed: "Payment failed",
}


def allowed_transitions(status) -> list:
    return list(ALLOWED_TRANSITIONS[OrderStatus(status)])


def can_transition_to(current, target) -> bool:
    """True when ``target`` is a legal next status for ``current``."""
    try:
        current, target = OrderStatus(current), OrderStatus(target)
    except ValueError:
        return False
    return target in ALLOWED_TRANSITIONS[current]


def is_final(status) -> bool:
    return OrderStatus(status) in FINAL_STATUSES


def is_cancellable(status) -> bool:
    return OrderStatus(status) in CANCELLABLE_STATUSES


def is_refundable(status) -> bool:
    return OrderStatus(status) in REFUNDABLE_STATUSES


def holds_stock(status) -> bool:
    return status is not None and OrderStatus(status) in STOCK_HOLDING_STATUSES


def should_decrement_stock(previous, target) -> bool:
    """Entering a stock-holding status from one that holds nothing."""
    return holds_stock(target) and not holds_stock(previous)


def should_restore_stock(status, previous=None) -> bool:
    if OrderStatus(status) not in STOCK_RESTORING_STATUSES:
        return False
    return previous is None or holds_stock(previous)


def should_notify_customer(status) -> bool:
    return OrderStatus(status) in CUSTOMER_NOTIFICATIONS


def label(status) -> str:
    return LABELS[OrderStatus(status)]
