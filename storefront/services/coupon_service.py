"""
Coupon eligibility and application.

``evaluate_coupon`` is the pure rules engine: given a priced cart, a coupon
and the customer it returns every failing check (no short-circuit) or the
discount granted. The remaining functions are the persistence boundary
around it and the cart-level operations the routes expose.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import func, or_, update
from sqlmodel import Session, select

from storefront.constants.coupon import CouponRejection, CouponType, REJECTION_MESSAGES
from storefront.constants.order_status import OrderStatus
from storefront.exceptions import BusinessRuleError, CouponNotEligible, EntityNotFound
from storefront.models.cart import Cart
from storefront.models.coupon import Coupon
from storefront.models.order import Order
from storefront.models.user import CustomerType, User
from storefront.schemas.coupon_schemas import CouponCreate, CouponUpdate
from storefront.services.pricing import CartSnapshot, cart_lines, compute_discount, price_lines
from storefront.utils.money import ZERO

logger = logging.getLogger(__name__)

# orders that never went through do not consume a coupon use
NON_CONSUMING_STATUSES = (OrderStatus.cancelled, OrderStatus.failed)


@dataclass
class CouponEvaluation:
    code: Optional[str]
    reasons: List[CouponRejection] = field(default_factory=list)
    discount: Decimal = ZERO
    free_shipping: bool = False
    checks: dict = field(default_factory=dict)

    @property
    def eligible(self) -> bool:
        return not self.reasons

    @property
    def messages(self) -> List[str]:
        return [REJECTION_MESSAGES[r] for r in self.reasons]


def evaluate_coupon(
    cart: CartSnapshot,
    coupon: Optional[Coupon],
    user: Optional[User] = None,
    *,
    user_usages: int = 0,
    previous_orders: int = 0,
    now: Optional[datetime] = None,
) -> CouponEvaluation:
    if coupon is None or not coupon.is_active:
        # only the cart-level checks can still be run
        reasons = [CouponRejection.not_found]
        if cart.is_empty:
            reasons.append(CouponRejection.cart_empty)
        return CouponEvaluation(
            code=coupon.code if coupon is not None else None,
            reasons=reasons,
            checks={"exists": False, "cart_not_empty": not cart.is_empty, "cart_subtotal": cart.subtotal},
        )

    now = now or datetime.utcnow()
    allowed_types = coupon.allowed_customer_types or []

    checks = {
        "exists": True,
        "is_expired": coupon.is_expired(now),
        "is_exhausted": coupon.is_exhausted(),
        "cart_not_empty": not cart.is_empty,
        "meets_minimum": coupon.minimum_amount is None
        or cart.subtotal >= Decimal(coupon.minimum_amount),
        "minimum_amount": coupon.minimum_amount,
        "cart_subtotal": cart.subtotal,
        "customer_type_allowed": not allowed_types or cart.customer_type in allowed_types,
    }
    if user is not None:
        checks["user_usages"] = user_usages
        checks["can_user_use"] = (
            coupon.max_usages_per_user is None or user_usages < coupon.max_usages_per_user
        )
        checks["first_order_ok"] = not coupon.first_order_only or previous_orders == 0

    failed = {
        CouponRejection.expired: checks["is_expired"],
        CouponRejection.exhausted: checks["is_exhausted"],
        CouponRejection.cart_empty: not checks["cart_not_empty"],
        CouponRejection.minimum_amount_not_met: not checks["meets_minimum"],
        CouponRejection.customer_type_not_allowed: not checks["customer_type_allowed"],
        CouponRejection.user_limit_reached: not checks.get("can_user_use", True),
        CouponRejection.first_order_only: not checks.get("first_order_ok", True),
    }
    reasons = [reason for reason in CouponRejection if failed.get(reason)]

    evaluation = CouponEvaluation(code=coupon.code, reasons=reasons, checks=checks)
    if evaluation.eligible:
        evaluation.discount = compute_discount(coupon, cart.subtotal)
        evaluation.free_shipping = coupon.offers_free_shipping()
    return evaluation


# ---------- persistence boundary ----------

def find_coupon_by_code(session: Session, site_id: int, code: str) -> Optional[Coupon]:
    return session.exec(
        select(Coupon).where(
            Coupon.site_id == site_id,
            func.upper(Coupon.code) == code.strip().upper(),
        )
    ).first()


def get_coupon(session: Session, site_id: int, coupon_id: int) -> Coupon:
    coupon = session.get(Coupon, coupon_id)
    if not coupon or coupon.site_id != site_id:
        raise EntityNotFound("coupon", id=coupon_id)
    return coupon


def count_user_coupon_usages(session: Session, coupon_id: int, user_id: int) -> int:
    return session.exec(
        select(func.count()).select_from(Order).where(
            Order.coupon_id == coupon_id,
            Order.user_id == user_id,
            Order.status.not_in(NON_CONSUMING_STATUSES),
        )
    ).one()


def count_previous_orders(session: Session, user_id: int) -> int:
    return session.exec(
        select(func.count()).select_from(Order).where(
            Order.user_id == user_id,
            Order.status.not_in(NON_CONSUMING_STATUSES),
        )
    ).one()


def increment_coupon_usage(session: Session, coupon: Coupon) -> None:
    """Consume one use of ``coupon`` with a single conditional UPDATE.

    Two checkouts racing for the last use cannot both succeed: the row only
    changes while ``usage_count < max_usages`` holds in the database.
    """
    result = session.exec(
        update(Coupon)
        .where(
            Coupon.id == coupon.id,
            or_(Coupon.max_usages.is_(None), Coupon.usage_count < Coupon.max_usages),
        )
        .values(usage_count=Coupon.usage_count + 1)
        .execution_options(synchronize_session=False)
    )

    if result.rowcount == 0:
        logger.warning(f"Coupon {coupon.code} exhausted during checkout")
        raise CouponNotEligible([CouponRejection.exhausted], coupon.code)

    session.refresh(coupon)
    logger.info(f"Coupon {coupon.code} usage count is now {coupon.usage_count}")


# ---------- cart level ----------

def evaluate_for_cart(
    session: Session,
    cart: Cart,
    coupon: Optional[Coupon],
    user: Optional[User] = None,
    now: Optional[datetime] = None,
) -> CouponEvaluation:
    snapshot = price_lines(cart_lines(cart), CustomerType(cart.customer_type).value)
    user_usages = previous_orders = 0
    if user is not None and coupon is not None:
        user_usages = count_user_coupon_usages(session, coupon.id, user.id)
        previous_orders = count_previous_orders(session, user.id)

    return evaluate_coupon(
        snapshot,
        coupon,
        user,
        user_usages=user_usages,
        previous_orders=previous_orders,
        now=now,
    )


def apply_to_cart(session: Session, cart: Cart, code: str, user: Optional[User] = None):
    coupon = find_coupon_by_code(session, cart.site_id, code)

    if coupon is not None and cart.coupon_id == coupon.id:
        raise BusinessRuleError(
            "coupon_already_applied",
            "This coupon code is already applied to your cart.",
            {"code": coupon.code},
        )

    evaluation = evaluate_for_cart(session, cart, coupon, user)
    if not evaluation.eligible:
        logger.info(f"Coupon {code} rejected for cart {cart.id}: {[r.value for r in evaluation.reasons]}")
        raise CouponNotEligible(evaluation.reasons, code.strip().upper())

    cart.coupon_id = coupon.id
    cart.touch()
    session.add(cart)
    session.commit()
    session.refresh(cart)

    logger.info(f"Coupon {coupon.code} applied to cart {cart.id}, discount {evaluation.discount}")
    return coupon, evaluation


def remove_from_cart(session: Session, cart: Cart) -> Cart:
    if cart.coupon_id is None:
        raise BusinessRuleError("no_coupon_applied", "No coupon code is applied to this cart.")

    cart.coupon_id = None
    cart.touch()
    session.add(cart)
    session.commit()
    session.refresh(cart)
    return cart


def validate_coupon(session: Session, cart: Cart, code: str, user: Optional[User] = None) -> dict:
    """Full eligibility report; never raises for an ineligible coupon."""
    coupon = find_coupon_by_code(session, cart.site_id, code)
    evaluation = evaluate_for_cart(session, cart, coupon, user)

    if evaluation.eligible:
        message = f"You will save {evaluation.discount} with this coupon code."
        if evaluation.free_shipping:
            message = "Shipping is free with this coupon code."
    else:
        message = " ".join(evaluation.messages)

    return {
        "valid": evaluation.eligible,
        "coupon": coupon.summary() if coupon is not None and coupon.is_active else None,
        "checks": evaluation.checks,
        "reasons": [r.value for r in evaluation.reasons],
        "discount": evaluation.discount,
        "free_shipping": evaluation.free_shipping,
        "message": message,
    }


# ---------- admin ----------

def _check_coupon_terms(coupon: Coupon, value, valid_from, valid_until) -> None:
    """Same rules as ``CouponCreate``, applied to a coupon after a partial update."""
    coupon_type = CouponType(coupon.type)
    if coupon_type == CouponType.percentage and (value is None or not (0 < value <= 1)):
        raise BusinessRuleError(
            "invalid_coupon_value",
            "Percentage coupons need a rate between 0 and 1 (0.10 = 10%).",
            {"code": coupon.code, "value": str(value)},
        )
    if coupon_type == CouponType.fixed_amount and (value is None or value <= 0):
        raise BusinessRuleError(
            "invalid_coupon_value",
            "Fixed amount coupons need a positive value.",
            {"code": coupon.code, "value": str(value)},
        )

    if valid_from and valid_until and valid_until < valid_from:
        raise BusinessRuleError(
            "invalid_validity_window",
            "valid_until must be after valid_from.",
            {"code": coupon.code},
        )


def create_coupon(session: Session, site_id: int, data: CouponCreate) -> Coupon:
    if find_coupon_by_code(session, site_id, data.code):
        raise BusinessRuleError("coupon_code_taken", f"Coupon code {data.code} already exists.")

    coupon = Coupon(site_id=site_id, **data.model_dump())
    session.add(coupon)
    session.commit()
    session.refresh(coupon)

    logger.info(f"Coupon {coupon.code} created for site {site_id}")
    return coupon


def update_coupon(session: Session, site_id: int, coupon_id: int, data: CouponUpdate) -> Coupon:
    coupon = get_coupon(session, site_id, coupon_id)
    changes = data.model_dump(exclude_unset=True)

    max_usages = changes.get("max_usages", coupon.max_usages)
    if max_usages is not None and max_usages < coupon.usage_count:
        raise BusinessRuleError(
            "max_usages_below_usage_count",
            f"Coupon {coupon.code} has already been used {coupon.usage_count} times.",
        )

    _check_coupon_terms(
        coupon,
        changes.get("value", coupon.value),
        changes.get("valid_from", coupon.valid_from),
        changes.get("valid_until", coupon.valid_until),
    )

    for key, value in changes.items():
        setattr(coupon, key, value)
    coupon.updated_at = datetime.utcnow()

    session.add(coupon)
    session.commit()
    session.refresh(coupon)
    return coupon


def list_active_coupons(session: Session, site_id: int, now: Optional[datetime] = None) -> List[Coupon]:
    now = now or datetime.utcnow()
    return session.exec(
        select(Coupon)
        .where(
            Coupon.site_id == site_id,
            Coupon.is_active == True,  # noqa: E712
            or_(Coupon.valid_from.is_(None), Coupon.valid_from <= now),
            or_(Coupon.valid_until.is_(None), Coupon.valid_until >= now),
            or_(Coupon.max_usages.is_(None), Coupon.usage_count < Coupon.max_usages),
        )
        .order_by(Coupon.code)
    ).all()


def list_most_used_coupons(session: Session, site_id: int, limit: int = 10) -> List[Coupon]:
    return session.exec(
        select(Coupon)
        .where(Coupon.site_id == site_id)
        .order_by(Coupon.usage_count.desc())
        .limit(limit)
    ).all()
