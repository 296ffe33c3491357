import logging
from datetime import date, datetime, time
from typing import List, Optional

from sqlalchemy import String, cast, func, or_
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from storefront.constants.order_status import ACTIVE_STATUSES, OrderStatus, PAID_STATUSES, label
from storefront.exceptions import BusinessRuleError, CouponNotEligible, EntityNotFound
from storefront.models.cart import Cart, CartStatus
from storefront.models.coupon import Coupon
from storefront.models.order import Order
from storefront.models.order_item import OrderItem
from storefront.models.product import Product
from storefront.models.user import CustomerType, User
from storefront.services.cart_service import archive_cart
from storefront.services.coupon_service import evaluate_for_cart, increment_coupon_usage
from storefront.services.order_status_service import log_status_change
from storefront.services.pricing import cart_lines, price_lines
from storefront.utils.money import ZERO, to_money
from storefront.utils.pagination import paginate

logger = logging.getLogger(__name__)

REFERENCE_SEQUENCE_DIGITS = 5
REFERENCE_ATTEMPTS = 10


def generate_order_reference(session: Session, now: Optional[datetime] = None) -> str:
    """Next ``YYYY-MM-NNNNN`` reference; the sequence restarts every month."""
    now = now or datetime.utcnow()
    prefix = now.strftime("%Y-%m-")

    last_reference = session.exec(
        select(Order.reference)
        .where(Order.reference.like(f"{prefix}%"))
        .order_by(Order.reference.desc())
    ).first()

    sequence = int(last_reference[len(prefix):]) + 1 if last_reference else 1

    for _ in range(REFERENCE_ATTEMPTS):
        reference = f"{prefix}{sequence:0{REFERENCE_SEQUENCE_DIGITS}d}"
        taken = session.exec(select(Order.id).where(Order.reference == reference)).first()
        if not taken:
            return reference
        sequence += 1

    raise BusinessRuleError(
        "order_reference_unavailable",
        "Could not allocate an order reference, please retry.",
        {"prefix": prefix},
    )


def _customer_snapshot(user: Optional[User], shipping_address: dict) -> dict:
    if user is None:
        return {
            "guest": True,
            "email": shipping_address.get("email"),
            "first_name": shipping_address.get("first_name"),
            "last_name": shipping_address.get("last_name"),
        }
    return {
        "guest": False,
        "id": user.id,
        "email": user.email,
        "first_name": user.first_name,
        "last_name": user.last_name,
        "customer_type": CustomerType(user.customer_type).value,
    }


def _check_cart_products(session: Session, cart: Cart) -> List[Product]:
    products = []
    for item in cart.items:
        product = session.get(Product, item.product_id)
        if not product or product.site_id != cart.site_id or not product.is_active:
            raise EntityNotFound("product", id=item.product_id)

        if not product.has_stock(item.quantity):
            raise BusinessRuleError(
                "insufficient_stock",
                f"Insufficient stock for {product.name}. Available: {product.stock}, Requested: {item.quantity}",
                {"product_id": product.id, "available": product.stock, "requested": item.quantity},
            )
        products.append(product)
    return products


def _place_order(
    session: Session,
    cart: Cart,
    user: Optional[User],
    products: List[Product],
    coupon: Optional[Coupon],
    snapshot,
    shipping_address: dict,
    billing_address: Optional[dict],
    customer_message: Optional[str],
    meta: Optional[dict],
) -> Order:
    applied_coupon = None
    if coupon is not None:
        increment_coupon_usage(session, coupon)
        applied_coupon = {
            **coupon.terms_snapshot(),
            "discount": str(snapshot.discount),
            "free_shipping": snapshot.free_shipping,
        }

    order = Order(
        reference=generate_order_reference(session),
        site_id=cart.site_id,
        user_id=cart.user_id,
        status=OrderStatus.pending,
        currency=cart.currency,
        customer_type=cart.customer_type,
        subtotal=snapshot.subtotal,
        discount_amount=snapshot.discount,
        tax_rate=snapshot.tax_rate,
        tax_amount=snapshot.tax,
        shipping_cost=snapshot.shipping,
        grand_total=snapshot.grand_total,
        coupon_id=coupon.id if coupon is not None else None,
        applied_coupon=applied_coupon,
        shipping_address=shipping_address,
        billing_address=billing_address or shipping_address,
        customer_snapshot=_customer_snapshot(user, shipping_address),
        customer_message=customer_message,
        meta=meta,
    )
    session.add(order)
    session.flush()

    for line, product in zip(snapshot.lines, products):
        session.add(
            OrderItem(
                order_id=order.id,
                product_id=product.id,
                product_name=line.product_name,
                sku=product.sku,
                unit_price=to_money(line.unit_price),
                quantity=line.quantity,
                line_total=line.line_total,
            )
        )

    archive_cart(session, cart)
    log_status_change(
        session,
        order,
        None,
        OrderStatus.pending,
        changed_by=user,
        changed_by_type="customer" if user is not None else "system",
        reason="Order placed",
    )
    return order


def create_order_from_cart(
    session: Session,
    cart: Cart,
    shipping_address: dict,
    billing_address: Optional[dict] = None,
    customer_message: Optional[str] = None,
    meta: Optional[dict] = None,
) -> Order:
    if cart.status != CartStatus.active:
        raise BusinessRuleError("cart_not_active", "This cart has already been checked out.")

    if cart.is_empty():
        raise BusinessRuleError("cart_empty", "Your cart is empty.")

    products = _check_cart_products(session, cart)
    user = session.get(User, cart.user_id) if cart.user_id else None

    coupon = None
    if cart.coupon_id:
        coupon = session.get(Coupon, cart.coupon_id)
        evaluation = evaluate_for_cart(session, cart, coupon, user)
        if not evaluation.eligible:
            logger.info(f"Checkout of cart {cart.id} aborted, coupon rejected: {[r.value for r in evaluation.reasons]}")
            raise CouponNotEligible(evaluation.reasons, coupon.code if coupon else None)

    snapshot = price_lines(
        cart_lines(cart),
        CustomerType(cart.customer_type).value,
        coupon=coupon,
    )

    for attempt in range(1, REFERENCE_ATTEMPTS + 1):
        try:
            order = _place_order(
                session, cart, user, products, coupon, snapshot,
                shipping_address, billing_address, customer_message, meta,
            )
            session.commit()
            break

        except IntegrityError as e:
            # a concurrent checkout took the same reference
            session.rollback()
            logger.warning(f"Checkout of cart {cart.id} collided on insert (attempt {attempt}): {e}")
            if attempt == REFERENCE_ATTEMPTS:
                raise BusinessRuleError(
                    "order_reference_unavailable",
                    "Could not allocate an order reference, please retry.",
                )

        except Exception as e:
            logger.error(f"Checkout of cart {cart.id} failed: {e}")
            session.rollback()
            raise

    session.refresh(order)
    logger.info(f"Order {order.reference} created from cart {cart.id}, total {order.grand_total}")
    return order


# ---------- lookups ----------

def get_order(session: Session, site_id: int, order_id: int, user: Optional[User] = None) -> Order:
    """Order by id, restricted to ``user``'s own orders when a user is given."""
    order = session.get(Order, order_id)
    if not order or order.site_id != site_id:
        raise EntityNotFound("order", id=order_id)
    if user is not None and order.user_id != user.id:
        raise EntityNotFound("order", id=order_id)
    return order


def find_by_reference(session: Session, site_id: int, reference: str) -> Order:
    order = session.exec(
        select(Order).where(Order.site_id == site_id, Order.reference == reference)
    ).first()
    if not order:
        raise EntityNotFound("order", reference=reference)
    return order


def list_user_orders(session: Session, site_id: int, user: User, page: int = 1, limit: int = 10) -> dict:
    query = (
        select(Order)
        .where(Order.site_id == site_id, Order.user_id == user.id)
        .order_by(Order.created_at.desc())
    )
    return paginate(session=session, query=query, page=page, limit=limit)


def _day_bounds(start_date: Optional[date], end_date: Optional[date]):
    start = datetime.combine(start_date, time.min) if start_date else None
    end = datetime.combine(end_date, time.max) if end_date else None
    return start, end


def list_orders(
    session: Session,
    site_id: int,
    page: int = 1,
    limit: int = 10,
    search: Optional[str] = None,
    status: Optional[OrderStatus] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
) -> dict:
    query = select(Order).where(Order.site_id == site_id)

    if search:
        query = query.where(
            or_(
                Order.reference.ilike(f"%{search}%"),
                cast(Order.customer_snapshot, String).ilike(f"%{search}%"),
            )
        )

    if status:
        query = query.where(Order.status == status)

    start, end = _day_bounds(start_date, end_date)
    if start:
        query = query.where(Order.created_at >= start)
    if end:
        query = query.where(Order.created_at <= end)

    return paginate(
        session=session,
        query=query.order_by(Order.created_at.desc()),
        page=page,
        limit=limit,
    )


# ---------- statistics ----------

def order_statistics(
    session: Session,
    site_id: int,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
) -> dict:
    filters = [Order.site_id == site_id]
    start, end = _day_bounds(start_date, end_date)
    if start:
        filters.append(Order.created_at >= start)
    if end:
        filters.append(Order.created_at <= end)

    rows = session.exec(
        select(Order.status, func.count(Order.id), func.sum(Order.grand_total))
        .where(*filters)
        .group_by(Order.status)
    ).all()

    distribution = {s.value: 0 for s in OrderStatus}
    total_orders = 0
    paid_orders = 0
    active_orders = 0
    revenue = ZERO

    for status, count, amount in rows:
        status = OrderStatus(status)
        distribution[status.value] = count
        total_orders += count
        if status in ACTIVE_STATUSES:
            active_orders += count
        if status in PAID_STATUSES:
            paid_orders += count
            revenue += to_money(amount)

    return {
        "total_orders": total_orders,
        "paid_orders": paid_orders,
        "active_orders": active_orders,
        "revenue": to_money(revenue),
        "average_order_value": to_money(revenue / paid_orders) if paid_orders else ZERO,
        "status_distribution": distribution,
        "start_date": start_date,
        "end_date": end_date,
    }


# ---------- serialization ----------

def order_to_dict(order: Order, with_items: bool = True) -> dict:
    data = {
        "order_id": order.id,
        "reference": order.reference,
        "status": OrderStatus(order.status).value,
        "status_label": label(order.status),
        "is_paid": order.is_paid,
        "currency": order.currency,
        "customer_type": CustomerType(order.customer_type).value,
        "subtotal": order.subtotal,
        "discount": order.discount_amount,
        "tax_rate": order.tax_rate,
        "tax": order.tax_amount,
        "shipping": order.shipping_cost,
        "total": order.grand_total,
        "applied_coupon": order.applied_coupon,
        "customer": order.customer_snapshot,
        "shipping_address": order.shipping_address,
        "billing_address": order.billing_address,
        "customer_message": order.customer_message,
        "created_at": order.created_at,
        "validated_at": order.validated_at,
        "status_changed_at": order.status_changed_at,
    }
    if with_items:
        data["items"] = [
            {
                "product_id": i.product_id,
                "product_name": i.product_name,
                "sku": i.sku,
                "unit_price": i.unit_price,
                "quantity": i.quantity,
                "line_total": i.line_total,
            }
            for i in order.items
        ]
    return data
