import logging
from datetime import datetime
from typing import Optional, Tuple
from uuid import uuid4

from sqlmodel import Session, select

from storefront.exceptions import BusinessRuleError, EntityNotFound
from storefront.models.cart import Cart, CartItem, CartStatus
from storefront.models.coupon import Coupon
from storefront.models.product import Product
from storefront.models.site import Site
from storefront.models.user import CustomerType, User
from storefront.services.coupon_service import CouponEvaluation, evaluate_for_cart
from storefront.services.pricing import CartSnapshot, cart_lines, price_lines

logger = logging.getLogger(__name__)


def get_or_create_cart(
    session: Session,
    site: Site,
    user: Optional[User] = None,
    session_token: Optional[str] = None,
) -> Cart:
    """Active cart of the user (or of the guest token) on ``site``."""
    query = select(Cart).where(Cart.site_id == site.id, Cart.status == CartStatus.active)

    if user is not None:
        query = query.where(Cart.user_id == user.id)
    elif session_token:
        query = query.where(Cart.user_id == None, Cart.session_token == session_token)  # noqa: E711
    else:
        query = None

    cart = session.exec(query.order_by(Cart.id.desc())).first() if query is not None else None
    if cart:
        return cart

    cart = Cart(
        site_id=site.id,
        user_id=user.id if user is not None else None,
        session_token=None if user is not None else (session_token or uuid4().hex),
        customer_type=user.customer_type if user is not None else CustomerType.b2c,
        currency=site.currency,
    )
    session.add(cart)
    session.commit()
    session.refresh(cart)
    return cart


def _ensure_active(cart: Cart):
    if cart.status != CartStatus.active:
        raise BusinessRuleError("cart_not_active", "This cart can no longer be modified.")


def _get_product(session: Session, site_id: int, product_id: int) -> Product:
    product = session.get(Product, product_id)
    if not product or product.site_id != site_id or not product.is_active:
        raise EntityNotFound("product", id=product_id)
    return product


def _check_stock(product: Product, quantity: int):
    if not product.has_stock(quantity):
        raise BusinessRuleError(
            "insufficient_stock",
            f"Insufficient stock for {product.name}. Available: {product.stock}, Requested: {quantity}",
            {"product_id": product.id, "available": product.stock, "requested": quantity},
        )


def add_item(session: Session, cart: Cart, product_id: int, quantity: int = 1) -> CartItem:
    _ensure_active(cart)
    product = _get_product(session, cart.site_id, product_id)

    existing_item = session.exec(
        select(CartItem).where(CartItem.cart_id == cart.id, CartItem.product_id == product.id)
    ).first()

    new_quantity = quantity + (existing_item.quantity if existing_item else 0)
    _check_stock(product, new_quantity)

    item = existing_item or CartItem(
        cart_id=cart.id,
        product_id=product.id,
        product_name=product.name,
        unit_price=product.price,
    )
    item.quantity = new_quantity
    item.unit_price = product.price

    cart.touch()
    session.add(item)
    session.add(cart)
    session.commit()
    session.refresh(item)
    return item


def _get_item(session: Session, cart: Cart, item_id: int) -> CartItem:
    item = session.get(CartItem, item_id)
    if not item or item.cart_id != cart.id:
        raise EntityNotFound("cart_item", id=item_id)
    return item


def update_item_quantity(session: Session, cart: Cart, item_id: int, quantity: int) -> Optional[CartItem]:
    """Set the quantity of a line; zero or less removes it."""
    _ensure_active(cart)
    item = _get_item(session, cart, item_id)

    if quantity <= 0:
        session.delete(item)
        cart.touch()
        session.add(cart)
        session.commit()
        return None

    _check_stock(_get_product(session, cart.site_id, item.product_id), quantity)
    item.quantity = quantity
    cart.touch()
    session.add(item)
    session.add(cart)
    session.commit()
    session.refresh(item)
    return item


def remove_item(session: Session, cart: Cart, item_id: int):
    _ensure_active(cart)
    item = _get_item(session, cart, item_id)
    session.delete(item)
    cart.touch()
    session.add(cart)
    session.commit()


def clear_cart(session: Session, cart: Cart):
    _ensure_active(cart)
    for item in list(cart.items):
        session.delete(item)
    cart.touch()
    session.add(cart)
    session.commit()
    session.refresh(cart)


def archive_cart(session: Session, cart: Cart):
    """Close a cart converted into an order; items stay for audit."""
    cart.status = CartStatus.archived
    cart.updated_at = datetime.utcnow()
    session.add(cart)


def build_cart_snapshot(
    session: Session,
    cart: Cart,
    user: Optional[User] = None,
) -> Tuple[CartSnapshot, Optional[CouponEvaluation]]:
    """Price the cart, applying its coupon only while the coupon is still eligible."""
    coupon = session.get(Coupon, cart.coupon_id) if cart.coupon_id else None
    evaluation = evaluate_for_cart(session, cart, coupon, user) if cart.coupon_id else None

    eligible_coupon = coupon if evaluation is not None and evaluation.eligible else None
    snapshot = price_lines(
        cart_lines(cart),
        CustomerType(cart.customer_type).value,
        coupon=eligible_coupon,
    )
    return snapshot, evaluation


def cart_response(session: Session, cart: Cart, user: Optional[User] = None) -> dict:
    snapshot, evaluation = build_cart_snapshot(session, cart, user)
    payload = {
        "cart_id": cart.id,
        "cart_token": cart.session_token,
        "status": CartStatus(cart.status).value,
        "currency": cart.currency,
        **snapshot.to_dict(),
    }
    if evaluation is not None and not evaluation.eligible:
        payload["coupon_issues"] = [r.value for r in evaluation.reasons]
    return payload
