from typing import Optional

from fastapi import APIRouter, Depends
from sqlmodel import Session

from storefront.database import get_session
from storefront.dependencies.cart import get_current_cart
from storefront.dependencies.site import get_current_site
from storefront.models.cart import Cart
from storefront.models.site import Site
from storefront.models.user import User
from storefront.schemas.coupon_schemas import CouponApplyRequest
from storefront.services import cart_service, coupon_service
from storefront.utils.token import get_optional_user

router = APIRouter()


@router.get("")
def list_available_coupons(
    site: Site = Depends(get_current_site),
    session: Session = Depends(get_session),
):
    coupons = coupon_service.list_active_coupons(session, site.id)
    return {"results": [c.summary() for c in coupons]}


@router.post("/apply")
def apply_coupon(
    data: CouponApplyRequest,
    cart: Cart = Depends(get_current_cart),
    user: Optional[User] = Depends(get_optional_user),
    session: Session = Depends(get_session),
):
    coupon, evaluation = coupon_service.apply_to_cart(session, cart, data.code, user)
    return {
        "message": coupon.public_message or f"Coupon {coupon.code} applied",
        "coupon": coupon.summary(),
        "discount": evaluation.discount,
        "free_shipping": evaluation.free_shipping,
        "cart": cart_service.cart_response(session, cart, user),
    }


@router.delete("")
def remove_coupon(
    cart: Cart = Depends(get_current_cart),
    user: Optional[User] = Depends(get_optional_user),
    session: Session = Depends(get_session),
):
    coupon_service.remove_from_cart(session, cart)
    return {
        "message": "Coupon removed",
        "cart": cart_service.cart_response(session, cart, user),
    }


@router.post("/validate")
def validate_coupon(
    data: CouponApplyRequest,
    cart: Cart = Depends(get_current_cart),
    user: Optional[User] = Depends(get_optional_user),
    session: Session = Depends(get_session),
):
    return coupon_service.validate_coupon(session, cart, data.code, user)
