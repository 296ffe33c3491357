from typing import Optional

from fastapi import APIRouter, Depends
from sqlmodel import Session, select

from storefront.database import get_session
from storefront.dependencies.site import get_current_site
from storefront.models.coupon import Coupon
from storefront.models.site import Site
from storefront.models.user import User
from storefront.schemas.coupon_schemas import CouponCreate, CouponUpdate
from storefront.services import coupon_service
from storefront.utils.pagination import paginate
from storefront.utils.token import get_current_admin

router = APIRouter()


def _admin_view(coupon: Coupon) -> dict:
    return {
        "id": coupon.id,
        **coupon.summary(),
        "value": coupon.value,
        "maximum_discount": coupon.maximum_discount,
        "valid_from": coupon.valid_from,
        "max_usages": coupon.max_usages,
        "usage_count": coupon.usage_count,
        "first_order_only": coupon.first_order_only,
        "allowed_customer_types": coupon.allowed_customer_types,
        "is_active": coupon.is_active,
        "internal_note": coupon.internal_note,
    }


@router.get("")
def list_coupons(
    page: int = 1,
    limit: int = 10,
    search: Optional[str] = None,
    is_active: Optional[bool] = None,
    site: Site = Depends(get_current_site),
    session: Session = Depends(get_session),
    _: User = Depends(get_current_admin),
):
    query = select(Coupon).where(Coupon.site_id == site.id)

    if search:
        query = query.where(Coupon.code.ilike(f"%{search}%"))

    if is_active is not None:
        query = query.where(Coupon.is_active == is_active)

    data = paginate(session=session, query=query.order_by(Coupon.created_at.desc()), page=page, limit=limit)
    data["results"] = [_admin_view(c) for c in data["results"]]
    return data


@router.get("/most-used")
def most_used_coupons(
    limit: int = 10,
    site: Site = Depends(get_current_site),
    session: Session = Depends(get_session),
    _: User = Depends(get_current_admin),
):
    coupons = coupon_service.list_most_used_coupons(session, site.id, limit)
    return {"results": [_admin_view(c) for c in coupons]}


@router.post("", status_code=201)
def create_coupon(
    data: CouponCreate,
    site: Site = Depends(get_current_site),
    session: Session = Depends(get_session),
    _: User = Depends(get_current_admin),
):
    coupon = coupon_service.create_coupon(session, site.id, data)
    return {"message": "Coupon created", "coupon": _admin_view(coupon)}


@router.patch("/{coupon_id}")
def update_coupon(
    coupon_id: int,
    data: CouponUpdate,
    site: Site = Depends(get_current_site),
    session: Session = Depends(get_session),
    _: User = Depends(get_current_admin),
):
    coupon = coupon_service.update_coupon(session, site.id, coupon_id, data)
    return {"message": "Coupon updated", "coupon": _admin_view(coupon)}
