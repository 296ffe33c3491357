from typing import Optional

from fastapi import APIRouter, Depends
from sqlmodel import Session

from storefront.database import get_session
from storefront.dependencies.cart import get_current_cart
from storefront.dependencies.site import get_current_site
from storefront.exceptions import EntityNotFound
from storefront.models.cart import Cart
from storefront.models.site import Site
from storefront.models.user import User
from storefront.schemas.orders_schemas import CancelRequest, CheckoutRequest
from storefront.services import order_service, order_status_service
from storefront.utils.token import get_current_user, get_optional_user

router = APIRouter()


@router.post("/checkout", status_code=201)
def checkout(
    data: CheckoutRequest,
    cart: Cart = Depends(get_current_cart),
    session: Session = Depends(get_session),
):
    shipping_address = data.shipping_address.model_dump()
    billing_address = data.billing_address.model_dump() if data.billing_address else None

    order = order_service.create_order_from_cart(
        session,
        cart,
        shipping_address=shipping_address,
        billing_address=billing_address,
        customer_message=data.customer_message,
    )

    return {
        "message": "Order placed, awaiting payment",
        "order": order_service.order_to_dict(order),
    }


# My Orders

@router.get("/me")
def my_orders(
    page: int = 1,
    limit: int = 10,
    site: Site = Depends(get_current_site),
    current_user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    data = order_service.list_user_orders(session, site.id, current_user, page, limit)
    data["results"] = [order_service.order_to_dict(o, with_items=False) for o in data["results"]]
    return data


@router.get("/reference/{reference}")
def order_by_reference(
    reference: str,
    site: Site = Depends(get_current_site),
    user: Optional[User] = Depends(get_optional_user),
    session: Session = Depends(get_session),
):
    order = order_service.find_by_reference(session, site.id, reference)

    # customer orders are only visible to their owner
    if order.user_id is not None and (user is None or user.id != order.user_id):
        raise EntityNotFound("order", reference=reference)

    return order_service.order_to_dict(order)


@router.get("/{order_id}")
def order_detail(
    order_id: int,
    site: Site = Depends(get_current_site),
    current_user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    order = order_service.get_order(session, site.id, order_id, current_user)
    return order_service.order_to_dict(order)


@router.post("/{order_id}/cancel")
def cancel_my_order(
    order_id: int,
    data: Optional[CancelRequest] = None,
    site: Site = Depends(get_current_site),
    current_user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    order = order_service.get_order(session, site.id, order_id, current_user)
    order = order_status_service.cancel_order(
        session,
        order,
        changed_by=current_user,
        changed_by_type="customer",
        reason=data.reason if data else None,
    )
    return {
        "message": "Order cancelled",
        "order": order_service.order_to_dict(order, with_items=False),
    }
