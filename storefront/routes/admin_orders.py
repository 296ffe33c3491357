# -------- ADMIN ORDERS --------
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlmodel import Session

from storefront.constants.order_status import OrderStatus, allowed_transitions, label
from storefront.database import get_session
from storefront.dependencies.site import get_current_site
from storefront.models.site import Site
from storefront.models.user import User
from storefront.schemas.orders_schemas import HoldRequest, RefundRequest, StatusChangeRequest
from storefront.services import order_service, order_status_service
from storefront.utils.token import get_current_admin

router = APIRouter()


@router.get("")
def list_orders(
    page: int = 1,
    limit: int = 10,
    search: Optional[str] = None,
    status: Optional[OrderStatus] = None,
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    site: Site = Depends(get_current_site),
    session: Session = Depends(get_session),
    _: User = Depends(get_current_admin),
):
    data = order_service.list_orders(
        session,
        site.id,
        page=page,
        limit=limit,
        search=search,
        status=status,
        start_date=start_date,
        end_date=end_date,
    )
    data["results"] = [order_service.order_to_dict(o, with_items=False) for o in data["results"]]
    return data


@router.get("/statistics")
def order_statistics(
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    site: Site = Depends(get_current_site),
    session: Session = Depends(get_session),
    _: User = Depends(get_current_admin),
):
    return order_service.order_statistics(session, site.id, start_date, end_date)


@router.get("/{order_id}")
def order_details(
    order_id: int,
    site: Site = Depends(get_current_site),
    session: Session = Depends(get_session),
    _: User = Depends(get_current_admin),
):
    order = order_service.get_order(session, site.id, order_id)
    data = order_service.order_to_dict(order)
    data["allowed_transitions"] = [s.value for s in allowed_transitions(order.status)]
    return data


@router.patch("/{order_id}/status")
def update_order_status(
    order_id: int,
    data: StatusChangeRequest,
    site: Site = Depends(get_current_site),
    session: Session = Depends(get_session),
    admin: User = Depends(get_current_admin),
):
    order = order_service.get_order(session, site.id, order_id)

    if data.status == OrderStatus.shipped:
        order = order_status_service.mark_as_shipped(
            session, order, data.tracking_number, data.carrier, changed_by=admin
        )
    elif data.status == OrderStatus.cancelled:
        order = order_status_service.cancel_order(
            session, order, changed_by=admin, changed_by_type="admin", reason=data.reason
        )
    elif data.status == OrderStatus.refunded:
        order = order_status_service.refund_order(session, order, changed_by=admin, reason=data.reason)
    else:
        order = order_status_service.change_order_status(
            session, order, data.status, changed_by=admin, changed_by_type="admin", reason=data.reason
        )

    return {
        "message": f"Order status updated to {label(order.status)}",
        "order": order_service.order_to_dict(order, with_items=False),
    }


@router.post("/{order_id}/refund")
def refund_order(
    order_id: int,
    data: Optional[RefundRequest] = None,
    site: Site = Depends(get_current_site),
    session: Session = Depends(get_session),
    admin: User = Depends(get_current_admin),
):
    order = order_service.get_order(session, site.id, order_id)
    order = order_status_service.refund_order(
        session,
        order,
        changed_by=admin,
        reason=data.reason if data else None,
        amount=data.amount if data else None,
    )
    return {
        "message": "Order refunded",
        "order": order_service.order_to_dict(order, with_items=False),
    }


@router.post("/{order_id}/hold")
def hold_order(
    order_id: int,
    data: HoldRequest,
    site: Site = Depends(get_current_site),
    session: Session = Depends(get_session),
    admin: User = Depends(get_current_admin),
):
    order = order_service.get_order(session, site.id, order_id)
    order = order_status_service.put_on_hold(session, order, data.reason, changed_by=admin)
    return {
        "message": "Order put on hold",
        "order": order_service.order_to_dict(order, with_items=False),
    }


@router.get("/{order_id}/history")
def order_history(
    order_id: int,
    site: Site = Depends(get_current_site),
    session: Session = Depends(get_session),
    _: User = Depends(get_current_admin),
):
    order = order_service.get_order(session, site.id, order_id)
    history = order_status_service.get_status_history(session, order)

    return {
        "order_id": order.id,
        "reference": order.reference,
        "history": [
            {
                "from": OrderStatus(h.from_status).value if h.from_status else None,
                "to": OrderStatus(h.to_status).value,
                "changed_by_id": h.changed_by_id,
                "changed_by_type": h.changed_by_type,
                "reason": h.reason,
                "meta": h.meta,
                "created_at": h.created_at,
            }
            for h in history
        ],
    }
