from typing import Optional

from fastapi import APIRouter, Depends
from sqlmodel import Session

from storefront.database import get_session
from storefront.dependencies.cart import get_current_cart
from storefront.models.cart import Cart
from storefront.models.user import User
from storefront.schemas.cart_schemas import CartAddRequest, CartUpdateRequest
from storefront.services import cart_service
from storefront.utils.token import get_optional_user

router = APIRouter()


# View Cart

@router.get("")
def get_cart(
    cart: Cart = Depends(get_current_cart),
    user: Optional[User] = Depends(get_optional_user),
    session: Session = Depends(get_session),
):
    return cart_service.cart_response(session, cart, user)


# Add to Cart

@router.post("/items")
def add_to_cart(
    data: CartAddRequest,
    cart: Cart = Depends(get_current_cart),
    user: Optional[User] = Depends(get_optional_user),
    session: Session = Depends(get_session),
):
    item = cart_service.add_item(session, cart, data.product_id, data.quantity)
    session.refresh(cart)
    return {
        "message": "Added to cart",
        "item_id": item.id,
        "cart": cart_service.cart_response(session, cart, user),
    }


@router.patch("/items/{item_id}")
def update_cart_item(
    item_id: int,
    data: CartUpdateRequest,
    cart: Cart = Depends(get_current_cart),
    user: Optional[User] = Depends(get_optional_user),
    session: Session = Depends(get_session),
):
    item = cart_service.update_item_quantity(session, cart, item_id, data.quantity)
    session.refresh(cart)
    return {
        "message": "Cart updated" if item else "Item removed",
        "cart": cart_service.cart_response(session, cart, user),
    }


@router.delete("/items/{item_id}")
def remove_cart_item(
    item_id: int,
    cart: Cart = Depends(get_current_cart),
    user: Optional[User] = Depends(get_optional_user),
    session: Session = Depends(get_session),
):
    cart_service.remove_item(session, cart, item_id)
    session.refresh(cart)
    return {
        "message": "Item removed",
        "cart": cart_service.cart_response(session, cart, user),
    }


@router.delete("")
def clear_cart(
    cart: Cart = Depends(get_current_cart),
    user: Optional[User] = Depends(get_optional_user),
    session: Session = Depends(get_session),
):
    cart_service.clear_cart(session, cart)
    return {
        "message": "Cart cleared",
        "cart": cart_service.cart_response(session, cart, user),
    }
