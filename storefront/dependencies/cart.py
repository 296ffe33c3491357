from typing import Optional

from fastapi import Depends, Header
from sqlmodel import Session

from storefront.database import get_session
from storefront.dependencies.site import get_current_site
from storefront.models.cart import Cart
from storefront.models.site import Site
from storefront.models.user import User
from storefront.services.cart_service import get_or_create_cart
from storefront.utils.token import get_optional_user


def get_current_cart(
    x_cart_token: Optional[str] = Header(default=None),
    site: Site = Depends(get_current_site),
    user: Optional[User] = Depends(get_optional_user),
    session: Session = Depends(get_session),
) -> Cart:
    """Active cart of the caller; guests are identified by ``X-Cart-Token``."""
    return get_or_create_cart(session, site, user, x_cart_token)
