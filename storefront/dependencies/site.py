from typing import Optional

from fastapi import Depends, Header, HTTPException, Query
from sqlmodel import Session, select

from storefront.config import settings
from storefront.database import get_session
from storefront.models.site import Site, SiteStatus


def get_current_site(
    x_site_code: Optional[str] = Header(default=None),
    site: Optional[str] = Query(default=None),
    session: Session = Depends(get_session),
) -> Site:
    code = (x_site_code or site or settings.default_site_code).upper()

    current = session.exec(select(Site).where(Site.code == code)).first()
    if not current:
        raise HTTPException(404, f"Site {code} not found")

    if not current.is_open:
        raise HTTPException(503, f"Site {code} is {SiteStatus(current.status).value}")

    return current
