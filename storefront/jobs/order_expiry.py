import logging
from datetime import datetime
from typing import Optional

from sqlmodel import Session

from storefront.database import engine
from storefront.services.order_status_service import expire_pending_orders

logger = logging.getLogger(__name__)


def expire_unpaid_orders(now: Optional[datetime] = None) -> int:
    """Scheduler entry point: cancel orders still awaiting payment after the grace period."""
    with Session(engine) as session:
        expired = expire_pending_orders(session, now)

    return len(expired)


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    expire_unpaid_orders()
