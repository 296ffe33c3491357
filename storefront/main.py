import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from storefront.config import settings
from storefront.database import create_db_and_tables
from storefront.exceptions import register_exception_handlers
from storefront.routes import (
    admin_coupons,
    admin_orders,
    cart,
    coupons,
    health,
    orders,
)

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Run DB creation ONLY in local
    if settings.env == "local":
        create_db_and_tables()
        logger.info("Database tables created")
    yield

app = FastAPI(title="Storefront API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:5173",
        "http://localhost:3000",
        "http://127.0.0.1:5173",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)

app.include_router(health.router, prefix="/health", tags=["Health"])
app.include_router(cart.router, prefix="/carts", tags=["Cart"])
app.include_router(coupons.router, prefix="/carts/coupons", tags=["Coupons"])
app.include_router(orders.router, prefix="/orders", tags=["Orders"])
app.include_router(admin_orders.router, prefix="/admin/orders", tags=["Admin Orders"])
app.include_router(admin_coupons.router, prefix="/admin/coupons", tags=["Admin Coupons"])


@app.get("/")
def root():
    return {
        "cart": [
            "/carts", "/carts/items", "/carts/items/{item_id}",
            "/carts/coupons", "/carts/coupons/apply", "/carts/coupons/validate",
        ],
        "orders": [
            "/orders/checkout", "/orders/me", "/orders/{order_id}",
            "/orders/reference/{reference}", "/orders/{order_id}/cancel",
        ],
        "admin": [
            "/admin/orders", "/admin/orders/statistics", "/admin/orders/{order_id}/status",
            "/admin/orders/{order_id}/refund", "/admin/orders/{order_id}/hold",
            "/admin/orders/{order_id}/history", "/admin/coupons",
        ],
    }
