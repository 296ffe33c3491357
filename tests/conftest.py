"""
Shared pytest fixtures.

The application reads its settings at import time, so the environment is
pointed at an in-memory SQLite database before anything from ``storefront``
is imported.
"""

import os

os.environ.setdefault("POSTGRES_USER", "storefront")
os.environ.setdefault("POSTGRES_PASSWORD", "storefront")
os.environ.setdefault("POSTGRES_DB", "storefront_test")
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ["SQLALCHEMY_DATABASE_URL"] = "sqlite://"
os.environ["ENV"] = "test"

from datetime import datetime, timedelta
from decimal import Decimal
from typing import Generator

import pytest
from fastapi.testclient import TestClient
from jose import jwt
from sqlmodel import Session, SQLModel

from storefront.config import settings
from storefront.constants.coupon import CouponType
from storefront.database import create_db_and_tables, engine, get_session
from storefront.main import app
from storefront.models.coupon import Coupon
from storefront.models.product import Product
from storefront.models.site import Site
from storefront.models.user import CustomerType, User
from storefront.services import cart_service


# ============================================================================
# DATABASE FIXTURES
# ============================================================================


@pytest.fixture
def session() -> Generator[Session, None, None]:
    """Fresh schema per test on the shared in-memory connection."""
    create_db_and_tables()
    with Session(engine) as session:
        yield session
    SQLModel.metadata.drop_all(engine)


@pytest.fixture
def client(session: Session) -> Generator[TestClient, None, None]:
    def get_session_override():
        return session

    app.dependency_overrides[get_session] = get_session_override
    yield TestClient(app)
    app.dependency_overrides.clear()


# ============================================================================
# DATA FIXTURES
# ============================================================================


@pytest.fixture
def site(session: Session) -> Site:
    site = Site(code="FR", name="Boutique France")
    session.add(site)
    session.commit()
    session.refresh(site)
    return site


@pytest.fixture
def make_user(session: Session, site: Site):
    def _make_user(email="jane@example.com", role="user", customer_type=CustomerType.b2c):
        user = User(
            site_id=site.id,
            first_name="Jane",
            last_name="Doe",
            email=email,
            role=role,
            customer_type=customer_type,
        )
        session.add(user)
        session.commit()
        session.refresh(user)
        return user

    return _make_user


@pytest.fixture
def user(make_user) -> User:
    return make_user()


@pytest.fixture
def admin(make_user) -> User:
    return make_user(email="admin@example.com", role="admin")


@pytest.fixture
def make_product(session: Session, site: Site):
    def _make_product(name="Notebook", price="20.00", stock=10, sku=None, is_active=True):
        product = Product(
            site_id=site.id,
            sku=sku or name.upper().replace(" ", "-"),
            name=name,
            price=Decimal(price),
            stock=stock,
            is_active=is_active,
        )
        session.add(product)
        session.commit()
        session.refresh(product)
        return product

    return _make_product


@pytest.fixture
def make_coupon(session: Session, site: Site):
    def _make_coupon(code="WELCOME10", type=CouponType.percentage, value="0.10", **fields):
        coupon = Coupon(
            site_id=site.id,
            code=code,
            type=type,
            value=Decimal(value) if value is not None else None,
            **fields,
        )
        session.add(coupon)
        session.commit()
        session.refresh(coupon)
        return coupon

    return _make_coupon


@pytest.fixture
def make_cart(session: Session, site: Site):
    """Cart for ``user`` (or a guest) filled with ``(product, quantity)`` lines."""
    def _make_cart(user=None, lines=(), token=None):
        cart = cart_service.get_or_create_cart(session, site, user, token)
        for product, quantity in lines:
            cart_service.add_item(session, cart, product.id, quantity)
        session.refresh(cart)
        return cart

    return _make_cart


@pytest.fixture
def address() -> dict:
    return {
        "first_name": "Jane",
        "last_name": "Doe",
        "email": "jane@example.com",
        "phone": "0600000000",
        "address": "1 rue de la Paix",
        "city": "Paris",
        "zip_code": "75002",
        "country": "FR",
    }


@pytest.fixture
def auth_headers():
    """Bearer headers signed the way the identity service signs them."""
    def _auth_headers(user: User) -> dict:
        token = jwt.encode(
            {"user_id": user.id, "exp": datetime.utcnow() + timedelta(minutes=15)},
            settings.secret_key,
            algorithm=settings.algorithm,
        )
        return {"Authorization": f"Bearer {token}"}

    return _auth_headers
