import os

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("JWT_SECRET", "test-secret")

from decimal import Decimal

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from marketplace.application.schemas import AddressCreate, OrderCreate
from marketplace.application.service import OrderService
from marketplace.domain.models import Address, Base, Product, Setting
from marketplace.infrastructure.cache import SettingsCache


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def cache():
    return SettingsCache(ttl=300)


@pytest.fixture
def order_service(db, cache):
    return OrderService(db, cache)


@pytest.fixture
def configure_delivery(db):
    """Write the three delivery settings straight into the settings table."""

    def _configure(enabled=True, fee="150", threshold="2000"):
        rows = {
            "delivery_enabled": ("true" if enabled else "false", "boolean"),
            "delivery_fee": (str(fee), "number"),
            "free_delivery_threshold": (str(threshold), "number"),
        }
        for key, (value, type_) in rows.items():
            db.add(Setting(key=key, name=key, value=value, type=type_, category="delivery"))
        db.commit()

    return _configure


@pytest.fixture
def make_product(db):
    def _make(name="Tomatoes", price="100", **kwargs):
        kwargs.setdefault("unit", "kg")
        kwargs.setdefault("images", [f"https://cdn.example.com/{name.lower()}.jpg"])
        product = Product(name=name, price=Decimal(price), **kwargs)
        db.add(product)
        db.commit()
        return product

    return _make


@pytest.fixture
def make_address(db):
    def _make(user_id, is_default=False, **kwargs):
        values = dict(
            full_name="Ayesha Khan",
            phone="03001234567",
            address_line1="12 Canal Road",
            city="Lahore",
            state="Punjab",
            postal_code="54000",
            country="Pakistan",
        )
        values.update(kwargs)
        address = Address(user_id=user_id, is_default=is_default, **values)
        db.add(address)
        db.commit()
        return address

    return _make


@pytest.fixture
def guest_address():
    return AddressCreate(
        full_name="Bilal Ahmed",
        phone="03211234567",
        address_line1="House 4, Street 9",
        city="Lahore",
        postal_code="54000",
    )


def order_payload(items, address_id=None, address=None, payment_method="cash_on_delivery", notes=None):
    return OrderCreate(
        address_id=address_id,
        address=address,
        items=items,
        payment_method=payment_method,
        notes=notes,
    )
