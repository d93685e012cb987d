import itertools
from dataclasses import replace
from datetime import date, datetime, timezone
from decimal import Decimal

import pytest
from werkzeug.security import generate_password_hash

from app import create_app
from models import db, User
from records import (
    State, Customer, Product, Subscription, Delivery, Payment, PENDING, DAILY,
)


# =============================================================================
# Flask application
# =============================================================================

@pytest.fixture
def app():
    """App bound to a fresh in-memory database with an admin and a rider."""
    app = create_app({
        "TESTING": True,
        "SECRET_KEY": "test",
        "SQLALCHEMY_DATABASE_URI": "sqlite://",
        "DAIRY_TIMEZONE": "Asia/Kolkata",
    })
    with app.app_context():
        db.session.add_all([
            User(email="admin@example.com", name="Admin", role="admin",
                 password_hash=generate_password_hash("adminpass")),
            User(email="rider@example.com", name="Rider", role="delivery",
                 password_hash=generate_password_hash("riderpass")),
        ])
        db.session.commit()
    yield app


@pytest.fixture
def app_ctx(app):
    with app.app_context():
        yield app


@pytest.fixture
def client(app):
    """Unauthenticated test client."""
    return app.test_client()


@pytest.fixture
def admin_client(app):
    client = app.test_client()
    resp = client.post("/auth/login", json={"email": "admin@example.com", "password": "adminpass"})
    assert resp.status_code == 200
    return client


@pytest.fixture
def rider_client(app):
    client = app.test_client()
    resp = client.post("/auth/login", json={"email": "rider@example.com", "password": "riderpass"})
    assert resp.status_code == 200
    return client


# =============================================================================
# Pure records
# =============================================================================

@pytest.fixture
def milk():
    return Product(id="p-milk", name="Milk", unit="L", default_price=Decimal("60.00"))


@pytest.fixture
def curd():
    return Product(id="p-curd", name="Curd", unit="kg", default_price=Decimal("80.00"))


@pytest.fixture
def rajesh():
    return Customer(id="c-rajesh", name="Rajesh Kumar", mobile="+91 98765 43210",
                    address="Block A, Sector 15, New Delhi")


@pytest.fixture
def priya():
    return Customer(id="c-priya", name="Priya Sharma", mobile="+91 87654 32109")


@pytest.fixture
def state(milk, curd, rajesh, priya):
    """Two customers and two products, nothing else."""
    return State(
        customers={c.id: c for c in (rajesh, priya)},
        products={p.id: p for p in (milk, curd)},
    )


@pytest.fixture
def add_records():
    """Return a helper placing records into a copy of a State."""
    buckets = {
        Customer: "customers",
        Product: "products",
        Subscription: "subscriptions",
        Delivery: "deliveries",
        Payment: "payments",
    }

    def add(state, *records):
        changes = {}
        for record in records:
            name = buckets[type(record)]
            changes.setdefault(name, dict(getattr(state, name)))[record.id] = record
        return replace(state, **changes)

    return add


@pytest.fixture
def make_delivery():
    counter = itertools.count(1)

    def build(customer_id="c-rajesh", product_id="p-milk", day=date(2025, 1, 6),
              amount="60.00", status=PENDING, **extra):
        return Delivery(
            id=f"d-{next(counter)}",
            customer_id=customer_id,
            product_id=product_id,
            date=day,
            quantity=500,
            price=Decimal("60.00"),
            amount=Decimal(amount),
            status=status,
            **extra,
        )

    return build


@pytest.fixture
def make_payment():
    counter = itertools.count(1)

    def build(amount, customer_id="c-rajesh", **extra):
        extra.setdefault("date", datetime(2025, 1, 10, 6, 30, tzinfo=timezone.utc))
        return Payment(
            id=f"pay-{next(counter)}",
            customer_id=customer_id,
            amount=Decimal(amount),
            mode=extra.pop("mode", "cash"),
            **extra,
        )

    return build


@pytest.fixture
def make_subscription():
    counter = itertools.count(1)

    def build(customer_id="c-rajesh", product_id="p-milk", quantity=500,
              price="60.00", frequency=DAILY, custom_days=(),
              start_date=date(2025, 1, 1), **extra):
        return Subscription(
            id=f"s-{next(counter)}",
            customer_id=customer_id,
            product_id=product_id,
            quantity=quantity,
            price_per_unit=Decimal(price),
            frequency=frequency,
            custom_days=tuple(custom_days),
            start_date=start_date,
            **extra,
        )

    return build
