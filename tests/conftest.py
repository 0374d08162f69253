import os
# Ensure the app factory picks the Testing config & SQLite memory DB
os.environ.setdefault("APP_ENV", "testing")
os.environ.setdefault("TEST_DATABASE_URL", "sqlite:///:memory:")

from datetime import datetime, timezone
from decimal import Decimal

import pytest
from billing_core import create_app
from billing_core.extensions import db
from billing_core.models import Product, Profile

NOW = datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc)

@pytest.fixture(scope="session")
def app():
    app = create_app()
    app.config.update(
        TESTING=True,
        SQLALCHEMY_DATABASE_URI="sqlite:///:memory:",
        RATELIMIT_ENABLED=False,
        APP_ENV="test",
    )
    with app.app_context():
        db.create_all()
    yield app
    with app.app_context():
        db.drop_all()

@pytest.fixture()
def client(app):
    return app.test_client()

@pytest.fixture()
def app_ctx(app):
    with app.app_context():
        yield app

@pytest.fixture(autouse=True)
def _db_clean(app):
    # Clean BEFORE each test
    with app.app_context():
        db.session.rollback()
        for tbl in reversed(db.metadata.sorted_tables):
            db.session.execute(tbl.delete())
        db.session.commit()
    yield
    # And AFTER each test (keeps state hermetic even if a test fails mid-transaction)
    with app.app_context():
        db.session.rollback()
        for tbl in reversed(db.metadata.sorted_tables):
            db.session.execute(tbl.delete())
        db.session.commit()

def add_product(id="P1", *, payment_type="subscription", delivery_method="member_area", seller="S1", name="Pro Course", price="29.90"):
    product = Product(
        id=id,
        user_id=seller,
        name=name,
        payment_type=payment_type,
        delivery_method=delivery_method,
        image_url=f"https://cdn.example.test/{id}.png",
        price=Decimal(price),
    )
    db.session.add(product)
    db.session.commit()
    return product

def add_profile(user_id="U1", email="u1@example.com", full_name="Ana Souza"):
    profile = Profile(user_id=user_id, email=email, full_name=full_name)
    db.session.add(profile)
    db.session.commit()
    return profile
