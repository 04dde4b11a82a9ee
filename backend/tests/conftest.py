"""Shared pytest fixtures: in-memory database, API client, data factories."""

import os
from datetime import date, timedelta
from decimal import Decimal

# Settings are read at import time, point them at a throwaway database first
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["SECRET_KEY"] = "test-secret"

import httpx
import pytest
from fastapi.testclient import TestClient

from database import Base, SessionLocal, engine, get_db
from main import app
from models import Category, Deal, DealProduct, DealType, PaymentMethod, Product, Store, StoreDeal, StoreProduct, User
from routes import cart as cart_routes
from utils.payment_client import PaymentClient, get_payment_client
from utils.tokenJWT import create_access_token

GATEWAY_URL = "http://gateway.test"


@pytest.fixture
def db():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    cart_routes._cart_locks.clear()
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


class Gateway:
    """Fake payment gateway behind httpx.MockTransport."""

    def __init__(self):
        self.requests = []
        self.status_code = 200
        self.body = {"success": True, "payment_id": "pay_1"}

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return httpx.Response(self.status_code, json=self.body)

    def client(self) -> PaymentClient:
        return PaymentClient(api_url=GATEWAY_URL, api_key="test-key", transport=httpx.MockTransport(self.handler))


@pytest.fixture
def gateway():
    return Gateway()


@pytest.fixture
def client(db, gateway):
    def _get_db():
        yield db

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_payment_client] = gateway.client
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


def make_store(db, name="Main St", tax_rate="0.07"):
    store = Store(name=name, address="1 Main St", tax_rate=Decimal(tax_rate), is_open=True)
    db.add(store)
    db.commit()
    db.refresh(store)
    return store


def make_product(db, store, name, price, category=None, available=True):
    cat = None
    if category:
        cat = db.query(Category).filter(Category.name == category).first()
        if not cat:
            cat = Category(name=category)
            db.add(cat)
            db.flush()
    product = Product(name=name, category_id=cat.id if cat else None)
    db.add(product)
    db.flush()
    db.add(StoreProduct(store_id=store.id, product_id=product.id, price=Decimal(price), available=available))
    db.commit()
    db.refresh(product)
    return product


def make_deal(db, store, code, products, quantity_required=2, discount_amount="1.00", *,
              deal_type=DealType.FLAT, priority=0, transaction_limit=None, discount_percentage=None,
              override_price=None, start_date=None, end_date=None, active=True, link_active=True,
              discount_override=None):
    today = date.today()
    deal = Deal(
        code=code,
        description=f"Deal {code}",
        deal_type=deal_type,
        quantity_required=quantity_required,
        discount_amount=Decimal(discount_amount) if discount_amount is not None else None,
        discount_percentage=Decimal(discount_percentage) if discount_percentage is not None else None,
        override_price=Decimal(override_price) if override_price is not None else None,
        priority=priority,
        transaction_limit=transaction_limit,
        start_date=start_date or today - timedelta(days=1),
        end_date=end_date or today + timedelta(days=7),
        active=active,
    )
    db.add(deal)
    db.add(StoreDeal(
        store_id=store.id,
        deal_code=code,
        active=link_active,
        discount_override=Decimal(discount_override) if discount_override is not None else None,
    ))
    for product in products:
        db.add(DealProduct(deal_code=code, product_id=product.id))
    db.commit()
    return deal


def make_user(db, email="customer@example.com", role="customer", store=None):
    user = User(email=email, role=role, store_id=store.id if store else None)
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def auth_headers(user):
    return {"Authorization": f"Bearer {create_access_token({'sub': user.email})}"}


def make_payment_method(db, user, provider_ref="pm_card_visa", is_default=True):
    method = PaymentMethod(user_id=user.id, provider_ref=provider_ref, brand="visa", last4="4242", is_default=is_default)
    db.add(method)
    db.commit()
    db.refresh(method)
    return method
