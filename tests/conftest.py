from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from storefront.database import get_db, init_db
from storefront.identity import (
    ACTOR_HEADER,
    CANCEL_ANY_ORDER,
    CAPABILITIES_HEADER,
    MANAGE_CATALOG,
    MANAGE_INVENTORY,
    MANAGE_ORDERS,
)
from storefront.main import app
from storefront.schemas.order import OrderCreate
from storefront.schemas.product import ProductCreate
from storefront.services import catalog_service
from storefront.services.notification_service import NotificationDispatcher

STAFF_HEADERS = {
    ACTOR_HEADER: "staff-1",
    CAPABILITIES_HEADER: ",".join([MANAGE_ORDERS, CANCEL_ANY_ORDER, MANAGE_CATALOG, MANAGE_INVENTORY]),
}


def customer_headers(customer_id: str = "cust-1") -> dict:
    return {ACTOR_HEADER: customer_id}


def order_payload(*lines, customer_id: str | None = "cust-1", **overrides) -> dict:
    """Build an order request body from (product_id, quantity[, variant_id]) tuples."""
    data = {
        "items": [
            {"product_id": line[0], "quantity": line[1], "variant_id": line[2] if len(line) > 2 else None}
            for line in lines
        ],
        "shipping": {
            "name": "Jane Doe",
            "email": "jane@example.com",
            "address": "1 Main St",
            "city": "Springfield",
            "country": "US",
        },
        "customer_id": customer_id,
    }
    data.update(overrides)
    return data


class EventRecorder:
    def __init__(self):
        self.events = []

    def __call__(self, event):
        self.events.append(event)

    def of_type(self, event_type):
        return [e for e in self.events if isinstance(e, event_type)]


@pytest.fixture()
def engine():
    engine = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    init_db(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture()
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture()
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture()
def recorder():
    return EventRecorder()


@pytest.fixture()
def dispatcher(recorder):
    dispatcher = NotificationDispatcher()
    dispatcher.subscribe_all(recorder)
    return dispatcher


@pytest.fixture()
def make_product(db):
    counter = iter(range(1, 1000))

    def _make(quantity=50, price="10.00", threshold=None, variants=(), **kwargs):
        n = next(counter)
        data = ProductCreate(
            sku=kwargs.pop("sku", f"SKU-{n:03d}"),
            name=kwargs.pop("name", f"Product {n}"),
            price=Decimal(price),
            quantity=quantity,
            low_stock_threshold=threshold,
            variants=list(variants),
            **kwargs,
        )
        return catalog_service.create_product(db, data)

    return _make


@pytest.fixture()
def make_order_data():
    def _make(*lines, **kwargs):
        return OrderCreate(**order_payload(*lines, **kwargs))

    return _make


@pytest.fixture()
def client(session_factory, dispatcher):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.state.dispatcher = dispatcher
    yield TestClient(app)
    app.dependency_overrides.clear()
    del app.state.dispatcher
