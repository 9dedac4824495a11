from concurrent.futures import ThreadPoolExecutor
from decimal import Decimal

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from storefront.database import init_db
from storefront.exceptions import InsufficientStock
from storefront.models.inventory import InventoryTransaction, TransactionType
from storefront.models.order import Order
from storefront.schemas.order import OrderCreate
from storefront.schemas.product import ProductCreate
from storefront.services import catalog_service, inventory_service, order_service

from conftest import order_payload


@pytest.fixture()
def file_session_factory(tmp_path):
    # Threads need a database they can all open; in-memory SQLite is per connection
    engine = create_engine(
        f"sqlite:///{tmp_path / 'race.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    init_db(bind=engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    engine.dispose()


@pytest.mark.parametrize("stock,per_order,attempts", [(10, 3, 8), (20, 1, 30)])
def test_concurrent_orders_never_oversell(file_session_factory, stock, per_order, attempts):
    with file_session_factory() as db:
        product = catalog_service.create_product(
            db, ProductCreate(sku="RACE-1", name="Race", price=Decimal("5.00"), quantity=stock)
        )
        product_id = product.id

    def place(i):
        db = file_session_factory()
        try:
            order_service.create_order(
                db, OrderCreate(**order_payload((product_id, per_order), customer_id=f"cust-{i}"))
            )
            return True
        except InsufficientStock:
            return False
        finally:
            db.close()

    with ThreadPoolExecutor(max_workers=8) as pool:
        results = list(pool.map(place, range(attempts)))

    expected = min(attempts, stock // per_order)
    assert results.count(True) == expected

    with file_session_factory() as db:
        product = catalog_service.get_product(db, product_id)
        assert product.quantity == stock - expected * per_order
        assert product.quantity >= 0
        assert db.query(Order).count() == expected
        sales = db.query(InventoryTransaction).filter(InventoryTransaction.type == TransactionType.SALE.value).count()
        assert sales == expected
        assert inventory_service.find_ledger_discrepancies(db) == []
