from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy.orm import Session

from backend.app.db.base import Base
from backend.app.db.models.models_v1 import Category, Customer, Supplier
from backend.app.db.session import create_db_engine, make_session_factory
from backend.services.deliveries import DeliveryLine
from backend.services.ledger import StockLedger


@pytest.fixture(scope="function")
def db_url(tmp_path) -> str:
    """
    Base SQLite fichier, une par test.

    Fichier (et pas :memory:) : plusieurs connexions doivent voir la même base
    pour simuler des transactions concurrentes.
    """
    return f"sqlite:///{tmp_path / 'ledger.db'}"


@pytest.fixture(scope="function")
def db_engine(db_url):
    engine = create_db_engine(db_url)
    Base.metadata.create_all(bind=engine)
    try:
        yield engine
    finally:
        engine.dispose()


@pytest.fixture(scope="function")
def session_factory(db_engine):
    return make_session_factory(db_engine)


@pytest.fixture(scope="function")
def db_session(session_factory) -> Session:
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(scope="function")
def ledger(session_factory) -> StockLedger:
    return StockLedger(session_factory, max_retries=3)


@pytest.fixture(scope="function")
def master_data(session_factory) -> dict:
    """Catégories / fournisseur / client de test (données maîtres externes)."""
    with session_factory() as db:
        vegetables = Category(name="Vegetables", display_order=1)
        fruits = Category(name="Fruits", display_order=2)
        supplier = Supplier(company_name="Ota Market Wholesale")
        customer = Customer(company_name="Bistro Hanabi")
        db.add_all([vegetables, fruits, supplier, customer])
        db.commit()
        return {
            "vegetables_id": vegetables.id,
            "fruits_id": fruits.id,
            "supplier_id": supplier.id,
            "customer_id": customer.id,
        }


@pytest.fixture(scope="function")
def make_purchase(ledger, master_data):
    def _make(
        product_name="Tomato",
        quantity="100",
        unit="kg",
        unit_price="300",
        purchase_date=date(2026, 4, 1),
        category_id=None,
        **extra,
    ):
        purchase = ledger.record_purchase(
            product_name=product_name,
            category_id=category_id or master_data["vegetables_id"],
            supplier_id=master_data["supplier_id"],
            quantity=Decimal(quantity),
            unit=unit,
            unit_price=Decimal(unit_price),
            purchase_date=purchase_date,
            **extra,
        )
        return purchase.id

    return _make


@pytest.fixture(scope="function")
def make_unlinked_delivery(ledger, master_data):
    """Livraison en saisie directe : toutes les lignes non liées. Renvoie (delivery_id, [item_ids])."""

    def _make(*quantities, product_name="Tomato", unit="kg", unit_price="500"):
        delivery = ledger.create_delivery(
            customer_id=master_data["customer_id"],
            delivery_date=date(2026, 4, 10),
            lines=[
                DeliveryLine(
                    quantity=Decimal(str(q)),
                    unit_price=Decimal(unit_price),
                    product_name=product_name,
                    unit=unit,
                )
                for q in quantities
            ],
        )
        return delivery.id, [item.id for item in delivery.items]

    return _make
