from datetime import date
from decimal import Decimal

import pytest

from backend.app.db.models.core_types import PurchaseStatus
from backend.app.db.models.models_v1 import Purchase
from backend.services import procurement
from backend.services.errors import (
    InvalidQuantityError,
    NotFoundError,
    PurchaseInUseError,
)


def _load(session_factory, pk):
    with session_factory() as db:
        return db.get(Purchase, pk)


def test_record_purchase_starts_unused(ledger, master_data):
    purchase = ledger.record_purchase(
        product_name="Shiitake",
        category_id=master_data["vegetables_id"],
        supplier_id=master_data["supplier_id"],
        quantity=Decimal("12.5"),
        unit="kg",
        unit_price=Decimal("1200"),
        purchase_date=date(2026, 4, 1),
        expiry_date=date(2026, 4, 8),
    )

    assert purchase.remaining_quantity == purchase.quantity == Decimal("12.5")
    assert purchase.status == PurchaseStatus.unused
    assert purchase.price == Decimal("15000")
    assert purchase.version == 1


def test_record_purchase_checks_master_data(ledger, master_data):
    fields = dict(
        product_name="Shiitake",
        supplier_id=master_data["supplier_id"],
        quantity=Decimal("1"),
        unit="kg",
        unit_price=Decimal("1"),
        purchase_date=date(2026, 4, 1),
    )
    with pytest.raises(NotFoundError) as exc_info:
        ledger.record_purchase(category_id=999_999, **fields)
    assert exc_info.value.entity == "category"

    with pytest.raises(InvalidQuantityError):
        ledger.record_purchase(**{**fields, "quantity": Decimal("0")}, category_id=master_data["vegetables_id"])


def test_quantity_correction_keeps_allocated_part(ledger, session_factory, make_purchase, make_unlinked_delivery):
    purchase_id = make_purchase(quantity="100")
    _, (item_id,) = make_unlinked_delivery(40)
    ledger.allocate(item_id, purchase_id)

    updated = ledger.update_purchase_quantity(purchase_id, Decimal("120"))
    assert updated.remaining_quantity == Decimal("80")
    assert updated.status == PurchaseStatus.partial

    updated = ledger.update_purchase_quantity(purchase_id, Decimal("40"))
    assert updated.remaining_quantity == Decimal("0")
    assert updated.status == PurchaseStatus.used


def test_quantity_correction_below_allocated_is_refused(ledger, session_factory, make_purchase, make_unlinked_delivery):
    purchase_id = make_purchase(quantity="100")
    _, (item_id,) = make_unlinked_delivery(40)
    ledger.allocate(item_id, purchase_id)

    with pytest.raises(InvalidQuantityError, match="below the already allocated"):
        ledger.update_purchase_quantity(purchase_id, Decimal("39"))

    purchase = _load(session_factory, purchase_id)
    assert purchase.quantity == Decimal("100")
    assert purchase.remaining_quantity == Decimal("60")


def test_delete_purchase_refused_while_referenced(ledger, session_factory, make_purchase, make_unlinked_delivery):
    purchase_id = make_purchase(quantity="100")
    _, (item_id,) = make_unlinked_delivery(1)
    ledger.allocate(item_id, purchase_id)

    with pytest.raises(PurchaseInUseError) as exc_info:
        ledger.delete_purchase(purchase_id)
    assert exc_info.value.item_count == 1
    assert _load(session_factory, purchase_id) is not None


def test_delete_unreferenced_purchase(ledger, session_factory, make_purchase):
    purchase_id = make_purchase()

    ledger.delete_purchase(purchase_id)

    assert _load(session_factory, purchase_id) is None
    with pytest.raises(NotFoundError):
        ledger.delete_purchase(purchase_id)


def test_list_purchases_filters(session_factory, make_purchase, make_unlinked_delivery, ledger):
    march = make_purchase(product_name="Turnip", purchase_date=date(2026, 3, 31))
    april = make_purchase(product_name="Burdock", purchase_date=date(2026, 4, 1))
    _, (item_id,) = make_unlinked_delivery(10)
    ledger.allocate(item_id, april)

    with session_factory() as db:
        assert [p.id for p in procurement.list_purchases(db)] == [april, march]
        assert [p.id for p in procurement.list_purchases(db, month="2026-03")] == [march]
        assert [p.id for p in procurement.list_purchases(db, status=PurchaseStatus.partial)] == [april]
        assert [p.id for p in procurement.list_purchases(db, search="ota market")] == [april, march]
        assert [p.id for p in procurement.list_purchases(db, search="turn")] == [march]


def test_quantities_beyond_three_decimals_are_refused(ledger, session_factory, make_purchase):
    """
    GIVEN des colonnes Numeric(14, 3)
    THEN 0.0004 est refusé AVANT écriture (la base l'arrondirait à 0.000)
    """
    with pytest.raises(InvalidQuantityError, match="more than 3 decimal places"):
        make_purchase(quantity="0.0004")

    with session_factory() as db:
        assert procurement.list_purchases(db) == []

    purchase_id = make_purchase(quantity="2.5")
    with pytest.raises(InvalidQuantityError, match="more than 3 decimal places"):
        ledger.update_purchase_quantity(purchase_id, Decimal("2.5001"))

    # zéros non significatifs : OK
    updated = ledger.update_purchase_quantity(purchase_id, Decimal("3.0000"))
    assert updated.remaining_quantity == Decimal("3")
    assert updated.status == PurchaseStatus.unused


def test_quantity_correction_keeps_manual_price(ledger, make_purchase):
    computed = make_purchase(quantity="100", unit_price="300")
    manual = make_purchase(quantity="100", unit_price="300", price=Decimal("25000"))

    assert ledger.update_purchase_quantity(computed, Decimal("120")).price == Decimal("36000")
    assert ledger.update_purchase_quantity(manual, Decimal("120")).price == Decimal("25000")


def test_list_purchases_search_wildcards_are_literal(session_factory, make_purchase):
    make_purchase(product_name="Basil")
    percent = make_purchase(product_name="Mix 100% organic")

    with session_factory() as db:
        assert [p.id for p in procurement.list_purchases(db, search="%")] == [percent]
        assert procurement.list_purchases(db, search="_asil") == []
