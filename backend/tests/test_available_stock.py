from datetime import date

from backend.app.db.models.core_types import PurchaseStatus


def test_fifo_oldest_purchase_first(ledger, make_purchase):
    d2 = make_purchase(product_name="Carrot", purchase_date=date(2026, 4, 2))
    d3 = make_purchase(product_name="Carrot", purchase_date=date(2026, 4, 3))
    d1 = make_purchase(product_name="Carrot", purchase_date=date(2026, 4, 1))

    assert [p.id for p in ledger.list_available()] == [d1, d2, d3]


def test_same_day_ordered_by_product_name(ledger, make_purchase):
    same_day = date(2026, 4, 5)
    onion = make_purchase(product_name="Onion", purchase_date=same_day)
    cabbage = make_purchase(product_name="Cabbage", purchase_date=same_day)
    older = make_purchase(product_name="Zucchini", purchase_date=date(2026, 4, 4))

    assert [p.id for p in ledger.list_available()] == [older, cabbage, onion]


def test_exhausted_purchases_are_not_available(ledger, make_purchase, make_unlinked_delivery):
    used_up = make_purchase(product_name="Leek", quantity="10")
    partial = make_purchase(product_name="Radish", quantity="10")
    _, (first, second) = make_unlinked_delivery(10, 4)
    ledger.allocate(first, used_up)
    ledger.allocate(second, partial)

    available = ledger.list_available()
    assert [p.id for p in available] == [partial]
    assert available[0].status == PurchaseStatus.partial


def test_search_matches_product_or_category_case_insensitive(ledger, make_purchase, master_data):
    tomato = make_purchase(product_name="Cherry Tomato")
    apple = make_purchase(product_name="Fuji Apple", category_id=master_data["fruits_id"])
    make_purchase(product_name="Lettuce")

    assert [p.id for p in ledger.list_available("tomato")] == [tomato]
    assert [p.id for p in ledger.list_available("FRUIT")] == [apple]
    assert ledger.list_available("durian") == []


def test_search_wildcards_are_literal(ledger, make_purchase):
    make_purchase(product_name="Basil")
    percent = make_purchase(product_name="Mix 100% organic")

    assert [p.id for p in ledger.list_available("%")] == [percent]
    assert ledger.list_available("_asil") == []


def test_available_rows_carry_category_and_supplier(ledger, make_purchase):
    make_purchase(product_name="Eggplant")

    (purchase,) = ledger.list_available()
    assert purchase.category.name == "Vegetables"
    assert purchase.supplier.company_name == "Ota Market Wholesale"
