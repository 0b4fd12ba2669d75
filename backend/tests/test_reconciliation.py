from decimal import Decimal

from sqlalchemy import update

from backend.app.core.config import Settings
from backend.app.db.models.core_types import PurchaseStatus
from backend.app.db.models.models_v1 import DeliveryItem, Purchase
from backend.jobs import reconcile_stock
from backend.services.stock_status import derive_status


def _load(session_factory, pk):
    with session_factory() as db:
        return db.get(Purchase, pk)


def _corrupt(session_factory, purchase_id, **values):
    # écriture brute, hors ledger (simule une dérive historique)
    with session_factory() as db:
        db.execute(update(Purchase).where(Purchase.id == purchase_id).values(**values))
        db.commit()


def test_clean_ledger_needs_no_fix(ledger, make_purchase, make_unlinked_delivery):
    purchase_id = make_purchase(quantity="100")
    _, (item_id,) = make_unlinked_delivery(25)
    ledger.allocate(item_id, purchase_id)

    report = ledger.reconcile()

    assert report.checked == 1
    assert report.fixed == 0
    assert report.anomalies == []


def test_drift_is_repaired_with_shared_rule(ledger, session_factory, make_purchase, make_unlinked_delivery):
    drifted = make_purchase(product_name="Tomato", quantity="100")
    stale_status = make_purchase(product_name="Cucumber", quantity="50")
    _, (first, second) = make_unlinked_delivery(30, 50)
    ledger.allocate(first, drifted)
    ledger.allocate(second, stale_status)

    _corrupt(session_factory, drifted, remaining_quantity=Decimal("100"), status=PurchaseStatus.unused)
    _corrupt(session_factory, stale_status, status=PurchaseStatus.partial)

    report = ledger.reconcile()

    assert report.fixed == 2
    assert sorted(report.fixed_ids) == sorted([drifted, stale_status])

    tomato = _load(session_factory, drifted)
    assert tomato.remaining_quantity == Decimal("70")
    assert tomato.status == derive_status(tomato.remaining_quantity, tomato.quantity) == PurchaseStatus.partial
    assert _load(session_factory, stale_status).status == PurchaseStatus.used

    # idempotent
    assert ledger.reconcile().fixed == 0


def test_dry_run_reports_without_writing(ledger, session_factory, make_purchase, make_unlinked_delivery):
    purchase_id = make_purchase(quantity="100")
    _, (item_id,) = make_unlinked_delivery(30)
    ledger.allocate(item_id, purchase_id)
    _corrupt(session_factory, purchase_id, remaining_quantity=Decimal("90"))

    report = ledger.reconcile(dry_run=True)

    assert report.dry_run is True
    assert report.fixed_ids == [purchase_id]
    assert _load(session_factory, purchase_id).remaining_quantity == Decimal("90")


def test_over_allocation_is_reported_not_clamped(ledger, session_factory, make_purchase, make_unlinked_delivery):
    purchase_id = make_purchase(quantity="10")
    _, (first, second) = make_unlinked_delivery(8, 8)
    ledger.allocate(first, purchase_id)

    # second lien forcé hors ledger : 16 alloués pour 10 achetés
    with session_factory() as db:
        db.execute(update(DeliveryItem).where(DeliveryItem.id == second).values(purchase_id=purchase_id))
        db.commit()

    report = ledger.reconcile()

    assert report.fixed == 0
    (anomaly,) = report.anomalies
    assert anomaly.purchase_id == purchase_id
    assert anomaly.allocated == Decimal("16")
    assert _load(session_factory, purchase_id).remaining_quantity == Decimal("2")


def test_job_exit_code_reflects_anomalies(db_url, session_factory, make_purchase, make_unlinked_delivery, ledger, monkeypatch):
    monkeypatch.setattr(reconcile_stock, "get_settings", lambda: Settings(DATABASE_URL=db_url))

    purchase_id = make_purchase(quantity="10")
    _, (first, second) = make_unlinked_delivery(4, 8)
    ledger.allocate(first, purchase_id)
    _corrupt(session_factory, purchase_id, remaining_quantity=Decimal("10"))

    assert reconcile_stock.main(["--dry-run"]) == 0
    assert _load(session_factory, purchase_id).remaining_quantity == Decimal("10")

    assert reconcile_stock.main([]) == 0
    assert _load(session_factory, purchase_id).remaining_quantity == Decimal("6")

    with session_factory() as db:
        db.execute(update(DeliveryItem).where(DeliveryItem.id == second).values(purchase_id=purchase_id))
        db.commit()
    assert reconcile_stock.main([]) == 1
