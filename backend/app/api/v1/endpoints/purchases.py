from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from backend.app.api.deps import get_db, get_ledger
from backend.app.db.models.core_types import PurchaseStatus
from backend.app.schemas.purchase import (
    AvailablePurchaseRead,
    PurchaseCreate,
    PurchaseQuantityUpdate,
    PurchaseRead,
)
from backend.services import procurement
from backend.services.ledger import StockLedger

router = APIRouter(prefix="/purchases")


@router.get("", response_model=list[PurchaseRead])
def list_purchases(
    status: PurchaseStatus | None = None,
    search: str | None = None,
    month: str | None = Query(default=None, pattern=r"^\d{4}-(0[1-9]|1[0-2])$"),
    db: Session = Depends(get_db),
):
    return procurement.list_purchases(db, status=status, search=search, month=month)


@router.get("/available", response_model=list[AvailablePurchaseRead])
def list_available_purchases(
    search: str | None = None,
    ledger: StockLedger = Depends(get_ledger),
):
    """
    Stock disponible (remaining > 0), FIFO : plus ancien achat d'abord.
    """
    return ledger.list_available(search)


@router.get("/{purchase_id}", response_model=PurchaseRead)
def get_purchase(purchase_id: int, db: Session = Depends(get_db)):
    return procurement.get_purchase(db, purchase_id)


@router.post("", response_model=PurchaseRead, status_code=201)
def create_purchase(payload: PurchaseCreate, ledger: StockLedger = Depends(get_ledger)):
    return ledger.record_purchase(**payload.model_dump())


@router.patch("/{purchase_id}", response_model=PurchaseRead)
def update_purchase_quantity(
    purchase_id: int,
    payload: PurchaseQuantityUpdate,
    ledger: StockLedger = Depends(get_ledger),
):
    return ledger.update_purchase_quantity(purchase_id, payload.quantity)


@router.delete("/{purchase_id}")
def delete_purchase(purchase_id: int, ledger: StockLedger = Depends(get_ledger)):
    ledger.delete_purchase(purchase_id)
    return {"ok": True}
