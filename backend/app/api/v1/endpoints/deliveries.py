from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from backend.app.api.deps import get_db, get_ledger
from backend.app.db.models.core_types import DeliveryStatus
from backend.app.schemas.delivery import (
    AllocationRead,
    DeliveryCreate,
    DeliveryItemCreate,
    DeliveryPage,
    DeliveryRead,
    DeliveryUpdate,
    LinkPurchase,
)
from backend.services import deliveries
from backend.services.deliveries import DeliveryLine
from backend.services.ledger import StockLedger

router = APIRouter(prefix="/deliveries")


def _to_lines(items: list[DeliveryItemCreate]) -> list[DeliveryLine]:
    return [
        DeliveryLine(
            quantity=ln.quantity,
            unit_price=ln.unit_price,
            purchase_id=ln.purchase_id,
            product_name=ln.product_name,
            unit=ln.unit,
        )
        for ln in items
    ]


@router.get("", response_model=DeliveryPage)
def list_deliveries(
    customer_id: int | None = None,
    month: str | None = Query(default=None, pattern=r"^\d{4}-(0[1-9]|1[0-2])$"),
    status: DeliveryStatus | None = None,
    search: str | None = None,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    db: Session = Depends(get_db),
):
    rows, total = deliveries.list_deliveries(
        db,
        customer_id=customer_id,
        month=month,
        status=status,
        search=search,
        page=page,
        limit=limit,
    )
    return {
        "deliveries": [DeliveryRead.model_validate(d) for d in rows],
        "pagination": {
            "total": total,
            "page": page,
            "limit": limit,
            "total_pages": (total + limit - 1) // limit,
        },
    }


@router.get("/unlinked")
def list_unlinked(db: Session = Depends(get_db)):
    rows = deliveries.list_unlinked_deliveries(db)
    return {
        "deliveries": [DeliveryRead.model_validate(d) for d in rows],
        "count": len(rows),
    }


@router.post("", response_model=DeliveryRead, status_code=201)
def create_delivery(payload: DeliveryCreate, ledger: StockLedger = Depends(get_ledger)):
    return ledger.create_delivery(
        customer_id=payload.customer_id,
        delivery_date=payload.delivery_date,
        lines=_to_lines(payload.items),
    )


@router.get("/{delivery_id}", response_model=DeliveryRead)
def get_delivery(delivery_id: int, db: Session = Depends(get_db)):
    return deliveries.get_delivery(db, delivery_id)


@router.put("/{delivery_id}", response_model=DeliveryRead)
def update_delivery(
    delivery_id: int,
    payload: DeliveryUpdate,
    ledger: StockLedger = Depends(get_ledger),
):
    """
    Modifie client / date / statut ; `items` remplace toutes les lignes
    (stock des anciennes rendu, nouvelles allouées, tout ou rien).
    """
    return ledger.update_delivery(
        delivery_id,
        customer_id=payload.customer_id,
        delivery_date=payload.delivery_date,
        status=payload.status,
        lines=_to_lines(payload.items) if payload.items is not None else None,
    )


@router.delete("/{delivery_id}")
def delete_delivery(delivery_id: int, ledger: StockLedger = Depends(get_ledger)):
    ledger.delete_delivery(delivery_id)
    return {"ok": True}


@router.post("/link-purchase", response_model=AllocationRead)
def link_purchase(payload: LinkPurchase, ledger: StockLedger = Depends(get_ledger)):
    """
    Lie une ligne de livraison à un achat (décrément du stock).
    ALREADY_LINKED -> 409 : pour le client, "rien à faire".
    """
    return ledger.allocate(payload.delivery_item_id, payload.purchase_id)
