"""
Réconciliation du stock (job offline).

Règle métier :
    remaining_quantity = quantity - SUM(quantity des lignes liées)
    status             = derive_status(remaining_quantity, quantity)

Toute ligne liée compte, quel que soit l'état de la livraison :
le décrément se fait à l'allocation, la réconciliation suit la même règle.

Propriétés :
- déterministe
- idempotent (un 2e passage ne corrige plus rien)
- verrouillage SQL (FOR UPDATE)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import Decimal

from sqlalchemy import select, func
from sqlalchemy.orm import Session

from backend.app.db.models.models_v1 import DeliveryItem, Purchase
from backend.services.stock_status import derive_status

logger = logging.getLogger(__name__)


@dataclass
class PurchaseAnomaly:
    purchase_id: int
    product_name: str
    quantity: Decimal
    allocated: Decimal


@dataclass
class ReconciliationReport:
    checked: int = 0
    fixed: int = 0
    dry_run: bool = False
    fixed_ids: list[int] = field(default_factory=list)
    anomalies: list[PurchaseAnomaly] = field(default_factory=list)


def reconcile_purchases(db: Session, *, dry_run: bool = False) -> ReconciliationReport:
    report = ReconciliationReport(dry_run=dry_run)

    allocated_rows = db.execute(
        select(
            DeliveryItem.purchase_id,
            func.coalesce(func.sum(DeliveryItem.quantity), 0).label("allocated_qty"),
        )
        .where(DeliveryItem.purchase_id.is_not(None))
        .group_by(DeliveryItem.purchase_id)
    ).all()
    allocated = {int(pid): Decimal(qty) for pid, qty in allocated_rows}

    purchases = (
        db.execute(select(Purchase).order_by(Purchase.id.asc()).with_for_update())
        .scalars()
        .all()
    )

    for purchase in purchases:
        report.checked += 1
        used = allocated.get(int(purchase.id), Decimal("0"))
        expected_remaining = purchase.quantity - used

        if expected_remaining < 0:
            # sur-allocation : on ne "clampe" pas, un humain doit trancher
            logger.error(
                "Purchase %s (%s) over-allocated: quantity=%s allocated=%s",
                purchase.id,
                purchase.product_name,
                purchase.quantity,
                used,
            )
            report.anomalies.append(
                PurchaseAnomaly(
                    purchase_id=int(purchase.id),
                    product_name=purchase.product_name,
                    quantity=purchase.quantity,
                    allocated=used,
                )
            )
            continue

        expected_status = derive_status(expected_remaining, purchase.quantity)
        if purchase.remaining_quantity == expected_remaining and purchase.status == expected_status:
            continue

        logger.info(
            "Purchase %s (%s): remaining %s -> %s, status %s -> %s%s",
            purchase.id,
            purchase.product_name,
            purchase.remaining_quantity,
            expected_remaining,
            purchase.status.value,
            expected_status.value,
            " (dry run)" if dry_run else "",
        )
        report.fixed += 1
        report.fixed_ids.append(int(purchase.id))

        if not dry_run:
            purchase.remaining_quantity = expected_remaining
            purchase.status = expected_status

    db.flush()
    return report
