"""
Livraisons : création, modification, suppression, listes.

Toute ligne liée à un achat passe par consume_stock / restore_stock
(backend.services.inventory), sous les mêmes verrous que l'allocation.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Sequence

from sqlalchemy import select, func, or_
from sqlalchemy.orm import Session, contains_eager, joinedload, selectinload

from backend.app.db.models.models_v1 import Customer, Delivery, DeliveryItem, Purchase
from backend.app.db.models.core_types import DeliveryStatus, PurchaseLinkStatus
from backend.services.errors import NotFoundError, ValidationError
from backend.services.inventory import (
    check_quantity,
    consume_stock,
    like_pattern,
    lock_delivery,
    lock_purchases,
    refresh_link_status,
    restore_stock,
)
from backend.services.procurement import line_price, month_bounds

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DeliveryLine:
    """
    Ligne demandée.
    purchase_id renseigné -> allouée tout de suite ;
    sinon saisie directe (product_name + unit), liée plus tard.
    """

    quantity: Decimal
    unit_price: Decimal
    purchase_id: int | None = None
    product_name: str | None = None
    unit: str | None = None


def _build_items(lines: Sequence[DeliveryLine], purchases: dict[int, Purchase]) -> list[DeliveryItem]:
    """Construit les lignes et consomme le stock des lignes liées (achats déjà verrouillés)."""
    if not lines:
        raise ValidationError("a delivery needs at least one item")

    items: list[DeliveryItem] = []
    for ln in lines:
        quantity = check_quantity(ln.quantity, "item")
        unit_price = Decimal(ln.unit_price)
        product_name, unit = ln.product_name, ln.unit

        if ln.purchase_id is not None:
            purchase = purchases.get(int(ln.purchase_id))
            if purchase is None:
                raise NotFoundError("purchase", ln.purchase_id)

            # plusieurs lignes sur le même achat : les décréments s'additionnent
            consume_stock(purchase, quantity)
            product_name = product_name or purchase.product_name
            unit = unit or purchase.unit
        elif not product_name or not unit:
            raise ValidationError("unlinked items need product_name and unit")

        items.append(
            DeliveryItem(
                purchase_id=ln.purchase_id,
                product_name=product_name,
                unit=unit,
                quantity=quantity,
                unit_price=unit_price,
                amount=line_price(quantity, unit_price),
            )
        )
    return items


def _check_customer(db: Session, customer_id: int) -> None:
    if not db.get(Customer, customer_id):
        raise NotFoundError("customer", customer_id)


def _lock_items(db: Session, delivery_id: int) -> list[DeliveryItem]:
    return list(
        db.execute(
            select(DeliveryItem)
            .where(DeliveryItem.delivery_id == delivery_id)
            .order_by(DeliveryItem.id.asc())
            .with_for_update()
        )
        .scalars()
        .all()
    )


def create_delivery(
    db: Session,
    *,
    customer_id: int,
    delivery_date: date,
    lines: Sequence[DeliveryLine],
    status: DeliveryStatus = DeliveryStatus.pending,
) -> Delivery:
    _check_customer(db, customer_id)

    # lock tous les achats concernés AVANT toute écriture
    purchases = lock_purchases(db, [ln.purchase_id for ln in lines])
    items = _build_items(lines, purchases)

    delivery = Delivery(
        customer_id=customer_id,
        delivery_date=delivery_date,
        total_amount=sum((it.amount for it in items), Decimal("0")),
        status=status,
        items=items,
    )
    refresh_link_status(delivery)
    db.add(delivery)
    db.flush()

    logger.info(
        "Delivery %s created: %d item(s), total=%s, link_status=%s",
        delivery.id,
        len(items),
        delivery.total_amount,
        delivery.purchase_link_status.value,
    )
    return delivery


def update_delivery(
    db: Session,
    delivery_id: int,
    *,
    customer_id: int | None = None,
    delivery_date: date | None = None,
    status: DeliveryStatus | None = None,
    lines: Sequence[DeliveryLine] | None = None,
) -> Delivery:
    """
    Modifie une livraison.

    Si `lines` est fourni, les lignes sont REMPLACÉES : le stock des anciennes
    lignes liées est rendu, puis celui des nouvelles est consommé, dans la même
    transaction. Un stock insuffisant annule tout.
    """
    # lignes -> livraison -> achats (anciens + nouveaux, id croissant)
    old_items = _lock_items(db, delivery_id)

    delivery = lock_delivery(db, delivery_id)
    if delivery is None:
        raise NotFoundError("delivery", delivery_id)

    if customer_id is not None and customer_id != delivery.customer_id:
        _check_customer(db, customer_id)
        delivery.customer_id = customer_id
    if delivery_date is not None:
        delivery.delivery_date = delivery_date
    if status is not None:
        delivery.status = status

    if lines is not None:
        purchases = lock_purchases(
            db,
            [it.purchase_id for it in old_items] + [ln.purchase_id for ln in lines],
        )
        for it in old_items:
            if it.purchase_id is not None:
                restore_stock(purchases[int(it.purchase_id)], it.quantity)

        new_items = _build_items(lines, purchases)
        # delete-orphan : les anciennes lignes sont supprimées au flush
        delivery.items = new_items
        delivery.total_amount = sum((it.amount for it in new_items), Decimal("0"))

    refresh_link_status(delivery)
    db.flush()

    logger.info(
        "Delivery %s updated: status=%s, total=%s, link_status=%s%s",
        delivery.id,
        delivery.status.value,
        delivery.total_amount,
        delivery.purchase_link_status.value,
        " (items replaced)" if lines is not None else "",
    )
    return delivery


def delete_delivery(db: Session, delivery_id: int) -> None:
    """
    Supprime une livraison et rend au stock la quantité de chaque ligne liée.
    """
    # même ordre de verrous que l'allocation : lignes -> livraison -> achats
    items = _lock_items(db, delivery_id)

    delivery = lock_delivery(db, delivery_id)
    if delivery is None:
        raise NotFoundError("delivery", delivery_id)

    purchases = lock_purchases(db, [it.purchase_id for it in items])
    for it in items:
        if it.purchase_id is None:
            continue
        restore_stock(purchases[int(it.purchase_id)], it.quantity)

    db.delete(delivery)
    db.flush()

    logger.info(
        "Delivery %s deleted, stock restored on %d purchase(s)",
        delivery_id,
        len(purchases),
    )


# ---------- LECTURE ----------
def get_delivery(db: Session, delivery_id: int) -> Delivery:
    delivery = (
        db.execute(
            select(Delivery)
            .where(Delivery.id == delivery_id)
            .options(selectinload(Delivery.items), joinedload(Delivery.customer))
        )
        .scalars()
        .first()
    )
    if delivery is None:
        raise NotFoundError("delivery", delivery_id)
    return delivery


def list_deliveries(
    db: Session,
    *,
    customer_id: int | None = None,
    month: str | None = None,
    status: DeliveryStatus | None = None,
    search: str | None = None,
    page: int = 1,
    limit: int = 20,
) -> tuple[list[Delivery], int]:
    """
    Livraisons filtrées, plus récentes d'abord, paginées.
    Renvoie (page courante, total toutes pages).
    """
    if page < 1 or limit < 1:
        raise ValidationError("page and limit must be >= 1")

    filters = []
    if customer_id is not None:
        filters.append(Delivery.customer_id == customer_id)
    if month:
        start, end = month_bounds(month)
        filters.append(Delivery.delivery_date >= start)
        filters.append(Delivery.delivery_date < end)
    if status is not None:
        filters.append(Delivery.status == status)
    if search and search.strip():
        pattern = like_pattern(search.strip())
        filters.append(
            or_(
                Customer.company_name.ilike(pattern, escape="\\"),
                Delivery.items.any(DeliveryItem.product_name.ilike(pattern, escape="\\")),
            )
        )

    total = db.execute(
        select(func.count(Delivery.id))
        .join(Customer, Customer.id == Delivery.customer_id)
        .where(*filters)
    ).scalar_one()

    rows = (
        db.execute(
            select(Delivery)
            .join(Customer, Customer.id == Delivery.customer_id)
            .where(*filters)
            .options(selectinload(Delivery.items), contains_eager(Delivery.customer))
            .order_by(Delivery.delivery_date.desc(), Delivery.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
        .scalars()
        .all()
    )
    return list(rows), int(total)


def list_unlinked_deliveries(db: Session) -> list[Delivery]:
    rows = (
        db.execute(
            select(Delivery)
            .where(Delivery.purchase_link_status == PurchaseLinkStatus.unlinked)
            .options(selectinload(Delivery.items), joinedload(Delivery.customer))
            .order_by(Delivery.created_at.desc(), Delivery.id.desc())
        )
        .scalars()
        .all()
    )
    return list(rows)
