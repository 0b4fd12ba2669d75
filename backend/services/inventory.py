from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Iterable

from sqlalchemy import select, or_
from sqlalchemy.orm import Session, contains_eager, joinedload

from backend.app.db.models.models_v1 import (
    Category,
    Delivery,
    DeliveryItem,
    Purchase,
)
from backend.app.db.models.core_types import PurchaseLinkStatus, PurchaseStatus
from backend.services.errors import (
    AlreadyLinkedError,
    InsufficientStockError,
    InvalidQuantityError,
    NotFoundError,
)
from backend.services.stock_status import derive_link_status, derive_status


@dataclass(frozen=True)
class AllocationResult:
    delivery_item_id: int
    purchase_id: int
    delivery_id: int
    quantity: Decimal
    remaining_quantity: Decimal
    purchase_status: PurchaseStatus
    purchase_link_status: PurchaseLinkStatus


# ---------- VERROUS (FOR UPDATE) ----------
# Ordre de verrouillage toujours identique : ligne -> livraison -> achat(s)

def lock_delivery_item(db: Session, delivery_item_id: int) -> DeliveryItem | None:
    return (
        db.execute(
            select(DeliveryItem)
            .where(DeliveryItem.id == delivery_item_id)
            .with_for_update()
        )
        .scalar_one_or_none()
    )


def lock_delivery(db: Session, delivery_id: int) -> Delivery | None:
    return (
        db.execute(
            select(Delivery)
            .where(Delivery.id == delivery_id)
            .with_for_update()
        )
        .scalar_one_or_none()
    )


def lock_purchase(db: Session, purchase_id: int) -> Purchase | None:
    return (
        db.execute(
            select(Purchase)
            .where(Purchase.id == purchase_id)
            .with_for_update()
        )
        .scalar_one_or_none()
    )


def lock_purchases(db: Session, purchase_ids: Iterable[int]) -> dict[int, Purchase]:
    """Verrouille plusieurs achats, par id croissant (évite les deadlocks)."""
    ids = sorted({int(pid) for pid in purchase_ids if pid is not None})
    if not ids:
        return {}

    rows = (
        db.execute(
            select(Purchase)
            .where(Purchase.id.in_(ids))
            .order_by(Purchase.id.asc())
            .with_for_update()
        )
        .scalars()
        .all()
    )
    return {int(p.id): p for p in rows}


# ---------- QUANTITÉS ----------
# Colonnes Numeric(14, 3) : 11 chiffres entiers, 3 décimales
QUANTITY_STEP = Decimal("0.001")
QUANTITY_LIMIT = Decimal("100000000000")


def check_quantity(value, what: str) -> Decimal:
    """
    Valide une quantité AVANT écriture : > 0, au plus 3 décimales.

    Sans ça la base arrondit en silence (0.0004 -> 0.000) et le statut
    dérivé ne correspond plus au reste stocké.
    """
    quantity = Decimal(value)
    if not quantity.is_finite() or quantity <= 0:
        raise InvalidQuantityError(f"{what} quantity must be positive (got {value})")
    if quantity >= QUANTITY_LIMIT:
        raise InvalidQuantityError(f"{what} quantity {value} is too large")
    if quantity != quantity.quantize(QUANTITY_STEP):
        raise InvalidQuantityError(f"{what} quantity {value} has more than 3 decimal places")
    return quantity


# ---------- MUTATIONS ----------
def consume_stock(purchase: Purchase, quantity: Decimal) -> None:
    """
    Décrémente le reste d'un achat VERROUILLÉ et re-dérive son statut.
    Aucune écriture si le stock est insuffisant.
    """
    quantity = check_quantity(quantity, "allocation")

    if purchase.remaining_quantity < quantity:
        raise InsufficientStockError(
            product_name=purchase.product_name,
            available=purchase.remaining_quantity,
            unit=purchase.unit,
            requested=quantity,
        )

    purchase.remaining_quantity = purchase.remaining_quantity - quantity
    purchase.status = derive_status(purchase.remaining_quantity, purchase.quantity)


def restore_stock(purchase: Purchase, quantity: Decimal) -> None:
    """Inverse de consume_stock (suppression d'une livraison)."""
    restored = purchase.remaining_quantity + Decimal(quantity)
    if restored > purchase.quantity:
        raise InvalidQuantityError(
            f"cannot restore {quantity} to purchase {purchase.id}: "
            f"remaining would exceed total ({restored} > {purchase.quantity})"
        )

    purchase.remaining_quantity = restored
    purchase.status = derive_status(purchase.remaining_quantity, purchase.quantity)


def refresh_link_status(delivery: Delivery) -> PurchaseLinkStatus:
    """
    Recalcule purchase_link_status à partir des lignes.

    updated_at est toujours réécrit : la livraison est toujours UPDATE-ée,
    donc son compteur de version avance même si le statut ne change pas.
    """
    delivery.purchase_link_status = derive_link_status(delivery.items)
    delivery.updated_at = datetime.now(timezone.utc)
    return delivery.purchase_link_status


# ---------- ALLOCATION ----------
def allocate_item(db: Session, *, delivery_item_id: int, purchase_id: int) -> AllocationResult:
    """
    Lie une ligne de livraison à un achat (dans la transaction de `db`).

    Préconditions (dans cet ordre) :
        1. la ligne existe                  -> NotFoundError
        2. la ligne n'est pas déjà liée     -> AlreadyLinkedError
        3. l'achat existe                   -> NotFoundError
        4. remaining >= quantité demandée   -> InsufficientStockError

    Le commit est à la charge de l'appelant (StockLedger).
    """
    item = lock_delivery_item(db, delivery_item_id)
    if item is None:
        raise NotFoundError("delivery_item", delivery_item_id)

    if item.purchase_id is not None:
        raise AlreadyLinkedError(delivery_item_id, item.purchase_id)

    delivery = lock_delivery(db, item.delivery_id)
    if delivery is None:
        raise NotFoundError("delivery", item.delivery_id)

    purchase = lock_purchase(db, purchase_id)
    if purchase is None:
        raise NotFoundError("purchase", purchase_id)

    consume_stock(purchase, item.quantity)
    item.purchase_id = purchase.id

    # version check (StaleDataError) ici si une autre transaction est passée avant
    db.flush()

    link_status = refresh_link_status(delivery)
    db.flush()

    return AllocationResult(
        delivery_item_id=int(item.id),
        purchase_id=int(purchase.id),
        delivery_id=int(delivery.id),
        quantity=item.quantity,
        remaining_quantity=purchase.remaining_quantity,
        purchase_status=purchase.status,
        purchase_link_status=link_status,
    )


# ---------- LECTURE ----------
def like_pattern(search: str) -> str:
    escaped = search.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


def query_available(db: Session, search: str | None = None) -> list[Purchase]:
    """
    Achats avec du reste (> 0), politique FIFO :
    plus ancien d'abord, puis nom produit, puis id.
    """
    stmt = (
        select(Purchase)
        .join(Category, Category.id == Purchase.category_id)
        .options(contains_eager(Purchase.category), joinedload(Purchase.supplier))
        .where(Purchase.remaining_quantity > 0)
        .order_by(
            Purchase.purchase_date.asc(),
            Purchase.product_name.asc(),
            Purchase.id.asc(),
        )
    )

    if search and search.strip():
        pattern = like_pattern(search.strip())
        stmt = stmt.where(
            or_(
                Purchase.product_name.ilike(pattern, escape="\\"),
                Category.name.ilike(pattern, escape="\\"),
            )
        )

    return list(db.execute(stmt).scalars().all())
