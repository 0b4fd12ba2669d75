"""
Procurement service.

Entrées de stock (achats) : création, correction de quantité, suppression.

Le calcul du reste et du statut reste centralisé dans :
    backend.services.inventory / backend.services.stock_status
"""

from __future__ import annotations

import logging
from datetime import date
from decimal import ROUND_HALF_UP, Decimal

from sqlalchemy import select, func, or_
from sqlalchemy.orm import Session

from backend.app.db.models.models_v1 import Category, DeliveryItem, Purchase, Supplier
from backend.app.db.models.core_types import PurchaseStatus, TaxType
from backend.services.errors import InvalidQuantityError, NotFoundError, PurchaseInUseError
from backend.services.inventory import check_quantity, like_pattern, lock_purchase
from backend.services.stock_status import derive_status

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")


def line_price(quantity: Decimal, unit_price: Decimal) -> Decimal:
    """quantité x prix unitaire, arrondi au centime (colonnes Numeric(14, 2))."""
    return (Decimal(quantity) * Decimal(unit_price)).quantize(CENT, rounding=ROUND_HALF_UP)


def record_purchase(
    db: Session,
    *,
    product_name: str,
    category_id: int,
    supplier_id: int,
    quantity: Decimal,
    unit: str,
    unit_price: Decimal,
    purchase_date: date,
    price: Decimal | None = None,
    unit_note: str | None = None,
    tax_type: TaxType = TaxType.taxable,
    expiry_date: date | None = None,
    delivery_fee: str | None = None,
) -> Purchase:
    """Nouvel achat : reste = quantité, statut UNUSED."""
    quantity = check_quantity(quantity, "purchase")
    unit_price = Decimal(unit_price)

    # FK checks (fail fast, message clair)
    if not db.get(Category, category_id):
        raise NotFoundError("category", category_id)
    if not db.get(Supplier, supplier_id):
        raise NotFoundError("supplier", supplier_id)

    purchase = Purchase(
        product_name=product_name,
        category_id=category_id,
        supplier_id=supplier_id,
        quantity=quantity,
        unit=unit,
        unit_note=unit_note,
        unit_price=unit_price,
        price=Decimal(price) if price is not None else line_price(quantity, unit_price),
        tax_type=tax_type,
        purchase_date=purchase_date,
        expiry_date=expiry_date,
        delivery_fee=delivery_fee,
        remaining_quantity=quantity,
        status=derive_status(quantity, quantity),
    )
    db.add(purchase)
    db.flush()  # get purchase.id

    logger.info(
        "Purchase %s recorded: %s %s%s",
        purchase.id,
        product_name,
        quantity,
        unit,
    )
    return purchase


def update_purchase_quantity(db: Session, purchase_id: int, quantity: Decimal) -> Purchase:
    """
    Corrige la quantité totale d'un achat.

    La quantité déjà consommée (quantity - remaining) est conservée :
        remaining = nouvelle quantité - consommé
    Refusé si la nouvelle quantité est inférieure au consommé.
    """
    quantity = check_quantity(quantity, "purchase")

    purchase = lock_purchase(db, purchase_id)
    if purchase is None:
        raise NotFoundError("purchase", purchase_id)

    consumed = purchase.quantity - purchase.remaining_quantity
    if quantity < consumed:
        raise InvalidQuantityError(
            f"purchase {purchase_id}: new quantity {quantity} is below "
            f"the already allocated quantity {consumed}"
        )

    # prix saisi à la main : conservé ; prix calculé : suit la quantité
    if purchase.price == line_price(purchase.quantity, purchase.unit_price):
        purchase.price = line_price(quantity, purchase.unit_price)

    purchase.quantity = quantity
    purchase.remaining_quantity = quantity - consumed
    purchase.status = derive_status(purchase.remaining_quantity, purchase.quantity)
    db.flush()
    return purchase


def delete_purchase(db: Session, purchase_id: int) -> None:
    purchase = lock_purchase(db, purchase_id)
    if purchase is None:
        raise NotFoundError("purchase", purchase_id)

    item_count = db.execute(
        select(func.count(DeliveryItem.id)).where(DeliveryItem.purchase_id == purchase_id)
    ).scalar_one()
    if item_count:
        raise PurchaseInUseError(purchase_id, int(item_count))

    db.delete(purchase)
    db.flush()
    logger.info("Purchase %s deleted", purchase_id)


# ---------- LECTURE ----------
def get_purchase(db: Session, purchase_id: int) -> Purchase:
    purchase = db.get(Purchase, purchase_id)
    if purchase is None:
        raise NotFoundError("purchase", purchase_id)
    return purchase


def month_bounds(month: str) -> tuple[date, date]:
    # "YYYY-MM" -> [1er du mois, 1er du mois suivant[
    year, month_num = (int(part) for part in month.split("-", 1))
    start = date(year, month_num, 1)
    end = date(year + 1, 1, 1) if month_num == 12 else date(year, month_num + 1, 1)
    return start, end


def list_purchases(
    db: Session,
    *,
    status: PurchaseStatus | None = None,
    search: str | None = None,
    month: str | None = None,
) -> list[Purchase]:
    stmt = (
        select(Purchase)
        .join(Supplier, Supplier.id == Purchase.supplier_id)
        .order_by(Purchase.purchase_date.desc(), Purchase.id.desc())
    )

    if status is not None:
        stmt = stmt.where(Purchase.status == status)

    if month:
        start, end = month_bounds(month)
        stmt = stmt.where(Purchase.purchase_date >= start, Purchase.purchase_date < end)

    if search and search.strip():
        pattern = like_pattern(search.strip())
        stmt = stmt.where(
            or_(
                Purchase.product_name.ilike(pattern, escape="\\"),
                Supplier.company_name.ilike(pattern, escape="\\"),
            )
        )

    return list(db.execute(stmt).scalars().all())
