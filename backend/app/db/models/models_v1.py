from __future__ import annotations

from datetime import datetime, date, timezone
from decimal import Decimal

from sqlalchemy import (
    String,
    Integer,
    BigInteger,
    DateTime,
    Date,
    ForeignKey,
    Numeric,
    Text,
    Enum,
    Index,
    CheckConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from backend.app.db.base import Base
from backend.app.db.models.core_types import (
    PurchaseStatus,
    TaxType,
    DeliveryStatus,
    PurchaseLinkStatus,
)

# SQLite n'auto-incrémente que INTEGER PRIMARY KEY
BigIntPK = BigInteger().with_variant(Integer, "sqlite")

# Quantités en unités décimales (kg, caisses, bottes...)
Quantity = Numeric(14, 3)
Money = Numeric(14, 2)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------- MASTER DATA (gérées hors de ce service) ----------
class Category(Base):
    __tablename__ = "categories"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    name: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    display_order: Mapped[int] = mapped_column(Integer, default=0, nullable=False)


class Supplier(Base):
    __tablename__ = "suppliers"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    company_name: Mapped[str] = mapped_column(String(255), nullable=False)
    contact_person: Mapped[str | None] = mapped_column(String(100))
    phone: Mapped[str | None] = mapped_column(String(32))


class Customer(Base):
    __tablename__ = "customers"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    company_name: Mapped[str] = mapped_column(String(255), nullable=False)
    contact_person: Mapped[str | None] = mapped_column(String(100))
    delivery_address: Mapped[str | None] = mapped_column(Text)


# ---------- STOCK LEDGER ----------
class Purchase(Base):
    """
    Une entrée de stock (un achat).

    remaining_quantity n'est modifié que par le StockLedger,
    status est TOUJOURS dérivé via derive_status().
    """

    __tablename__ = "purchases"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    product_name: Mapped[str] = mapped_column(String(255), nullable=False)
    category_id: Mapped[int] = mapped_column(ForeignKey("categories.id", ondelete="RESTRICT"), nullable=False)
    supplier_id: Mapped[int] = mapped_column(ForeignKey("suppliers.id", ondelete="RESTRICT"), nullable=False)

    quantity: Mapped[Decimal] = mapped_column(Quantity, nullable=False)
    unit: Mapped[str] = mapped_column(String(32), nullable=False)
    unit_note: Mapped[str | None] = mapped_column(String(255))
    unit_price: Mapped[Decimal] = mapped_column(Money, nullable=False)
    price: Mapped[Decimal] = mapped_column(Money, nullable=False)
    tax_type: Mapped[TaxType] = mapped_column(Enum(TaxType, name="tax_type"), default=TaxType.taxable, nullable=False)

    purchase_date: Mapped[date] = mapped_column(Date, nullable=False)
    expiry_date: Mapped[date | None] = mapped_column(Date)
    delivery_fee: Mapped[str | None] = mapped_column(String(64))

    remaining_quantity: Mapped[Decimal] = mapped_column(Quantity, nullable=False)
    status: Mapped[PurchaseStatus] = mapped_column(
        Enum(PurchaseStatus, name="purchase_status"),
        default=PurchaseStatus.unused,
        nullable=False,
    )

    # Verrou optimiste (UPDATE ... WHERE version = ?)
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=_utcnow,
        onupdate=_utcnow,
        nullable=False,
    )

    category: Mapped[Category] = relationship()
    supplier: Mapped[Supplier] = relationship()

    __mapper_args__ = {"version_id_col": version}
    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_purchase_qty_pos"),
        CheckConstraint("remaining_quantity >= 0", name="ck_purchase_remaining_nonneg"),
        CheckConstraint("remaining_quantity <= quantity", name="ck_purchase_remaining_le_qty"),
        CheckConstraint("unit_price >= 0", name="ck_purchase_unit_price_nonneg"),
        # FIFO : listAvailable trie sur (purchase_date, product_name)
        Index("ix_purchases_fifo", "purchase_date", "product_name"),
    )


class Delivery(Base):
    __tablename__ = "deliveries"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    customer_id: Mapped[int] = mapped_column(ForeignKey("customers.id", ondelete="RESTRICT"), nullable=False)
    delivery_date: Mapped[date] = mapped_column(Date, nullable=False)
    total_amount: Mapped[Decimal] = mapped_column(Money, default=0, nullable=False)
    status: Mapped[DeliveryStatus] = mapped_column(
        Enum(DeliveryStatus, name="delivery_status"),
        default=DeliveryStatus.pending,
        nullable=False,
    )
    purchase_link_status: Mapped[PurchaseLinkStatus] = mapped_column(
        Enum(PurchaseLinkStatus, name="purchase_link_status"),
        default=PurchaseLinkStatus.unlinked,
        nullable=False,
        index=True,
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=_utcnow,
        onupdate=_utcnow,
        nullable=False,
    )

    customer: Mapped[Customer] = relationship()
    items: Mapped[list["DeliveryItem"]] = relationship(
        back_populates="delivery",
        cascade="all, delete-orphan",
        order_by="DeliveryItem.id",
    )

    __mapper_args__ = {"version_id_col": version}


class DeliveryItem(Base):
    __tablename__ = "delivery_items"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    delivery_id: Mapped[int] = mapped_column(
        ForeignKey("deliveries.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    # NULL tant que la ligne n'est pas liée à un achat
    purchase_id: Mapped[int | None] = mapped_column(
        ForeignKey("purchases.id", ondelete="RESTRICT"),
        index=True,
    )
    product_name: Mapped[str] = mapped_column(String(255), nullable=False)
    unit: Mapped[str] = mapped_column(String(32), nullable=False)
    quantity: Mapped[Decimal] = mapped_column(Quantity, nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(Money, nullable=False)
    amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    delivery: Mapped[Delivery] = relationship(back_populates="items")
    purchase: Mapped[Purchase | None] = relationship()

    __mapper_args__ = {"version_id_col": version}
    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_delivery_item_qty_pos"),
        CheckConstraint("unit_price >= 0", name="ck_delivery_item_unit_price_nonneg"),
    )
