from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field

from backend.app.db.models.core_types import PurchaseStatus, TaxType


class PurchaseCreate(BaseModel):
    product_name: str = Field(min_length=1, max_length=255)
    category_id: int
    supplier_id: int
    quantity: Decimal = Field(gt=0, max_digits=14, decimal_places=3)
    unit: str = Field(min_length=1, max_length=32)
    unit_note: str | None = Field(default=None, max_length=255)
    unit_price: Decimal = Field(ge=0, max_digits=14, decimal_places=2)
    price: Decimal | None = Field(default=None, ge=0, max_digits=14, decimal_places=2)
    tax_type: TaxType = TaxType.taxable
    purchase_date: date
    expiry_date: date | None = None
    delivery_fee: str | None = Field(default=None, max_length=64)


class PurchaseQuantityUpdate(BaseModel):
    quantity: Decimal = Field(gt=0, max_digits=14, decimal_places=3)


class CategoryRef(BaseModel):
    id: int
    name: str

    model_config = ConfigDict(from_attributes=True)


class SupplierRef(BaseModel):
    id: int
    company_name: str

    model_config = ConfigDict(from_attributes=True)


class PurchaseRead(BaseModel):
    id: int
    product_name: str
    category_id: int
    supplier_id: int
    quantity: Decimal
    unit: str
    unit_note: str | None
    unit_price: Decimal
    price: Decimal
    tax_type: TaxType
    purchase_date: date
    expiry_date: date | None
    remaining_quantity: Decimal
    status: PurchaseStatus  # READ ONLY : dérivé, jamais écrit par le client
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class AvailablePurchaseRead(PurchaseRead):
    category: CategoryRef
    supplier: SupplierRef
