from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field

from backend.app.db.models.core_types import DeliveryStatus, PurchaseLinkStatus, PurchaseStatus


class DeliveryItemCreate(BaseModel):
    purchase_id: int | None = None
    product_name: str | None = Field(default=None, min_length=1, max_length=255)
    unit: str | None = Field(default=None, min_length=1, max_length=32)
    quantity: Decimal = Field(gt=0, max_digits=14, decimal_places=3)
    unit_price: Decimal = Field(ge=0, max_digits=14, decimal_places=2)


class DeliveryCreate(BaseModel):
    customer_id: int
    delivery_date: date
    items: list[DeliveryItemCreate] = Field(min_length=1)


class DeliveryUpdate(BaseModel):
    # champs absents = inchangés ; items fourni = remplacement complet des lignes
    customer_id: int | None = None
    delivery_date: date | None = None
    status: DeliveryStatus | None = None
    items: list[DeliveryItemCreate] | None = Field(default=None, min_length=1)


class LinkPurchase(BaseModel):
    delivery_item_id: int
    purchase_id: int


class DeliveryItemRead(BaseModel):
    id: int
    purchase_id: int | None
    product_name: str
    unit: str
    quantity: Decimal
    unit_price: Decimal
    amount: Decimal

    model_config = ConfigDict(from_attributes=True)


class DeliveryRead(BaseModel):
    id: int
    customer_id: int
    delivery_date: date
    total_amount: Decimal
    status: DeliveryStatus
    purchase_link_status: PurchaseLinkStatus
    created_at: datetime
    items: list[DeliveryItemRead]

    model_config = ConfigDict(from_attributes=True)


class AllocationRead(BaseModel):
    delivery_item_id: int
    purchase_id: int
    delivery_id: int
    quantity: Decimal
    remaining_quantity: Decimal
    purchase_status: PurchaseStatus
    purchase_link_status: PurchaseLinkStatus

    model_config = ConfigDict(from_attributes=True)


class Pagination(BaseModel):
    total: int
    page: int
    limit: int
    total_pages: int


class DeliveryPage(BaseModel):
    deliveries: list[DeliveryRead]
    pagination: Pagination
