"""
Erreurs métier du stock ledger.

Chaque erreur porte un `code` stable (NOT_FOUND, ALREADY_LINKED, ...)
que la couche HTTP traduit en status code.
"""

from __future__ import annotations

from decimal import Decimal


class StockLedgerError(Exception):
    code = "STOCK_LEDGER_ERROR"


class NotFoundError(StockLedgerError):
    code = "NOT_FOUND"

    def __init__(self, entity: str, entity_id: int) -> None:
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} {entity_id} not found")


class AlreadyLinkedError(StockLedgerError):
    """Ligne déjà liée : pour l'appelant c'est un "rien à faire", pas un crash."""

    code = "ALREADY_LINKED"

    def __init__(self, delivery_item_id: int, purchase_id: int) -> None:
        self.delivery_item_id = delivery_item_id
        self.purchase_id = purchase_id
        super().__init__(
            f"delivery_item {delivery_item_id} is already linked to purchase {purchase_id}"
        )


class InsufficientStockError(StockLedgerError):
    code = "INSUFFICIENT_STOCK"

    def __init__(self, *, product_name: str, available: Decimal, unit: str, requested: Decimal) -> None:
        self.product_name = product_name
        self.available = available
        self.unit = unit
        self.requested = requested
        super().__init__(
            f"Insufficient stock for {product_name} "
            f"(available={_fmt(available)}{unit}, requested={_fmt(requested)})"
        )


class StorageFailureError(StockLedgerError):
    """Transaction non commitée. Rien n'a été écrit : retry possible."""

    code = "STORAGE_FAILURE"


class PurchaseInUseError(StockLedgerError):
    code = "PURCHASE_IN_USE"

    def __init__(self, purchase_id: int, item_count: int) -> None:
        self.purchase_id = purchase_id
        self.item_count = item_count
        super().__init__(
            f"purchase {purchase_id} is referenced by {item_count} delivery item(s)"
        )


class ValidationError(StockLedgerError):
    code = "VALIDATION_ERROR"


class InvalidQuantityError(ValidationError):
    code = "INVALID_QUANTITY"


def _fmt(value: Decimal) -> str:
    # 60.000 -> 60, 2.500 -> 2.5
    return format(Decimal(value).normalize(), "f")
