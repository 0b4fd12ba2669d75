"""
Règles de dérivation du stock.

Source unique de vérité pour :
    - le statut d'un achat (UNUSED / PARTIAL / USED)
    - le statut de liaison d'une livraison (UNLINKED / LINKED)

Le chemin d'allocation, la libération (suppression de livraison),
la correction de quantité et le job de réconciliation passent TOUS par ici.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Iterable

from backend.app.db.models.core_types import PurchaseLinkStatus, PurchaseStatus


def derive_status(remaining: Decimal, total: Decimal) -> PurchaseStatus:
    """
    remaining == total      -> UNUSED
    0 < remaining < total   -> PARTIAL
    remaining == 0          -> USED
    """
    remaining = Decimal(remaining)
    total = Decimal(total)

    if remaining < 0 or remaining > total:
        raise ValueError(f"remaining quantity {remaining} out of range [0, {total}]")

    if remaining == 0:
        return PurchaseStatus.used
    if remaining == total:
        return PurchaseStatus.unused
    return PurchaseStatus.partial


def derive_link_status(items: Iterable) -> PurchaseLinkStatus:
    """LINKED ssi chaque ligne a une référence d'achat."""
    if all(item.purchase_id is not None for item in items):
        return PurchaseLinkStatus.linked
    return PurchaseLinkStatus.unlinked
