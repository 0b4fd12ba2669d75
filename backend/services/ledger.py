"""
Stock Ledger.

Point d'entrée unique pour toute écriture qui touche au stock :
chaque opération tourne dans SA transaction, tout ou rien.

Concurrence :
- SELECT ... FOR UPDATE sur les lignes touchées (PostgreSQL)
- compteur de version SQLAlchemy (version_id_col) sur achats / livraisons / lignes
  -> une lecture périmée fait échouer le flush (StaleDataError)
- StaleDataError => rollback + on rejoue l'opération entière (max_retries fois)
- toute autre erreur SQLAlchemy => rollback + StorageFailureError
"""

from __future__ import annotations

import logging
from datetime import date
from decimal import Decimal
from typing import Callable, Sequence, TypeVar

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from backend.app.db.models.core_types import DeliveryStatus
from backend.app.db.models.models_v1 import Delivery, Purchase
from backend.services import deliveries, procurement, reconciliation
from backend.services.deliveries import DeliveryLine
from backend.services.errors import StockLedgerError, StorageFailureError
from backend.services.inventory import AllocationResult, allocate_item, query_available
from backend.services.reconciliation import ReconciliationReport

logger = logging.getLogger(__name__)

T = TypeVar("T")


class StockLedger:

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        *,
        max_retries: int = 3,
        lock_timeout_ms: int | None = None,
    ) -> None:
        if max_retries < 1:
            raise ValueError("max_retries must be >= 1")
        self._session_factory = session_factory
        self.max_retries = max_retries
        self.lock_timeout_ms = lock_timeout_ms

    # ---------- TRANSACTION ----------
    def _begin(self, db: Session) -> None:
        if self.lock_timeout_ms and db.get_bind().dialect.name == "postgresql":
            db.execute(text(f"SET LOCAL lock_timeout = {int(self.lock_timeout_ms)}"))

    def run(self, work: Callable[[Session], T], *, operation: str) -> T:
        """
        Exécute `work(db)` dans une transaction, commit, et renvoie son résultat.

        Les objets ORM renvoyés restent lisibles (expire_on_commit=False).
        """
        for attempt in range(1, self.max_retries + 1):
            with self._session_factory(expire_on_commit=False) as db:
                try:
                    self._begin(db)
                    result = work(db)
                    db.commit()
                    return result
                except StaleDataError:
                    db.rollback()
                    logger.warning(
                        "%s: concurrent update detected (attempt %d/%d), retrying",
                        operation,
                        attempt,
                        self.max_retries,
                    )
                except StockLedgerError:
                    db.rollback()
                    raise
                except SQLAlchemyError as exc:
                    db.rollback()
                    logger.exception("%s: storage failure", operation)
                    raise StorageFailureError(f"{operation} failed: {exc.__class__.__name__}") from exc

        logger.error("%s: gave up after %d concurrent update conflicts", operation, self.max_retries)
        raise StorageFailureError(
            f"{operation} failed: gave up after {self.max_retries} concurrent update conflicts"
        )

    # ---------- ALLOCATION ----------
    def allocate(self, delivery_item_id: int, purchase_id: int) -> AllocationResult:
        try:
            result = self.run(
                lambda db: allocate_item(db, delivery_item_id=delivery_item_id, purchase_id=purchase_id),
                operation="allocate",
            )
        except StockLedgerError as exc:
            if not isinstance(exc, StorageFailureError):
                logger.info(
                    "Allocation of delivery_item %s to purchase %s rejected: %s (%s)",
                    delivery_item_id,
                    purchase_id,
                    exc.code,
                    exc,
                )
            raise

        logger.info(
            "Delivery item %s linked to purchase %s: -%s, remaining=%s status=%s, delivery %s %s",
            result.delivery_item_id,
            result.purchase_id,
            result.quantity,
            result.remaining_quantity,
            result.purchase_status.value,
            result.delivery_id,
            result.purchase_link_status.value,
        )
        return result

    def list_available(self, search: str | None = None) -> list[Purchase]:
        # lecture seule : pas de verrou
        with self._session_factory() as db:
            return query_available(db, search)

    # ---------- ACHATS ----------
    def record_purchase(self, **fields) -> Purchase:
        return self.run(
            lambda db: procurement.record_purchase(db, **fields),
            operation="record_purchase",
        )

    def update_purchase_quantity(self, purchase_id: int, quantity: Decimal) -> Purchase:
        return self.run(
            lambda db: procurement.update_purchase_quantity(db, purchase_id, quantity),
            operation="update_purchase_quantity",
        )

    def delete_purchase(self, purchase_id: int) -> None:
        self.run(
            lambda db: procurement.delete_purchase(db, purchase_id),
            operation="delete_purchase",
        )

    # ---------- LIVRAISONS ----------
    def create_delivery(
        self,
        *,
        customer_id: int,
        delivery_date: date,
        lines: Sequence[DeliveryLine],
    ) -> Delivery:
        return self.run(
            lambda db: deliveries.create_delivery(
                db,
                customer_id=customer_id,
                delivery_date=delivery_date,
                lines=lines,
            ),
            operation="create_delivery",
        )

    def update_delivery(
        self,
        delivery_id: int,
        *,
        customer_id: int | None = None,
        delivery_date: date | None = None,
        status: DeliveryStatus | None = None,
        lines: Sequence[DeliveryLine] | None = None,
    ) -> Delivery:
        return self.run(
            lambda db: deliveries.update_delivery(
                db,
                delivery_id,
                customer_id=customer_id,
                delivery_date=delivery_date,
                status=status,
                lines=lines,
            ),
            operation="update_delivery",
        )

    def delete_delivery(self, delivery_id: int) -> None:
        self.run(
            lambda db: deliveries.delete_delivery(db, delivery_id),
            operation="delete_delivery",
        )

    # ---------- RÉCONCILIATION ----------
    def reconcile(self, *, dry_run: bool = False) -> ReconciliationReport:
        return self.run(
            lambda db: reconciliation.reconcile_purchases(db, dry_run=dry_run),
            operation="reconcile",
        )
