"""
Réconciliation du stock (job offline).

    python -m backend.jobs.reconcile_stock            # corrige
    python -m backend.jobs.reconcile_stock --dry-run  # rapport seulement
"""

from __future__ import annotations

import argparse
import logging
import sys

from backend.app.core.config import get_settings
from backend.app.core.logging import configure_logging
from backend.app.db.session import create_db_engine, make_session_factory
from backend.services.ledger import StockLedger

logger = logging.getLogger(__name__)


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Recompute purchase remaining quantities and statuses")
    parser.add_argument("--dry-run", action="store_true", help="report mismatches without writing")
    args = parser.parse_args(argv)

    settings = get_settings()
    configure_logging(settings.LOG_LEVEL)

    engine = create_db_engine(settings.DATABASE_URL, echo=settings.DEBUG)
    try:
        ledger = StockLedger(make_session_factory(engine), lock_timeout_ms=settings.LOCK_TIMEOUT_MS)
        report = ledger.reconcile(dry_run=args.dry_run)
    finally:
        engine.dispose()

    logger.info(
        "Reconciliation done: checked=%d fixed=%d anomalies=%d%s",
        report.checked,
        report.fixed,
        len(report.anomalies),
        " (dry run)" if report.dry_run else "",
    )
    return 1 if report.anomalies else 0


if __name__ == "__main__":
    sys.exit(main())
