from __future__ import annotations

from typing import Generator

from fastapi import Request
from sqlalchemy.orm import Session

from backend.services.ledger import StockLedger


def get_db(request: Request) -> Generator:
    db = request.app.state.session_factory()
    try:
        yield db
    finally:
        db.close()


def get_ledger(request: Request) -> StockLedger:
    return request.app.state.ledger
