from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from backend.app.api.v1.router import router as v1_router
from backend.app.core.config import Settings, get_settings
from backend.app.core.logging import configure_logging
from backend.app.db.base import Base
from backend.app.db.models import models_v1  # noqa: F401  (enregistre les tables)
from backend.app.db.session import create_db_engine, make_session_factory
from backend.services.errors import StockLedgerError
from backend.services.ledger import StockLedger

logger = logging.getLogger(__name__)

ERROR_STATUS = {
    "NOT_FOUND": 404,
    "ALREADY_LINKED": 409,
    "INSUFFICIENT_STOCK": 400,
    "PURCHASE_IN_USE": 409,
    "VALIDATION_ERROR": 400,
    "INVALID_QUANTITY": 400,
    "STORAGE_FAILURE": 503,
}


def create_app(settings: Settings | None = None) -> FastAPI:
    settings = settings or get_settings()
    configure_logging(settings.LOG_LEVEL)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Startup : un seul engine pour tout le process
        engine = create_db_engine(settings.DATABASE_URL, echo=settings.DEBUG)
        if settings.AUTO_CREATE_TABLES:
            Base.metadata.create_all(bind=engine)

        session_factory = make_session_factory(engine)
        app.state.engine = engine
        app.state.session_factory = session_factory
        app.state.ledger = StockLedger(
            session_factory,
            max_retries=settings.ALLOCATION_MAX_RETRIES,
            lock_timeout_ms=settings.LOCK_TIMEOUT_MS,
        )
        logger.info("%s started (db=%s)", settings.APP_NAME, engine.url.render_as_string(hide_password=True))

        yield

        # Shutdown
        engine.dispose()
        logger.info("%s stopped", settings.APP_NAME)

    app = FastAPI(title=settings.APP_NAME, version="0.1.0", lifespan=lifespan)

    @app.exception_handler(StockLedgerError)
    async def stock_ledger_error_handler(request: Request, exc: StockLedgerError):
        return JSONResponse(
            status_code=ERROR_STATUS.get(exc.code, 400),
            content={"detail": str(exc), "code": exc.code},
        )

    app.include_router(v1_router, prefix="/v1")
    return app


app = create_app()
