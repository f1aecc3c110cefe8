from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from backend.app.api.v1.api import api_router
from backend.app.core.config import settings
from backend.app.core.database import SessionLocal
from backend.app.core.logging import configure_logging
from backend.app.services.cashier.bootstrap import CashierCloseServices

configure_logging(settings.LOG_LEVEL)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    # Tests may install their own wiring before startup
    if getattr(app.state, "cashier_services", None) is None:
        app.state.cashier_services = CashierCloseServices(SessionLocal)
    try:
        yield
    finally:
        app.state.cashier_services.shutdown()
        app.state.cashier_services = None


app = FastAPI(title="Cashier Close & Reconciliation", lifespan=lifespan)

# ─── CORS: configured origins only ───────────────────────────────────────────
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST"],
    allow_headers=["Authorization", "Content-Type", "Accept"],
)

app.include_router(api_router)
