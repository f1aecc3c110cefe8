from fastapi import APIRouter

from backend.app.api.v1.endpoints import audit, auth, cashier

api_router = APIRouter(prefix="/api/v1")

api_router.include_router(auth.router, prefix="/auth", tags=["auth"])
api_router.include_router(cashier.router, prefix="/cashier", tags=["cashier"])
api_router.include_router(audit.router, prefix="/audit-logs", tags=["audit"])
