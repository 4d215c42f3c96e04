"""Admin JSON API under /admin; verification and grants reuse the billing services."""
from fastapi import APIRouter, Depends

from app.admin.deps import require_admin
from app.admin.routers import payments, subscriptions

admin_router = APIRouter(prefix="/admin", tags=["admin"], dependencies=[Depends(require_admin)])

admin_router.include_router(payments.router, prefix="/payments", tags=["admin-payments"])
admin_router.include_router(subscriptions.router, prefix="/subscriptions", tags=["admin-subscriptions"])
