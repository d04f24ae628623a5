"""
API Routes
"""
from fastapi import APIRouter

from payout_ledger.api.routes.wallets import router as wallets_router
from payout_ledger.api.routes.payments import router as payments_router
from payout_ledger.api.routes.admin_payouts import router as admin_payouts_router
from payout_ledger.api.routes.admin_platform import router as admin_platform_router
from payout_ledger.api.routes.admin_debug import router as admin_debug_router

router = APIRouter()

router.include_router(wallets_router, prefix="/wallets", tags=["Wallets"])
router.include_router(payments_router, prefix="/payments", tags=["Payments"])
router.include_router(admin_payouts_router, prefix="/admin/payouts", tags=["Admin Payouts"])
router.include_router(admin_platform_router, prefix="/admin/platform", tags=["Admin Platform"])
router.include_router(admin_debug_router, prefix="/admin/debug", tags=["Admin Debug"])
