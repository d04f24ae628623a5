"""
Admin Platform Endpoints - platform payout accounts, balance and Stripe Connect.

All routes require the X-Admin-API-Key header.
"""
from datetime import datetime
from decimal import Decimal
from typing import Any, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from payout_ledger.api.dependencies.admin_auth import require_admin_api_key
from payout_ledger.db.database import get_db
from payout_ledger.db.models.platform_account import PayoutSchedule, PlatformAccountType
from payout_ledger.db.models.platform_transaction import PlatformTransactionType
from payout_ledger.domain.schemas import (
    PlatformAccountCreate,
    PlatformAccountUpdate,
    StripeConnectSetupRequest,
)
from payout_ledger.domain.services.platform_account_service import PlatformAccountService
from payout_ledger.domain.services.platform_stripe_service import PlatformStripeService

router = APIRouter(dependencies=[Depends(require_admin_api_key)])


class PlatformAccountResponse(BaseModel):
    id: int
    account_type: PlatformAccountType
    account_name: Optional[str] = None
    stripe_account_id: Optional[str] = None
    stripe_account_status: Optional[str] = None
    stripe_charges_enabled: bool
    stripe_payouts_enabled: bool
    stripe_details_submitted: bool
    bank_name: Optional[str] = None
    bank_account_holder_name: Optional[str] = None
    bank_account_last4: Optional[str] = None
    bank_account_type: Optional[str] = None
    bank_country: Optional[str] = None
    paypal_email: Optional[str] = None
    is_active: bool
    is_primary: bool
    currency: str
    auto_payout_enabled: bool
    payout_schedule: PayoutSchedule
    payout_day: Optional[int] = None
    minimum_payout_amount: Decimal
    details: Optional[dict[str, Any]] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class PlatformBalanceResponse(BaseModel):
    platform_account_id: int
    available_balance: Decimal
    pending_balance: Decimal
    reserved_balance: Decimal
    total_fees_collected: Decimal
    total_payouts_made: Decimal
    currency: str
    last_updated: Optional[datetime] = None

    class Config:
        from_attributes = True


class PlatformTransactionResponse(BaseModel):
    id: int
    platform_account_id: Optional[int] = None
    transaction_type: PlatformTransactionType
    amount: Decimal
    currency: str
    description: Optional[str] = None
    status: str
    reference_type: Optional[str] = None
    reference_id: Optional[str] = None
    stripe_transfer_id: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True


def _raise_for(error: Optional[str]) -> None:
    if error == "Platform account not found":
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=error)
    raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=error)


# ─── accounts ───────────────────────────────────────────────────────────────

@router.get("/accounts", response_model=List[PlatformAccountResponse], summary="List platform accounts")
async def list_platform_accounts(
    include_inactive: bool = True,
    db: AsyncSession = Depends(get_db),
):
    result = await PlatformAccountService(db).get_platform_accounts(include_inactive=include_inactive)
    return result.data


@router.get("/accounts/primary", response_model=Optional[PlatformAccountResponse], summary="Get the primary account")
async def get_primary_account(db: AsyncSession = Depends(get_db)):
    result = await PlatformAccountService(db).get_primary_account()
    if not result.success:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=result.error)
    return result.data


@router.get("/accounts/{account_id}", response_model=PlatformAccountResponse, summary="Get a platform account")
async def get_platform_account(account_id: int, db: AsyncSession = Depends(get_db)):
    account = await PlatformAccountService(db).get_platform_account(account_id)
    if account is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Platform account not found")
    return account


@router.post(
    "/accounts",
    response_model=PlatformAccountResponse,
    summary="Create or update a platform account",
    description="Matched by Stripe account id, PayPal email or bank routing + last four digits.",
)
async def upsert_platform_account(body: PlatformAccountCreate, db: AsyncSession = Depends(get_db)):
    result = await PlatformAccountService(db).upsert_platform_account(body)
    if not result.success:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=result.error)
    return result.data


@router.patch("/accounts/{account_id}", response_model=PlatformAccountResponse, summary="Update a platform account")
async def update_platform_account(
    account_id: int,
    body: PlatformAccountUpdate,
    db: AsyncSession = Depends(get_db),
):
    result = await PlatformAccountService(db).update_platform_account(account_id, body)
    if not result.success:
        _raise_for(result.error)
    return result.data


@router.delete("/accounts/{account_id}", summary="Delete (or deactivate) a platform account")
async def delete_platform_account(account_id: int, db: AsyncSession = Depends(get_db)):
    result = await PlatformAccountService(db).delete_platform_account(account_id)
    if not result.success:
        _raise_for(result.error)
    return {"deleted": True, "account_id": account_id}


# ─── balance and reporting ──────────────────────────────────────────────────

@router.get("/balance", response_model=Optional[PlatformBalanceResponse], summary="Cached platform balance")
async def get_platform_balance(
    account_id: Optional[int] = None,
    db: AsyncSession = Depends(get_db),
):
    result = await PlatformAccountService(db).get_platform_balance(account_id)
    return result.data


@router.get("/transactions", response_model=List[PlatformTransactionResponse], summary="Platform transactions")
async def get_platform_transactions(
    transaction_type: Optional[str] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    platform_account_id: Optional[int] = None,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db),
):
    result = await PlatformAccountService(db).get_platform_transactions(
        transaction_type=transaction_type,
        start_date=start,
        end_date=end,
        platform_account_id=platform_account_id,
        limit=limit,
        offset=offset,
    )
    if not result.success:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=result.error)
    return result.data


@router.get("/dashboard", summary="Platform dashboard statistics")
async def get_dashboard(db: AsyncSession = Depends(get_db)):
    result = await PlatformAccountService(db).get_platform_dashboard_stats()
    if not result.success:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=result.error)
    return result.data.to_dict()


@router.get("/processor-balance", summary="Live balance at the payment processor")
async def get_processor_balance(db: AsyncSession = Depends(get_db)):
    result = await PlatformStripeService(db).get_platform_balance()
    if not result.success:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=result.error)
    return result.to_dict()


# ─── Stripe Connect ─────────────────────────────────────────────────────────

@router.post("/stripe-connect/setup", summary="Create the platform's Connect account and onboarding link")
async def setup_stripe_connect(body: StripeConnectSetupRequest, db: AsyncSession = Depends(get_db)):
    result = await PlatformAccountService(db).setup_stripe_connect(body)
    if not result.success:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=result.error)
    return result.to_dict()


@router.get("/stripe-connect/{account_id}", summary="Connect account capability status")
async def get_stripe_connect_info(account_id: str, db: AsyncSession = Depends(get_db)):
    result = await PlatformAccountService(db).get_stripe_connect_info(account_id)
    if not result.success:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=result.error)
    return result.data.to_dict()
