"""
Wallet API Routes
"""
from datetime import datetime
from decimal import Decimal
from typing import Any, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from payout_ledger.db.database import get_db
from payout_ledger.db.models.payout_request import PayoutRequestStatus
from payout_ledger.db.models.wallet_transaction import TransactionStatus, WalletTransactionType
from payout_ledger.domain.services.wallet_service import WalletService

router = APIRouter()


class WalletResponse(BaseModel):
    id: int
    creator_id: str
    balance: Decimal
    pending_balance: Decimal
    total_earned: Decimal
    total_withdrawn: Decimal
    currency: str
    payout_method: Optional[dict[str, Any]] = None
    stripe_account_id: Optional[str] = None
    is_active: bool

    class Config:
        from_attributes = True


class WalletTransactionResponse(BaseModel):
    id: int
    transaction_type: WalletTransactionType
    amount: Decimal
    balance_after: Decimal
    currency: str
    status: TransactionStatus
    description: str | None
    reference_type: str | None
    reference_id: str | None
    created_at: datetime

    class Config:
        from_attributes = True


class PayoutRequestResponse(BaseModel):
    id: int
    wallet_id: int
    payout_job_id: int | None
    amount: Decimal
    currency: str
    payout_method: dict[str, Any]
    status: PayoutRequestStatus
    external_payout_id: str | None
    failure_reason: str | None
    requested_at: datetime
    completed_at: datetime | None

    class Config:
        from_attributes = True


class PayoutRequestCreate(BaseModel):
    amount: Decimal = Field(gt=0)
    payout_method: Optional[dict[str, Any]] = Field(
        default=None, description="Defaults to the wallet's configured payout method"
    )
    idempotency_key: Optional[str] = Field(default=None, max_length=255)


class PayoutMethodUpdate(BaseModel):
    payout_method: dict[str, Any]


async def _wallet_or_404(service: WalletService, wallet_id: int):
    wallet = await service.get_wallet_by_id(wallet_id)
    if wallet is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Wallet not found")
    return wallet


@router.get(
    "/creators/{creator_id}",
    response_model=WalletResponse,
    summary="Get a creator's wallet",
    description="Returns the creator's wallet, creating an empty one on first access.",
)
async def get_creator_wallet(
    creator_id: str,
    db: AsyncSession = Depends(get_db)
):
    service = WalletService(db)
    return await service.get_or_create_wallet(creator_id)


@router.get("/{wallet_id}", response_model=WalletResponse, summary="Get wallet by id")
async def get_wallet(
    wallet_id: int,
    db: AsyncSession = Depends(get_db)
):
    return await _wallet_or_404(WalletService(db), wallet_id)


@router.get(
    "/{wallet_id}/summary",
    summary="Wallet summary",
    description="Balances, payout eligibility and the next scheduled payout date.",
)
async def get_wallet_summary(
    wallet_id: int,
    db: AsyncSession = Depends(get_db)
):
    summary = await WalletService(db).get_wallet_summary(wallet_id)
    if summary is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Wallet not found")
    return summary.to_dict()


@router.get("/{wallet_id}/stats", summary="Wallet statistics from the transaction ledger")
async def get_wallet_stats(
    wallet_id: int,
    db: AsyncSession = Depends(get_db)
):
    stats = await WalletService(db).get_wallet_stats(wallet_id)
    if stats is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Wallet not found")
    return stats.to_dict()


@router.get("/{wallet_id}/earnings", summary="Earnings breakdown for a date range")
async def get_earnings_breakdown(
    wallet_id: int,
    start: datetime,
    end: datetime,
    db: AsyncSession = Depends(get_db)
):
    if end < start:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="end must not be before start")
    breakdown = await WalletService(db).get_earnings_breakdown(wallet_id, start, end)
    if breakdown is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Wallet not found")
    return breakdown.to_dict()


@router.get(
    "/{wallet_id}/transactions",
    response_model=List[WalletTransactionResponse],
    summary="Wallet ledger entries, newest first",
)
async def get_wallet_transactions(
    wallet_id: int,
    transaction_type: Optional[str] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db)
):
    service = WalletService(db)
    await _wallet_or_404(service, wallet_id)
    try:
        return await service.get_wallet_transactions(
            wallet_id,
            transaction_type=transaction_type,
            start_date=start,
            end_date=end,
            limit=limit,
            offset=offset,
        )
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Unknown transaction type: {transaction_type}",
        )


@router.get(
    "/{wallet_id}/payouts",
    response_model=List[PayoutRequestResponse],
    summary="Payout requests of a wallet",
)
async def get_payout_requests(
    wallet_id: int,
    status_filter: Optional[str] = Query(None, alias="status"),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db)
):
    service = WalletService(db)
    await _wallet_or_404(service, wallet_id)
    try:
        return await service.get_payout_requests(wallet_id, status=status_filter, limit=limit, offset=offset)
    except ValueError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Unknown status: {status_filter}")


@router.post(
    "/{wallet_id}/payouts",
    status_code=status.HTTP_201_CREATED,
    summary="Request a payout",
    description="Moves the amount from the available balance to pending; fails without change if the balance is short.",
)
async def request_payout(
    wallet_id: int,
    body: PayoutRequestCreate,
    db: AsyncSession = Depends(get_db)
):
    result = await WalletService(db).request_payout(
        wallet_id,
        body.amount,
        body.payout_method,
        idempotency_key=body.idempotency_key,
    )
    if not result.success:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=result.error)
    return result.to_dict()


@router.put("/{wallet_id}/payout-method", response_model=WalletResponse, summary="Set the payout method")
async def update_payout_method(
    wallet_id: int,
    body: PayoutMethodUpdate,
    db: AsyncSession = Depends(get_db)
):
    result = await WalletService(db).update_payout_method(wallet_id, body.payout_method)
    if not result.success:
        code = status.HTTP_404_NOT_FOUND if result.error == "Wallet not found" else status.HTTP_400_BAD_REQUEST
        raise HTTPException(status_code=code, detail=result.error)
    return result.data
