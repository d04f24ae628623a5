"""
Payment API Routes - incoming subscription payments and creator onboarding
"""
from decimal import Decimal
from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from payout_ledger.db.database import get_db
from payout_ledger.domain.services.platform_stripe_service import PlatformStripeService
from payout_ledger.domain.services.wallet_service import WalletService

router = APIRouter()


class SubscriptionPaymentRequest(BaseModel):
    subscription_id: str = Field(min_length=1, max_length=64)
    gross_amount: Decimal = Field(gt=0)
    currency: str = Field(default="USD", min_length=3, max_length=3)
    payment_method: str = Field(default="card", max_length=50)
    external_payment_id: Optional[str] = Field(default=None, max_length=255)


class PaymentIntentRequest(BaseModel):
    subscription_id: str = Field(min_length=1, max_length=64)
    amount: Decimal = Field(gt=0)
    currency: str = Field(default="USD", min_length=3, max_length=3)
    customer_id: Optional[str] = None
    metadata: Optional[dict[str, Any]] = None
    idempotency_key: Optional[str] = Field(default=None, max_length=255)


class ExpressAccountRequest(BaseModel):
    email: str = Field(pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$", max_length=255)
    return_url: Optional[str] = None
    refresh_url: Optional[str] = None


@router.post(
    "/subscription-payments",
    summary="Record a subscription payment",
    description=(
        "Splits the gross amount into platform fee and creator share and credits the "
        "creator's wallet. Replaying the same external_payment_id returns the original "
        "result with duplicate=true."
    ),
)
async def process_subscription_payment(
    body: SubscriptionPaymentRequest,
    db: AsyncSession = Depends(get_db)
):
    result = await WalletService(db).process_subscription_payment(
        body.subscription_id,
        body.gross_amount,
        currency=body.currency,
        payment_method=body.payment_method,
        external_payment_id=body.external_payment_id,
    )
    if not result.success:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=result.error)
    return result.to_dict()


@router.post("/payment-intents", summary="Create a payment intent routed to the platform account")
async def create_payment_intent(
    body: PaymentIntentRequest,
    db: AsyncSession = Depends(get_db)
):
    result = await PlatformStripeService(db).create_platform_payment_intent(
        body.subscription_id,
        body.amount,
        body.currency,
        customer_id=body.customer_id,
        metadata=body.metadata,
        idempotency_key=body.idempotency_key,
    )
    if not result.success:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=result.error)
    return result.to_dict()


@router.post(
    "/creators/{creator_id}/express-account",
    summary="Start Stripe Connect onboarding for a creator",
)
async def create_express_account(
    creator_id: str,
    body: ExpressAccountRequest,
    db: AsyncSession = Depends(get_db)
):
    result = await PlatformStripeService(db).create_creator_express_account(
        creator_id, body.email, return_url=body.return_url, refresh_url=body.refresh_url
    )
    if not result.success:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=result.error)
    return result.to_dict()
