"""
Platform Stripe Service - processor-facing side of the split-payment flow

Gross payments are charged on behalf of the platform's connected account with the
fee split carried in metadata; creator shares leave the platform balance later as
transfers. Every transfer carries a caller-supplied idempotency key.
"""
import asyncio
import uuid
from decimal import Decimal
from typing import Any, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from payout_ledger.core.config import settings
from payout_ledger.core.exceptions import AppException, PaymentGatewayError
from payout_ledger.core.logging import get_logger
from payout_ledger.db.models.platform_account import PlatformAccountType
from payout_ledger.db.models.platform_transaction import PlatformTransaction, PlatformTransactionType
from payout_ledger.domain.money import ZERO, compute_fee_split, quantize_money, to_minor_units, from_minor_units
from payout_ledger.domain.results import (
    BatchPayoutItem,
    BatchPayoutResult,
    ConnectOnboardingResult,
    GatewayBalanceResult,
    PlatformPaymentResult,
    TransferResult,
)
from payout_ledger.domain.services.gateways import BasePaymentGateway, TransferData, get_payment_gateway
from payout_ledger.domain.services.platform_account_service import PlatformAccountService
from payout_ledger.domain.services.wallet_service import WalletService

logger = get_logger(__name__)

DEFAULT_TRANSFER_DESCRIPTION = "Creator payout"
DUPLICATE_CREATOR_ERROR = "Creator appears more than once in the batch"


def _gateway_error_message(exc: Exception) -> str:
    if isinstance(exc, AppException):
        return exc.message
    return str(exc) or exc.__class__.__name__


class PlatformStripeService:
    """Payment intents, creator transfers and processor balance for the platform account"""

    def __init__(self, db: AsyncSession, gateway: Optional[BasePaymentGateway] = None):
        self.db = db
        self._gateway = gateway

    @property
    def gateway(self) -> BasePaymentGateway:
        if self._gateway is None:
            self._gateway = get_payment_gateway()
        return self._gateway

    async def _platform_stripe_account_id(self) -> Optional[str]:
        primary = await PlatformAccountService(self.db, self._gateway).get_primary_account()
        account = primary.data if primary.success else None
        if account is None or account.account_type != PlatformAccountType.STRIPE_CONNECT:
            return None
        return account.stripe_account_id

    async def create_platform_payment_intent(
        self,
        subscription_id: str,
        amount: Any,
        currency: str = "USD",
        customer_id: Optional[str] = None,
        metadata: Optional[dict[str, Any]] = None,
        *,
        idempotency_key: Optional[str] = None,
    ) -> PlatformPaymentResult:
        """
        Create a payment intent for the gross amount routed to the platform account.

        The creator's share is not charged separately; fee and creator amount travel
        as metadata and are settled when the payment is processed.
        """
        currency = (currency or settings.DEFAULT_CURRENCY).upper()
        try:
            fee_config = await WalletService(self.db).get_active_fee_config()
            if fee_config is not None:
                split = compute_fee_split(
                    amount,
                    fee_config.fee_percentage,
                    minimum_fee=fee_config.minimum_fee,
                    maximum_fee=fee_config.maximum_fee,
                    currency=currency,
                )
            else:
                split = compute_fee_split(amount, settings.DEFAULT_PLATFORM_FEE_PERCENTAGE, currency=currency)
        except ValueError as exc:
            return PlatformPaymentResult(success=False, error=str(exc))

        platform_account = await self._platform_stripe_account_id()
        intent_metadata = {
            "subscription_id": subscription_id,
            "platform_fee": str(split.platform_fee),
            "creator_amount": str(split.creator_amount),
            "fee_percentage": str(split.fee_percentage),
        }
        intent_metadata.update({k: str(v) for k, v in (metadata or {}).items()})

        try:
            intent = await self.gateway.create_payment_intent(
                amount_minor=to_minor_units(split.gross_amount, currency),
                currency=currency,
                on_behalf_of=platform_account,
                metadata=intent_metadata,
                customer_id=customer_id,
                idempotency_key=idempotency_key,
            )
        except AppException as exc:
            logger.error(
                "Platform payment intent failed",
                extra_data={"subscription_id": subscription_id, "error": exc.message},
            )
            return PlatformPaymentResult(success=False, error=exc.message)

        logger.info(
            "Platform payment intent created",
            extra_data={
                "subscription_id": subscription_id,
                "payment_intent_id": intent.id,
                "gross_amount": split.gross_amount,
                "platform_fee": split.platform_fee,
            },
        )
        return PlatformPaymentResult(
            success=True,
            payment_id=intent.id,
            client_secret=intent.client_secret,
            platform_fee=split.platform_fee,
            creator_amount=split.creator_amount,
        )

    async def _transfer_recorded(self, transfer_id: str) -> bool:
        result = await self.db.execute(
            select(PlatformTransaction.id).where(PlatformTransaction.stripe_transfer_id == transfer_id)
        )
        return result.first() is not None

    async def _record_transfer(
        self,
        transfer: TransferData,
        amount: Decimal,
        currency: str,
        description: str,
        metadata: dict[str, Any],
        idempotency_key: str,
    ) -> bool:
        """
        Book a creator payout on the platform ledger once per processor transfer.

        A key reused after a timeout or by a retry job gets the original transfer
        back from the processor; that transfer is already booked, so nothing is
        written and False is returned.
        """
        if await self._transfer_recorded(transfer.id):
            logger.info(
                "Replayed transfer already recorded",
                extra_data={"transfer_id": transfer.id, "idempotency_key": idempotency_key},
            )
            return False
        await PlatformAccountService(self.db, self._gateway).record_platform_transaction(
            PlatformTransactionType.CREATOR_PAYOUT,
            amount,
            currency=currency,
            description=description,
            reference_type="stripe_transfer",
            reference_id=idempotency_key,
            stripe_transfer_id=transfer.id,
            details={"destination": transfer.destination, "metadata": metadata},
        )
        return True

    async def transfer_to_creator(
        self,
        amount: Any,
        currency: str,
        creator_stripe_account_id: str,
        description: Optional[str] = None,
        metadata: Optional[dict[str, Any]] = None,
        *,
        idempotency_key: str,
    ) -> TransferResult:
        """
        Move ``amount`` from the platform balance to a creator's connected account.

        The idempotency key is mandatory: retrying with the same key returns the
        original transfer instead of paying twice.
        """
        if not idempotency_key:
            return TransferResult(success=False, error="Idempotency key is required for transfers")
        if not creator_stripe_account_id:
            return TransferResult(success=False, error="Stripe Connect account not set up")
        currency = (currency or settings.DEFAULT_CURRENCY).upper()
        try:
            amount = quantize_money(amount, currency)
        except ValueError as exc:
            return TransferResult(success=False, error=str(exc))
        if amount <= 0:
            return TransferResult(success=False, error="Transfer amount must be positive")

        description = description or DEFAULT_TRANSFER_DESCRIPTION
        metadata = {k: str(v) for k, v in (metadata or {}).items()}
        try:
            transfer = await self.gateway.transfer(
                amount_minor=to_minor_units(amount, currency),
                currency=currency,
                destination=creator_stripe_account_id,
                idempotency_key=idempotency_key,
                description=description,
                metadata=metadata,
            )
        except AppException as exc:
            logger.warning(
                "Transfer to creator failed",
                extra_data={
                    "destination": creator_stripe_account_id,
                    "amount": amount,
                    "idempotency_key": idempotency_key,
                    "error": exc.message,
                },
            )
            # a transient processor error leaves the outcome unknown; only the same key can settle it
            in_doubt = isinstance(exc, PaymentGatewayError) and exc.transient
            return TransferResult(success=False, error=exc.message, in_doubt=in_doubt)

        try:
            await self._record_transfer(transfer, amount, currency, description, metadata, idempotency_key)
            await self.db.commit()
        except IntegrityError:
            # a concurrent call booked the same transfer first
            await self.db.rollback()
            logger.info(
                "Replayed transfer already recorded",
                extra_data={"transfer_id": transfer.id, "idempotency_key": idempotency_key},
            )
        except SQLAlchemyError as exc:
            # money already moved; the bookkeeping row is the only loss
            await self.db.rollback()
            logger.error(
                "Transfer succeeded but platform transaction was not recorded",
                extra_data={"transfer_id": transfer.id, "idempotency_key": idempotency_key, "error": str(exc)},
                exc_info=True,
            )

        logger.info(
            "Transfer to creator completed",
            extra_data={
                "transfer_id": transfer.id,
                "destination": creator_stripe_account_id,
                "amount": amount,
                "idempotency_key": idempotency_key,
            },
        )
        return TransferResult(success=True, transfer_id=transfer.id)

    async def process_batch_payouts(
        self,
        payouts: Sequence[BatchPayoutItem],
        *,
        batch_id: Optional[str] = None,
        concurrency: Optional[int] = None,
    ) -> BatchPayoutResult:
        """
        Transfer to many creators; every payout is independent.

        Processor calls fan out under a semaphore. Bookkeeping for the successful
        ones runs afterwards on the session, one at a time, since an AsyncSession
        must not be shared between concurrent tasks.
        """
        batch_id = batch_id or f"batch_{uuid.uuid4().hex[:12]}"

        # the per-creator key would make a second entry replay the first one's transfer
        seen: set[str] = set()
        repeated: list[str] = []
        for item in payouts:
            if item.creator_id in seen and item.creator_id not in repeated:
                repeated.append(item.creator_id)
            seen.add(item.creator_id)
        if repeated:
            logger.warning(
                "Batch rejected: creator listed more than once",
                extra_data={"batch_id": batch_id, "creator_ids": repeated},
            )
            return BatchPayoutResult(
                success=False,
                batch_id=batch_id,
                total_amount=quantize_money(ZERO),
                successful_payouts=0,
                failed_payouts=len(payouts),
                errors=[{"creator_id": c, "error": DUPLICATE_CREATOR_ERROR} for c in repeated],
            )

        semaphore = asyncio.Semaphore(concurrency or settings.BATCH_PAYOUT_CONCURRENCY)

        async def send(item: BatchPayoutItem) -> TransferData:
            currency = (item.currency or settings.DEFAULT_CURRENCY).upper()
            amount = quantize_money(item.amount, currency)
            if amount <= 0:
                raise ValueError("Transfer amount must be positive")
            if not item.stripe_account_id:
                raise ValueError("Stripe Connect account not set up")
            async with semaphore:
                return await self.gateway.transfer(
                    amount_minor=to_minor_units(amount, currency),
                    currency=currency,
                    destination=item.stripe_account_id,
                    idempotency_key=f"batch:{batch_id}:{item.creator_id}",
                    description=item.description or DEFAULT_TRANSFER_DESCRIPTION,
                    metadata={"creator_id": item.creator_id, "batch_id": batch_id},
                )

        outcomes = await asyncio.gather(*(send(item) for item in payouts), return_exceptions=True)

        transfers: list[dict[str, Any]] = []
        errors: list[dict[str, Any]] = []
        settled: list[tuple[BatchPayoutItem, TransferData, Decimal, str]] = []
        total = ZERO
        for item, outcome in zip(payouts, outcomes):
            if isinstance(outcome, (AppException, ValueError)):
                errors.append({"creator_id": item.creator_id, "error": _gateway_error_message(outcome)})
                continue
            if isinstance(outcome, BaseException):
                raise outcome
            currency = (item.currency or settings.DEFAULT_CURRENCY).upper()
            amount = from_minor_units(outcome.amount_minor, currency)
            total += amount
            transfers.append({"creator_id": item.creator_id, "transfer_id": outcome.id, "amount": amount})
            settled.append((item, outcome, amount, currency))

        try:
            for item, transfer, amount, currency in settled:
                await self._record_transfer(
                    transfer,
                    amount,
                    currency,
                    item.description or DEFAULT_TRANSFER_DESCRIPTION,
                    {"creator_id": item.creator_id, "batch_id": batch_id},
                    f"batch:{batch_id}:{item.creator_id}",
                )
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            logger.warning(
                "Batch transfers already recorded by a concurrent run",
                extra_data={"batch_id": batch_id, "transfer_ids": [t.id for _, t, _, _ in settled]},
            )
        except SQLAlchemyError as exc:
            await self.db.rollback()
            logger.error(
                "Batch transfers not recorded",
                extra_data={
                    "batch_id": batch_id,
                    "transfer_ids": [t.id for _, t, _, _ in settled],
                    "error": str(exc),
                },
                exc_info=True,
            )

        result = BatchPayoutResult(
            success=not errors,
            batch_id=batch_id,
            total_amount=quantize_money(total),
            successful_payouts=len(transfers),
            failed_payouts=len(errors),
            transfers=transfers,
            errors=errors,
        )
        logger.info(
            "Batch payout finished",
            extra_data={
                "batch_id": batch_id,
                "successful_payouts": result.successful_payouts,
                "failed_payouts": result.failed_payouts,
                "total_amount": result.total_amount,
            },
        )
        return result

    async def get_platform_balance(self) -> GatewayBalanceResult:
        """Live processor balance of the platform's connected account (read only)"""
        account_id = await self._platform_stripe_account_id()
        if not account_id:
            return GatewayBalanceResult(success=False, error="No Stripe account configured")
        try:
            balance = await self.gateway.get_balance(account_id)
        except AppException as exc:
            logger.warning("Processor balance lookup failed", extra_data={"error": exc.message})
            return GatewayBalanceResult(success=False, error=exc.message)
        currency = balance.currency.upper()
        return GatewayBalanceResult(
            success=True,
            available=from_minor_units(balance.available_minor, currency),
            pending=from_minor_units(balance.pending_minor, currency),
            currency=currency,
        )

    async def create_creator_express_account(
        self,
        creator_id: str,
        email: str,
        return_url: Optional[str] = None,
        refresh_url: Optional[str] = None,
    ) -> ConnectOnboardingResult:
        """Open an Express account for a creator and attach it to their wallet"""
        try:
            account = await self.gateway.create_connected_account(
                email=email,
                country=settings.STRIPE_CONNECT_COUNTRY,
                metadata={"creator_id": creator_id},
            )
            url = await self.gateway.create_onboarding_link(
                account_id=account.id,
                return_url=return_url or f"{settings.FRONTEND_URL}/wallet?setup=success",
                refresh_url=refresh_url or f"{settings.FRONTEND_URL}/wallet?setup=refresh",
            )
        except PaymentGatewayError as exc:
            logger.error(
                "Creator Express account setup failed",
                extra_data={"creator_id": creator_id, "error": exc.message},
            )
            return ConnectOnboardingResult(success=False, error=exc.message)
        except AppException as exc:
            return ConnectOnboardingResult(success=False, error=exc.message)

        await WalletService(self.db).set_stripe_account(creator_id, account.id)
        logger.info(
            "Creator Express account created",
            extra_data={"creator_id": creator_id, "stripe_account_id": account.id},
        )
        return ConnectOnboardingResult(success=True, account_id=account.id, onboarding_url=url)
