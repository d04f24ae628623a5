"""
Wallet Service - creator wallets, fee split on incoming payments, payout requests

Every balance mutation is a single conditional UPDATE against the wallet row
(``balance = balance + :delta WHERE balance >= :required``) followed by an append to
the wallet ledger inside the same transaction. There is no read-modify-write of
balances anywhere in this module.
"""
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Any, Optional, Sequence

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from payout_ledger.core.clock import to_payout_local, utcnow
from payout_ledger.core.config import settings
from payout_ledger.core.exceptions import (
    AppException,
    InsufficientBalanceError,
    PayoutRequestNotFoundError,
    PayoutRequestStatusError,
    ValidationException,
    WalletException,
    WalletNotFoundError,
    ErrorCode,
)
from payout_ledger.core.logging import get_logger
from payout_ledger.db.models.creator_subscription import CreatorSubscription
from payout_ledger.db.models.creator_wallet import CreatorWallet
from payout_ledger.db.models.payout_request import PayoutRequest, PayoutRequestStatus
from payout_ledger.db.models.platform_fee_config import PlatformFeeConfig
from payout_ledger.db.models.platform_transaction import PlatformTransactionType
from payout_ledger.db.models.subscription_payment import SubscriptionPayment
from payout_ledger.db.models.wallet_transaction import (
    TransactionStatus,
    WalletTransaction,
    WalletTransactionType,
)
from payout_ledger.domain.money import ZERO, compute_fee_split, quantize_money, to_decimal
from payout_ledger.domain.payout_methods import (
    STRIPE_CONNECT,
    dump_payout_method,
    parse_payout_method,
)
from payout_ledger.domain.payout_schedule import next_payout_date
from payout_ledger.domain.results import (
    EarningsBreakdown,
    PaymentProcessingResult,
    PayoutRequestResult,
    ServiceResult,
    WalletStats,
    WalletSummary,
)

logger = get_logger(__name__)

_OPEN_PAYOUT_STATUSES = (PayoutRequestStatus.PENDING, PayoutRequestStatus.PROCESSING)
PAYOUT_REQUEST_REFERENCE = "payout_request"


def _month_start(day: date) -> datetime:
    return datetime(day.year, day.month, 1)


def _previous_month_start(day: date) -> datetime:
    first = _month_start(day)
    return _month_start((first - timedelta(days=1)).date())


class WalletService:
    """Service for managing creator wallets"""

    def __init__(self, db: AsyncSession):
        self.db = db

    # ==================== wallet lifecycle ====================

    async def get_wallet_by_id(self, wallet_id: int, *, refresh: bool = False) -> Optional[CreatorWallet]:
        query = select(CreatorWallet).where(CreatorWallet.id == wallet_id)
        if refresh:
            query = query.execution_options(populate_existing=True)
        result = await self.db.execute(query)
        return result.scalar_one_or_none()

    async def get_wallet_by_creator(self, creator_id: str) -> Optional[CreatorWallet]:
        result = await self.db.execute(
            select(CreatorWallet).where(CreatorWallet.creator_id == creator_id)
        )
        return result.scalar_one_or_none()

    async def get_or_create_wallet(
        self,
        creator_id: str,
        *,
        for_update: bool = False,
        commit: bool = True,
    ) -> CreatorWallet:
        """Get the creator's wallet, creating it with zero balances on first use.

        Concurrent first-earning events race on the unique creator_id: the loser's
        INSERT fails inside a savepoint and it re-reads the winner's row.
        """
        query = select(CreatorWallet).where(CreatorWallet.creator_id == creator_id)
        if for_update:
            query = query.with_for_update()
        result = await self.db.execute(query)
        wallet = result.scalar_one_or_none()
        if wallet:
            return wallet

        try:
            async with self.db.begin_nested():
                wallet = CreatorWallet(
                    creator_id=creator_id,
                    balance=ZERO,
                    pending_balance=ZERO,
                    total_earned=ZERO,
                    total_withdrawn=ZERO,
                    currency=settings.DEFAULT_CURRENCY,
                )
                self.db.add(wallet)
        except IntegrityError:
            logger.info(
                "Wallet created concurrently, reading existing row",
                extra_data={"creator_id": creator_id},
            )
            result = await self.db.execute(query.execution_options(populate_existing=True))
            wallet = result.scalar_one_or_none()
            if wallet is None:
                raise WalletNotFoundError(creator_id)
            return wallet

        if commit:
            await self.db.commit()
        logger.info(
            "Creator wallet created",
            extra_data={"creator_id": creator_id, "wallet_id": wallet.id},
        )
        return wallet

    async def update_payout_method(self, wallet_id: int, payout_method: Any) -> ServiceResult[CreatorWallet]:
        wallet = await self.get_wallet_by_id(wallet_id)
        if wallet is None:
            return ServiceResult(success=False, error="Wallet not found")
        try:
            method = parse_payout_method(payout_method)
        except ValidationException as exc:
            return ServiceResult(success=False, error=exc.message)

        wallet.payout_method = dump_payout_method(method)
        if method.type == STRIPE_CONNECT and method.stripe_account_id:
            wallet.stripe_account_id = method.stripe_account_id
        await self.db.commit()
        logger.info(
            "Payout method updated",
            extra_data={"wallet_id": wallet_id, "payout_method": method.type},
        )
        return ServiceResult(success=True, data=wallet)

    async def set_stripe_account(self, creator_id: str, stripe_account_id: str, *, commit: bool = True) -> CreatorWallet:
        wallet = await self.get_or_create_wallet(creator_id, commit=False)
        wallet.stripe_account_id = stripe_account_id
        if commit:
            await self.db.commit()
        else:
            await self.db.flush()
        return wallet

    async def deactivate_wallet(self, wallet_id: int) -> ServiceResult[CreatorWallet]:
        """Wallets are never deleted; an inactive wallet takes no credits and no payouts"""
        result = await self.db.execute(
            update(CreatorWallet)
            .where(CreatorWallet.id == wallet_id, CreatorWallet.is_active.is_(True))
            .values(is_active=False, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await self.db.rollback()
            wallet = await self.get_wallet_by_id(wallet_id)
            return ServiceResult(
                success=False,
                error="Wallet not found" if wallet is None else "Wallet is already inactive",
            )
        await self.db.commit()
        wallet = await self.get_wallet_by_id(wallet_id, refresh=True)
        logger.info("Wallet deactivated", extra_data={"wallet_id": wallet_id})
        return ServiceResult(success=True, data=wallet)

    # ==================== atomic balance primitives ====================

    async def _apply_balance_change(
        self,
        wallet_id: int,
        *,
        balance_delta: Decimal = ZERO,
        pending_delta: Decimal = ZERO,
        earned_delta: Decimal = ZERO,
        withdrawn_delta: Decimal = ZERO,
        require_balance: Optional[Decimal] = None,
        require_pending: Optional[Decimal] = None,
        require_active: bool = True,
    ) -> bool:
        """One conditional UPDATE; False when the guard did not match (no row changed)"""
        stmt = update(CreatorWallet).where(CreatorWallet.id == wallet_id)
        if require_active:
            stmt = stmt.where(CreatorWallet.is_active.is_(True))
        if require_balance is not None:
            stmt = stmt.where(CreatorWallet.balance >= require_balance)
        if require_pending is not None:
            stmt = stmt.where(CreatorWallet.pending_balance >= require_pending)

        values: dict[str, Any] = {"updated_at": utcnow()}
        if balance_delta:
            values["balance"] = CreatorWallet.balance + balance_delta
        if pending_delta:
            values["pending_balance"] = CreatorWallet.pending_balance + pending_delta
        if earned_delta:
            values["total_earned"] = CreatorWallet.total_earned + earned_delta
        if withdrawn_delta:
            values["total_withdrawn"] = CreatorWallet.total_withdrawn + withdrawn_delta

        result = await self.db.execute(
            stmt.values(**values).execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def _append_transaction(
        self,
        wallet: CreatorWallet,
        transaction_type: WalletTransactionType,
        amount: Decimal,
        *,
        currency: str,
        description: str,
        reference_type: Optional[str] = None,
        reference_id: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> WalletTransaction:
        now = utcnow()
        entry = WalletTransaction(
            wallet_id=wallet.id,
            transaction_type=transaction_type,
            amount=amount,
            balance_after=wallet.balance,
            currency=currency,
            status=TransactionStatus.COMPLETED,
            description=description,
            reference_type=reference_type,
            reference_id=reference_id,
            details=details,
            processed_at=now,
            created_at=now,
        )
        self.db.add(entry)
        await self.db.flush()
        return entry

    # ==================== incoming payments ====================

    async def get_active_fee_config(self) -> Optional[PlatformFeeConfig]:
        result = await self.db.execute(
            select(PlatformFeeConfig)
            .where(PlatformFeeConfig.is_active.is_(True))
            .order_by(PlatformFeeConfig.created_at.desc(), PlatformFeeConfig.id.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def _find_payment_by_external_id(self, external_payment_id: str) -> Optional[SubscriptionPayment]:
        result = await self.db.execute(
            select(SubscriptionPayment).where(
                SubscriptionPayment.external_payment_id == external_payment_id
            )
        )
        return result.scalar_one_or_none()

    @staticmethod
    def _duplicate_result(payment: SubscriptionPayment) -> PaymentProcessingResult:
        return PaymentProcessingResult(
            success=True,
            payment_id=payment.id,
            transaction_id=payment.wallet_transaction_id,
            wallet_id=payment.wallet_id,
            gross_amount=payment.gross_amount,
            platform_fee=payment.platform_fee,
            creator_amount=payment.creator_amount,
            duplicate=True,
        )

    async def process_subscription_payment(
        self,
        subscription_id: str,
        gross_amount: Any,
        currency: str = "USD",
        payment_method: str = "card",
        external_payment_id: Optional[str] = None,
    ) -> PaymentProcessingResult:
        """
        Split a subscription payment into platform fee and creator share and credit
        the creator's wallet.

        All writes (wallet increment, ledger entry, payment breakdown, platform fee
        record) share one transaction; any failure rolls back everything. A payment
        whose external id was already processed is reported as a duplicate and not
        credited again.
        """
        currency = (currency or settings.DEFAULT_CURRENCY).upper()
        try:
            if external_payment_id:
                existing = await self._find_payment_by_external_id(external_payment_id)
                if existing:
                    logger.info(
                        "Duplicate subscription payment ignored",
                        extra_data={"external_payment_id": external_payment_id, "payment_id": existing.id},
                    )
                    return self._duplicate_result(existing)

            result = await self.db.execute(
                select(CreatorSubscription.creator_id).where(
                    CreatorSubscription.subscription_id == subscription_id
                )
            )
            creator_id = result.scalar_one_or_none()
            if creator_id is None:
                return PaymentProcessingResult(success=False, error=f"Subscription not found: {subscription_id}")

            fee_config = await self.get_active_fee_config()
            if fee_config is not None:
                split = compute_fee_split(
                    gross_amount,
                    fee_config.fee_percentage,
                    minimum_fee=fee_config.minimum_fee,
                    maximum_fee=fee_config.maximum_fee,
                    currency=currency,
                )
            else:
                split = compute_fee_split(
                    gross_amount, settings.DEFAULT_PLATFORM_FEE_PERCENTAGE, currency=currency
                )

            wallet = await self.get_or_create_wallet(creator_id, commit=False)
            if not wallet.is_active:
                raise WalletException("Wallet is inactive", ErrorCode.WALLET_INACTIVE, wallet_id=wallet.id)

            if not await self._apply_balance_change(
                wallet.id, balance_delta=split.creator_amount, earned_delta=split.creator_amount
            ):
                raise WalletException("Wallet is inactive", ErrorCode.WALLET_INACTIVE, wallet_id=wallet.id)
            wallet = await self.get_wallet_by_id(wallet.id, refresh=True)

            entry = await self._append_transaction(
                wallet,
                WalletTransactionType.SUBSCRIPTION_PAYMENT,
                split.creator_amount,
                currency=currency,
                description=f"Subscription payment {subscription_id}",
                reference_type="subscription",
                reference_id=subscription_id,
                details={
                    "gross_amount": str(split.gross_amount),
                    "platform_fee": str(split.platform_fee),
                    "fee_percentage": str(split.fee_percentage),
                    "payment_method": payment_method,
                    "external_payment_id": external_payment_id,
                },
            )

            payment = SubscriptionPayment(
                subscription_id=subscription_id,
                creator_id=creator_id,
                wallet_id=wallet.id,
                wallet_transaction_id=entry.id,
                gross_amount=split.gross_amount,
                platform_fee=split.platform_fee,
                creator_amount=split.creator_amount,
                fee_percentage=split.fee_percentage,
                currency=currency,
                payment_method=payment_method,
                external_payment_id=external_payment_id,
                created_at=entry.created_at,
            )
            self.db.add(payment)
            await self.db.flush()

            if split.platform_fee > 0:
                from payout_ledger.domain.services.platform_account_service import PlatformAccountService

                await PlatformAccountService(self.db).record_platform_transaction(
                    PlatformTransactionType.FEE_COLLECTION,
                    split.platform_fee,
                    currency=currency,
                    description=f"Platform fee for subscription {subscription_id}",
                    reference_type="subscription_payment",
                    reference_id=str(payment.id),
                    details={"creator_id": creator_id, "gross_amount": str(split.gross_amount)},
                )

            await self.db.commit()
        except IntegrityError as exc:
            await self.db.rollback()
            if external_payment_id:
                existing = await self._find_payment_by_external_id(external_payment_id)
                if existing:
                    return self._duplicate_result(existing)
            logger.error(
                "Subscription payment failed on constraint",
                extra_data={"subscription_id": subscription_id, "error": str(exc.orig)},
            )
            return PaymentProcessingResult(success=False, error="Failed to record payment")
        except (AppException, ValueError) as exc:
            await self.db.rollback()
            message = exc.message if isinstance(exc, AppException) else str(exc)
            logger.warning(
                "Subscription payment rejected",
                extra_data={"subscription_id": subscription_id, "error": message},
            )
            return PaymentProcessingResult(success=False, error=message)
        except SQLAlchemyError as exc:
            await self.db.rollback()
            logger.error(
                "Subscription payment failed",
                extra_data={"subscription_id": subscription_id, "error": str(exc)},
                exc_info=True,
            )
            return PaymentProcessingResult(success=False, error="Failed to record payment")

        logger.info(
            "Subscription payment credited",
            extra_data={
                "subscription_id": subscription_id,
                "wallet_id": wallet.id,
                "gross_amount": split.gross_amount,
                "platform_fee": split.platform_fee,
                "creator_amount": split.creator_amount,
            },
        )
        return PaymentProcessingResult(
            success=True,
            payment_id=payment.id,
            transaction_id=entry.id,
            wallet_id=wallet.id,
            gross_amount=split.gross_amount,
            platform_fee=split.platform_fee,
            creator_amount=split.creator_amount,
        )

    # ==================== payout requests ====================

    async def _reserve_payout(
        self,
        wallet_id: int,
        amount: Any,
        payout_method: Any,
        *,
        payout_job_id: Optional[int],
        idempotency_key: Optional[str],
        status: PayoutRequestStatus,
    ) -> PayoutRequest:
        """Move amount from balance to pending_balance and open a payout request (flush only)"""
        amount = quantize_money(amount)
        if amount <= 0:
            raise ValidationException("Payout amount must be positive", field="amount")

        wallet = await self.get_wallet_by_id(wallet_id)
        if wallet is None:
            raise WalletNotFoundError(wallet_id)
        if not wallet.is_active:
            raise WalletException("Wallet is inactive", ErrorCode.WALLET_INACTIVE, wallet_id=wallet_id)

        method = parse_payout_method(payout_method if payout_method is not None else wallet.payout_method)

        if not await self._apply_balance_change(
            wallet_id,
            balance_delta=-amount,
            pending_delta=amount,
            require_balance=amount,
        ):
            current = await self.get_wallet_by_id(wallet_id, refresh=True)
            raise InsufficientBalanceError(wallet_id, current.balance if current else ZERO, amount)
        wallet = await self.get_wallet_by_id(wallet_id, refresh=True)

        now = utcnow()
        request = PayoutRequest(
            wallet_id=wallet_id,
            payout_job_id=payout_job_id,
            amount=amount,
            currency=wallet.currency,
            payout_method=dump_payout_method(method),
            status=status,
            idempotency_key=idempotency_key,
            requested_at=now,
            processed_at=now if status == PayoutRequestStatus.PROCESSING else None,
        )
        self.db.add(request)
        await self.db.flush()

        await self._append_transaction(
            wallet,
            WalletTransactionType.PAYOUT,
            -amount,
            currency=wallet.currency,
            description=f"Payout request #{request.id}",
            reference_type=PAYOUT_REQUEST_REFERENCE,
            reference_id=str(request.id),
            details={"payout_method": method.type, "payout_job_id": payout_job_id},
        )
        return request

    async def request_payout(
        self,
        wallet_id: int,
        amount: Any,
        payout_method: Any = None,
        *,
        payout_job_id: Optional[int] = None,
        idempotency_key: Optional[str] = None,
        status: PayoutRequestStatus = PayoutRequestStatus.PENDING,
    ) -> PayoutRequestResult:
        """
        Reserve ``amount`` of the wallet's available balance for a payout.

        Fails without changing anything when the balance is insufficient, the wallet
        is missing or inactive, or the payout method is invalid. ``payout_method``
        defaults to the wallet's configured method.
        """
        try:
            request = await self._reserve_payout(
                wallet_id,
                amount,
                payout_method,
                payout_job_id=payout_job_id,
                idempotency_key=idempotency_key,
                status=status,
            )
            await self.db.commit()
        except AppException as exc:
            await self.db.rollback()
            logger.warning(
                "Payout request rejected",
                extra_data={"wallet_id": wallet_id, "amount": amount, "error": exc.message},
            )
            return PayoutRequestResult(success=False, error=exc.message)
        except (SQLAlchemyError, ValueError) as exc:
            await self.db.rollback()
            logger.error(
                "Payout request failed",
                extra_data={"wallet_id": wallet_id, "amount": amount, "error": str(exc)},
                exc_info=True,
            )
            return PayoutRequestResult(success=False, error="Failed to create payout request")

        logger.info(
            "Payout requested",
            extra_data={
                "wallet_id": wallet_id,
                "payout_id": request.id,
                "amount": request.amount,
                "status": request.status.value,
                "payout_job_id": payout_job_id,
            },
        )
        return PayoutRequestResult(
            success=True,
            payout_id=request.id,
            amount=request.amount,
            status=request.status.value,
        )

    async def get_payout_request(self, payout_id: int, *, refresh: bool = False) -> Optional[PayoutRequest]:
        query = select(PayoutRequest).where(PayoutRequest.id == payout_id)
        if refresh:
            query = query.execution_options(populate_existing=True)
        result = await self.db.execute(query)
        return result.scalar_one_or_none()

    async def _transition_payout(
        self,
        payout_id: int,
        target: PayoutRequestStatus,
        allowed_from: tuple[PayoutRequestStatus, ...],
        **values: Any,
    ) -> PayoutRequest:
        request = await self.get_payout_request(payout_id)
        if request is None:
            raise PayoutRequestNotFoundError(payout_id)
        result = await self.db.execute(
            update(PayoutRequest)
            .where(PayoutRequest.id == payout_id, PayoutRequest.status.in_(allowed_from))
            .values(status=target, updated_at=utcnow(), **values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            current = await self.get_payout_request(payout_id, refresh=True)
            raise PayoutRequestStatusError(payout_id, current.status.value, target.value)
        return await self.get_payout_request(payout_id, refresh=True)

    async def mark_payout_processing(self, payout_id: int) -> PayoutRequestResult:
        try:
            request = await self._transition_payout(
                payout_id,
                PayoutRequestStatus.PROCESSING,
                (PayoutRequestStatus.PENDING,),
                processed_at=utcnow(),
            )
            await self.db.commit()
        except AppException as exc:
            await self.db.rollback()
            return PayoutRequestResult(success=False, payout_id=payout_id, error=exc.message)
        return PayoutRequestResult(success=True, payout_id=payout_id, amount=request.amount, status=request.status.value)

    async def complete_payout(
        self,
        payout_id: int,
        external_payout_id: Optional[str] = None,
        *,
        record_platform_payout: bool = True,
    ) -> PayoutRequestResult:
        """Settle a payout: pending_balance -> total_withdrawn, request -> completed"""
        try:
            now = utcnow()
            request = await self._transition_payout(
                payout_id,
                PayoutRequestStatus.COMPLETED,
                _OPEN_PAYOUT_STATUSES,
                external_payout_id=external_payout_id,
                completed_at=now,
                processed_at=now,
            )
            if not await self._apply_balance_change(
                request.wallet_id,
                pending_delta=-request.amount,
                withdrawn_delta=request.amount,
                require_pending=request.amount,
                require_active=False,
            ):
                raise WalletException(
                    "Pending balance does not cover the payout",
                    ErrorCode.INSUFFICIENT_BALANCE,
                    wallet_id=request.wallet_id,
                )
            if record_platform_payout:
                from payout_ledger.domain.services.platform_account_service import PlatformAccountService

                await PlatformAccountService(self.db).record_platform_transaction(
                    PlatformTransactionType.CREATOR_PAYOUT,
                    request.amount,
                    currency=request.currency,
                    description=f"Payout request #{payout_id} settled",
                    reference_type=PAYOUT_REQUEST_REFERENCE,
                    reference_id=str(payout_id),
                    details={"wallet_id": request.wallet_id, "external_payout_id": external_payout_id},
                )
            await self.db.commit()
        except AppException as exc:
            await self.db.rollback()
            logger.warning(
                "Payout completion rejected",
                extra_data={"payout_id": payout_id, "error": exc.message},
            )
            return PayoutRequestResult(success=False, payout_id=payout_id, error=exc.message)

        logger.info(
            "Payout completed",
            extra_data={
                "payout_id": payout_id,
                "wallet_id": request.wallet_id,
                "amount": request.amount,
                "external_payout_id": external_payout_id,
            },
        )
        return PayoutRequestResult(
            success=True, payout_id=payout_id, amount=request.amount, status=request.status.value
        )

    async def fail_payout(self, payout_id: int, reason: str) -> PayoutRequestResult:
        """Give the reserved amount back: pending_balance -> balance, request -> failed"""
        reason = (reason or "Payout failed")[:500]
        try:
            request = await self._transition_payout(
                payout_id,
                PayoutRequestStatus.FAILED,
                _OPEN_PAYOUT_STATUSES,
                failure_reason=reason,
                processed_at=utcnow(),
            )
            if not await self._apply_balance_change(
                request.wallet_id,
                balance_delta=request.amount,
                pending_delta=-request.amount,
                require_pending=request.amount,
                require_active=False,
            ):
                raise WalletException(
                    "Pending balance does not cover the payout",
                    ErrorCode.INSUFFICIENT_BALANCE,
                    wallet_id=request.wallet_id,
                )
            wallet = await self.get_wallet_by_id(request.wallet_id, refresh=True)
            await self._append_transaction(
                wallet,
                WalletTransactionType.ADJUSTMENT,
                request.amount,
                currency=request.currency,
                description=f"Payout request #{payout_id} failed",
                reference_type=PAYOUT_REQUEST_REFERENCE,
                reference_id=str(payout_id),
                details={"reason": reason},
            )
            await self.db.commit()
        except AppException as exc:
            await self.db.rollback()
            logger.warning(
                "Payout failure could not be recorded",
                extra_data={"payout_id": payout_id, "error": exc.message},
            )
            return PayoutRequestResult(success=False, payout_id=payout_id, error=exc.message)

        logger.warning(
            "Payout failed, funds returned to wallet",
            extra_data={
                "payout_id": payout_id,
                "wallet_id": request.wallet_id,
                "amount": request.amount,
                "reason": reason,
            },
        )
        return PayoutRequestResult(
            success=True, payout_id=payout_id, amount=request.amount, status=request.status.value
        )

    async def get_payout_requests(
        self,
        wallet_id: int,
        status: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[PayoutRequest]:
        query = select(PayoutRequest).where(PayoutRequest.wallet_id == wallet_id)
        if status:
            query = query.where(PayoutRequest.status == PayoutRequestStatus(status))
        result = await self.db.execute(
            query.order_by(PayoutRequest.requested_at.desc(), PayoutRequest.id.desc())
            .limit(limit)
            .offset(offset)
        )
        return list(result.scalars().all())

    async def get_open_job_payout(self, wallet_id: int, job_ids: Sequence[int]) -> Optional[PayoutRequest]:
        """Latest request of ``job_ids`` still in processing: reserved, transfer not settled"""
        if not job_ids:
            return None
        result = await self.db.execute(
            select(PayoutRequest)
            .where(
                PayoutRequest.wallet_id == wallet_id,
                PayoutRequest.payout_job_id.in_(list(job_ids)),
                PayoutRequest.status == PayoutRequestStatus.PROCESSING,
            )
            .order_by(PayoutRequest.id.desc())
            .limit(1)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    # ==================== reporting (ledger based) ====================

    async def get_wallet_transactions(
        self,
        wallet_id: int,
        transaction_type: Optional[str] = None,
        status: Optional[str] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[WalletTransaction]:
        query = select(WalletTransaction).where(WalletTransaction.wallet_id == wallet_id)
        if transaction_type:
            query = query.where(WalletTransaction.transaction_type == WalletTransactionType(transaction_type))
        if status:
            query = query.where(WalletTransaction.status == TransactionStatus(status))
        if start_date:
            query = query.where(WalletTransaction.created_at >= start_date)
        if end_date:
            query = query.where(WalletTransaction.created_at <= end_date)
        result = await self.db.execute(
            query.order_by(WalletTransaction.created_at.desc(), WalletTransaction.id.desc())
            .limit(limit)
            .offset(offset)
        )
        return list(result.scalars().all())

    async def _ledger_sum(
        self,
        wallet_id: int,
        *types: WalletTransactionType,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        reference_type: Optional[str] = None,
    ) -> Decimal:
        query = select(func.coalesce(func.sum(WalletTransaction.amount), 0)).where(
            WalletTransaction.wallet_id == wallet_id
        )
        if types:
            query = query.where(WalletTransaction.transaction_type.in_(types))
        if start is not None:
            query = query.where(WalletTransaction.created_at >= start)
        if end is not None:
            query = query.where(WalletTransaction.created_at < end)
        if reference_type is not None:
            query = query.where(WalletTransaction.reference_type == reference_type)
        result = await self.db.execute(query)
        return quantize_money(to_decimal(result.scalar_one()))

    async def _payouts_out(self, wallet_id: int) -> Decimal:
        """Reserved for payouts minus what failed payouts gave back"""
        reserved = await self._ledger_sum(wallet_id, WalletTransactionType.PAYOUT)
        returned = await self._ledger_sum(
            wallet_id, WalletTransactionType.ADJUSTMENT, reference_type=PAYOUT_REQUEST_REFERENCE
        )
        return -reserved - returned

    async def get_wallet_stats(self, wallet_id: int, now: Optional[datetime] = None) -> Optional[WalletStats]:
        wallet = await self.get_wallet_by_id(wallet_id)
        if wallet is None:
            return None
        now = now or utcnow()
        this_month = _month_start(now.date())
        last_month = _previous_month_start(now.date())

        count_result = await self.db.execute(
            select(func.count(WalletTransaction.id)).where(WalletTransaction.wallet_id == wallet_id)
        )
        pending_result = await self.db.execute(
            select(func.coalesce(func.sum(PayoutRequest.amount), 0)).where(
                PayoutRequest.wallet_id == wallet_id,
                PayoutRequest.status.in_(_OPEN_PAYOUT_STATUSES),
            )
        )

        return WalletStats(
            wallet_id=wallet_id,
            current_balance=await self._ledger_sum(wallet_id),
            pending_balance=quantize_money(wallet.pending_balance),
            total_earnings=await self._ledger_sum(wallet_id, WalletTransactionType.SUBSCRIPTION_PAYMENT),
            total_payouts=await self._payouts_out(wallet_id),
            this_month_earnings=await self._ledger_sum(
                wallet_id, WalletTransactionType.SUBSCRIPTION_PAYMENT, start=this_month
            ),
            last_month_earnings=await self._ledger_sum(
                wallet_id, WalletTransactionType.SUBSCRIPTION_PAYMENT, start=last_month, end=this_month
            ),
            pending_payout_amount=quantize_money(to_decimal(pending_result.scalar_one())),
            transaction_count=int(count_result.scalar_one()),
        )

    async def get_wallet_summary(self, wallet_id: int, now: Optional[datetime] = None) -> Optional[WalletSummary]:
        wallet = await self.get_wallet_by_id(wallet_id)
        if wallet is None:
            return None

        from payout_ledger.domain.services.platform_account_service import PlatformAccountService

        primary = await PlatformAccountService(self.db).get_primary_account()
        account = primary.data if primary.success else None
        minimum = (
            quantize_money(account.minimum_payout_amount)
            if account is not None
            else quantize_money(settings.DEFAULT_MINIMUM_PAYOUT_AMOUNT)
        )
        next_date = None
        if account is not None and account.auto_payout_enabled:
            today = to_payout_local(now or utcnow()).date()
            next_date = next_payout_date(today, account.payout_schedule.value, account.payout_day)

        last_payout = await self.db.execute(
            select(func.max(PayoutRequest.completed_at)).where(
                PayoutRequest.wallet_id == wallet_id,
                PayoutRequest.status == PayoutRequestStatus.COMPLETED,
            )
        )
        method_configured = bool(wallet.payout_method)
        balance = quantize_money(wallet.balance)

        return WalletSummary(
            wallet_id=wallet.id,
            creator_id=wallet.creator_id,
            currency=wallet.currency,
            available_balance=balance,
            pending_balance=quantize_money(wallet.pending_balance),
            lifetime_earnings=await self._ledger_sum(wallet_id, WalletTransactionType.SUBSCRIPTION_PAYMENT),
            total_withdrawn=quantize_money(wallet.total_withdrawn),
            minimum_payout_amount=minimum,
            can_request_payout=wallet.is_active and method_configured and balance >= minimum,
            payout_method_configured=method_configured,
            next_payout_date=next_date,
            last_payout_at=last_payout.scalar_one_or_none(),
        )

    async def get_earnings_breakdown(
        self,
        wallet_id: int,
        start_date: datetime,
        end_date: datetime,
    ) -> Optional[EarningsBreakdown]:
        """Gross, fee and net per payment method and per day within [start_date, end_date]"""
        wallet = await self.get_wallet_by_id(wallet_id)
        if wallet is None:
            return None

        result = await self.db.execute(
            select(SubscriptionPayment)
            .where(
                SubscriptionPayment.wallet_id == wallet_id,
                SubscriptionPayment.created_at >= start_date,
                SubscriptionPayment.created_at <= end_date,
            )
            .order_by(SubscriptionPayment.created_at)
        )
        payments = list(result.scalars().all())

        gross = fees = net = ZERO
        by_method: dict[str, Decimal] = {}
        daily: dict[date, dict[str, Any]] = {}
        for payment in payments:
            gross += payment.gross_amount
            fees += payment.platform_fee
            net += payment.creator_amount
            method = payment.payment_method or "unknown"
            by_method[method] = by_method.get(method, ZERO) + payment.creator_amount
            day = daily.setdefault(
                payment.created_at.date(),
                {"date": payment.created_at.date(), "gross": ZERO, "fees": ZERO, "net": ZERO, "count": 0},
            )
            day["gross"] += payment.gross_amount
            day["fees"] += payment.platform_fee
            day["net"] += payment.creator_amount
            day["count"] += 1

        return EarningsBreakdown(
            wallet_id=wallet_id,
            start_date=start_date,
            end_date=end_date,
            gross_amount=quantize_money(gross),
            platform_fees=quantize_money(fees),
            net_earnings=quantize_money(net),
            payment_count=len(payments),
            by_payment_method={k: quantize_money(v) for k, v in by_method.items()},
            daily=[daily[d] for d in sorted(daily)],
        )
