"""
Platform Account Service - platform payout accounts, platform balance and dashboard

Exactly one active account may be primary. The swap (clear old primary, set new)
runs in one transaction and a partial unique index on is_primary rejects any
concurrent second primary.
"""
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError, MultipleResultsFound, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from payout_ledger.core.clock import utcnow
from payout_ledger.core.config import settings
from payout_ledger.core.exceptions import AppException, PaymentGatewayError
from payout_ledger.core.logging import get_logger
from payout_ledger.db.models.creator_wallet import CreatorWallet
from payout_ledger.db.models.payout_request import PayoutRequest, PayoutRequestStatus
from payout_ledger.db.models.platform_account import (
    PayoutSchedule,
    PlatformAccount,
    PlatformAccountType,
)
from payout_ledger.db.models.platform_balance import PlatformBalance
from payout_ledger.db.models.platform_transaction import (
    PlatformTransaction,
    PlatformTransactionType,
)
from payout_ledger.domain.money import ZERO, quantize_money, to_decimal
from payout_ledger.domain.payout_schedule import calculate_growth_percentage
from payout_ledger.domain.results import (
    ConnectOnboardingResult,
    PlatformDashboardStats,
    ServiceResult,
    StripeConnectInfo,
)
from payout_ledger.domain.schemas import (
    PlatformAccountCreate,
    PlatformAccountUpdate,
    StripeConnectSetupRequest,
    validate_payout_day,
)
from payout_ledger.domain.services.gateways import BasePaymentGateway, get_payment_gateway

logger = get_logger(__name__)

RECENT_TRANSACTIONS_LIMIT = 10

# which PlatformBalance columns each transaction type moves
_BALANCE_EFFECTS: dict[PlatformTransactionType, dict[str, int]] = {
    PlatformTransactionType.FEE_COLLECTION: {"total_fees_collected": 1, "available_balance": 1},
    PlatformTransactionType.CREATOR_PAYOUT: {"total_payouts_made": 1},
    PlatformTransactionType.STRIPE_TRANSFER: {"total_payouts_made": 1},
    PlatformTransactionType.REFUND: {"available_balance": -1},
    PlatformTransactionType.ADJUSTMENT: {"available_balance": 1},
}


def _connect_status(charges_enabled: bool, payouts_enabled: bool, details_submitted: bool) -> str:
    if charges_enabled and payouts_enabled:
        return "active"
    if not details_submitted:
        return "pending"
    return "restricted"


def transaction_to_dict(txn: PlatformTransaction) -> dict[str, Any]:
    return {
        "id": txn.id,
        "transaction_type": txn.transaction_type.value,
        "amount": txn.amount,
        "currency": txn.currency,
        "description": txn.description,
        "status": txn.status,
        "reference_type": txn.reference_type,
        "reference_id": txn.reference_id,
        "stripe_transfer_id": txn.stripe_transfer_id,
        "created_at": txn.created_at,
    }


class PlatformAccountService:
    """Service for platform account configuration and platform-side bookkeeping"""

    def __init__(self, db: AsyncSession, gateway: Optional[BasePaymentGateway] = None):
        self.db = db
        self._gateway = gateway

    @property
    def gateway(self) -> BasePaymentGateway:
        if self._gateway is None:
            self._gateway = get_payment_gateway()
        return self._gateway

    # ==================== accounts ====================

    async def get_platform_accounts(self, include_inactive: bool = True) -> ServiceResult[list[PlatformAccount]]:
        query = select(PlatformAccount)
        if not include_inactive:
            query = query.where(PlatformAccount.is_active.is_(True))
        result = await self.db.execute(
            query.order_by(PlatformAccount.is_primary.desc(), PlatformAccount.created_at.desc())
        )
        return ServiceResult(success=True, data=list(result.scalars().all()))

    async def get_platform_account(self, account_id: int) -> Optional[PlatformAccount]:
        result = await self.db.execute(select(PlatformAccount).where(PlatformAccount.id == account_id))
        return result.scalar_one_or_none()

    async def get_primary_account(self) -> ServiceResult[Optional[PlatformAccount]]:
        """The active primary account, or success with no data when none is configured"""
        try:
            result = await self.db.execute(
                select(PlatformAccount).where(
                    PlatformAccount.is_primary.is_(True),
                    PlatformAccount.is_active.is_(True),
                )
            )
            account = result.scalar_one_or_none()
        except MultipleResultsFound:
            logger.error("More than one primary platform account configured")
            return ServiceResult(success=False, error="Multiple primary platform accounts configured")
        return ServiceResult(success=True, data=account)

    async def _assign_primary(self, account_id: int) -> None:
        """Clear every other primary and set this one, inside the caller's transaction"""
        await self.db.execute(
            select(PlatformAccount.id).where(PlatformAccount.is_primary.is_(True)).with_for_update()
        )
        await self.db.execute(
            update(PlatformAccount)
            .where(PlatformAccount.is_primary.is_(True), PlatformAccount.id != account_id)
            .values(is_primary=False, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        await self.db.execute(
            update(PlatformAccount)
            .where(PlatformAccount.id == account_id)
            .values(is_primary=True, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )

    async def _find_existing(self, data: PlatformAccountCreate) -> Optional[PlatformAccount]:
        query = select(PlatformAccount).where(
            PlatformAccount.account_type == PlatformAccountType(data.account_type)
        )
        if data.account_type == "stripe_connect":
            query = query.where(PlatformAccount.stripe_account_id == data.stripe_account_id)
        elif data.account_type == "paypal":
            query = query.where(PlatformAccount.paypal_email == data.paypal_email)
        else:
            query = query.where(
                PlatformAccount.bank_routing_number == data.bank_routing_number,
                PlatformAccount.bank_account_last4 == data.bank_account_last4,
            )
        result = await self.db.execute(query.limit(1))
        return result.scalar_one_or_none()

    async def upsert_platform_account(self, data: PlatformAccountCreate) -> ServiceResult[PlatformAccount]:
        """Create the account, or update the one with the same processor identity"""
        if data.is_primary and not data.is_active:
            return ServiceResult(success=False, error="An inactive account cannot be primary")
        try:
            account = await self._find_existing(data)
            if account is not None and account.is_primary and not data.is_active:
                return ServiceResult(success=False, error="Cannot deactivate the primary platform account")
            fields = data.model_dump(exclude={"bank_account_number", "is_primary", "account_type"})
            fields["account_type"] = PlatformAccountType(data.account_type)
            fields["payout_schedule"] = PayoutSchedule(data.payout_schedule)
            fields["bank_account_last4"] = data.bank_account_last4
            created = account is None
            if created:
                account = PlatformAccount(is_primary=False, **fields)
                self.db.add(account)
            else:
                for key, value in fields.items():
                    setattr(account, key, value)
            await self.db.flush()

            if data.is_primary:
                await self._assign_primary(account.id)
            await self.db.commit()
        except IntegrityError as exc:
            await self.db.rollback()
            logger.warning(
                "Platform account upsert conflicted",
                extra_data={"account_type": data.account_type, "error": str(exc.orig)},
            )
            return ServiceResult(success=False, error="Platform account conflicts with an existing account")
        except SQLAlchemyError as exc:
            await self.db.rollback()
            logger.error("Platform account upsert failed", extra_data={"error": str(exc)}, exc_info=True)
            return ServiceResult(success=False, error="Failed to save platform account")

        account = await self._reload(account.id)
        logger.info(
            "Platform account saved",
            extra_data={
                "platform_account_id": account.id,
                "account_type": data.account_type,
                "created": created,
                "is_primary": account.is_primary,
            },
        )
        return ServiceResult(success=True, data=account)

    async def _reload(self, account_id: int) -> Optional[PlatformAccount]:
        result = await self.db.execute(
            select(PlatformAccount)
            .where(PlatformAccount.id == account_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def update_platform_account(
        self, account_id: int, updates: PlatformAccountUpdate
    ) -> ServiceResult[PlatformAccount]:
        account = await self.get_platform_account(account_id)
        if account is None:
            return ServiceResult(success=False, error="Platform account not found")

        changes = updates.model_dump(exclude_unset=True)
        make_primary = changes.pop("is_primary", None)

        schedule = changes.get("payout_schedule", account.payout_schedule.value)
        payout_day = changes.get("payout_day", account.payout_day)
        try:
            validate_payout_day(schedule, payout_day)
        except ValueError as exc:
            return ServiceResult(success=False, error=str(exc))
        if make_primary is False and account.is_primary:
            return ServiceResult(success=False, error="Set another account as primary instead")
        is_active = changes.get("is_active")
        if is_active is None:
            is_active = account.is_active
        if account.is_primary and not is_active:
            return ServiceResult(success=False, error="Cannot deactivate the primary platform account")
        if make_primary and not is_active:
            return ServiceResult(success=False, error="An inactive account cannot be primary")

        try:
            for key, value in changes.items():
                if key == "payout_schedule":
                    value = PayoutSchedule(value)
                setattr(account, key, value)
            await self.db.flush()
            if make_primary:
                await self._assign_primary(account_id)
            await self.db.commit()
        except IntegrityError as exc:
            await self.db.rollback()
            logger.warning(
                "Primary account swap conflicted",
                extra_data={"platform_account_id": account_id, "error": str(exc.orig)},
            )
            return ServiceResult(success=False, error="Another primary account was set concurrently")

        account = await self._reload(account_id)
        logger.info(
            "Platform account updated",
            extra_data={"platform_account_id": account_id, "fields": sorted(changes), "is_primary": account.is_primary},
        )
        return ServiceResult(success=True, data=account)

    async def delete_platform_account(self, account_id: int) -> ServiceResult[bool]:
        account = await self.get_platform_account(account_id)
        if account is None:
            return ServiceResult(success=False, error="Platform account not found")
        if account.is_primary:
            return ServiceResult(success=False, error="Cannot delete the primary platform account")

        txn_count = await self.db.execute(
            select(func.count(PlatformTransaction.id)).where(PlatformTransaction.platform_account_id == account_id)
        )
        if txn_count.scalar_one():
            # history references the account; keep the row
            account.is_active = False
            await self.db.commit()
            logger.info("Platform account deactivated", extra_data={"platform_account_id": account_id})
            return ServiceResult(success=True, data=True)

        balance = await self.db.execute(
            select(PlatformBalance).where(PlatformBalance.platform_account_id == account_id)
        )
        balance_row = balance.scalar_one_or_none()
        if balance_row is not None:
            await self.db.delete(balance_row)
        await self.db.delete(account)
        await self.db.commit()
        logger.info("Platform account deleted", extra_data={"platform_account_id": account_id})
        return ServiceResult(success=True, data=True)

    # ==================== balance and transactions ====================

    async def _get_or_create_balance(self, account_id: int, currency: str) -> PlatformBalance:
        query = select(PlatformBalance).where(PlatformBalance.platform_account_id == account_id)
        result = await self.db.execute(query)
        balance = result.scalar_one_or_none()
        if balance:
            return balance
        try:
            async with self.db.begin_nested():
                balance = PlatformBalance(platform_account_id=account_id, currency=currency)
                self.db.add(balance)
        except IntegrityError:
            result = await self.db.execute(query.execution_options(populate_existing=True))
            balance = result.scalar_one()
        return balance

    async def _primary_account_id(self) -> Optional[int]:
        result = await self.db.execute(
            select(PlatformAccount.id).where(
                PlatformAccount.is_primary.is_(True),
                PlatformAccount.is_active.is_(True),
            )
        )
        return result.scalar_one_or_none()

    async def record_platform_transaction(
        self,
        transaction_type: PlatformTransactionType,
        amount: Any,
        *,
        currency: str = "USD",
        description: Optional[str] = None,
        reference_type: Optional[str] = None,
        reference_id: Optional[str] = None,
        stripe_transfer_id: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
        platform_account_id: Optional[int] = None,
    ) -> PlatformTransaction:
        """Append a platform transaction and move the account's cached balance.

        Flush only: runs inside the caller's transaction and is committed or rolled
        back with it. Defaults to the primary account; without one the transaction
        is recorded unattributed.
        """
        amount = quantize_money(amount, currency)
        account_id = platform_account_id or await self._primary_account_id()
        now = utcnow()
        txn = PlatformTransaction(
            platform_account_id=account_id,
            transaction_type=transaction_type,
            amount=amount,
            currency=currency,
            description=description,
            status="completed",
            reference_type=reference_type,
            reference_id=reference_id,
            stripe_transfer_id=stripe_transfer_id,
            details=details,
            processed_at=now,
            created_at=now,
        )
        self.db.add(txn)
        await self.db.flush()

        if account_id is not None:
            await self._get_or_create_balance(account_id, currency)
            values: dict[str, Any] = {"last_updated": now}
            for column_name, sign in _BALANCE_EFFECTS[transaction_type].items():
                column = getattr(PlatformBalance, column_name)
                values[column_name] = column + (amount * sign)
            await self.db.execute(
                update(PlatformBalance)
                .where(PlatformBalance.platform_account_id == account_id)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
        return txn

    async def get_platform_balance(self, account_id: Optional[int] = None) -> ServiceResult[Optional[PlatformBalance]]:
        if account_id is None:
            account_id = await self._primary_account_id()
            if account_id is None:
                return ServiceResult(success=True, data=None)
        result = await self.db.execute(
            select(PlatformBalance)
            .where(PlatformBalance.platform_account_id == account_id)
            .execution_options(populate_existing=True)
        )
        return ServiceResult(success=True, data=result.scalar_one_or_none())

    async def get_platform_transactions(
        self,
        transaction_type: Optional[str] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        platform_account_id: Optional[int] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> ServiceResult[list[PlatformTransaction]]:
        query = select(PlatformTransaction)
        if transaction_type:
            try:
                query = query.where(PlatformTransaction.transaction_type == PlatformTransactionType(transaction_type))
            except ValueError:
                return ServiceResult(success=False, error=f"Unknown transaction type: {transaction_type}")
        if platform_account_id is not None:
            query = query.where(PlatformTransaction.platform_account_id == platform_account_id)
        if start_date:
            query = query.where(PlatformTransaction.created_at >= start_date)
        if end_date:
            query = query.where(PlatformTransaction.created_at <= end_date)
        result = await self.db.execute(
            query.order_by(PlatformTransaction.created_at.desc(), PlatformTransaction.id.desc())
            .limit(limit)
            .offset(offset)
        )
        return ServiceResult(success=True, data=list(result.scalars().all()))

    async def _sum_transactions(
        self,
        transaction_types: tuple[PlatformTransactionType, ...],
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> Decimal:
        query = select(func.coalesce(func.sum(PlatformTransaction.amount), 0)).where(
            PlatformTransaction.transaction_type.in_(transaction_types)
        )
        if start is not None:
            query = query.where(PlatformTransaction.created_at >= start)
        if end is not None:
            query = query.where(PlatformTransaction.created_at < end)
        result = await self.db.execute(query)
        return quantize_money(to_decimal(result.scalar_one()))

    async def get_platform_dashboard_stats(self, now: Optional[datetime] = None) -> ServiceResult[PlatformDashboardStats]:
        """Balance, fee totals, month-over-month fee growth and recent activity"""
        now = now or utcnow()
        this_month = datetime(now.year, now.month, 1)
        last_month_day = this_month - timedelta(days=1)
        last_month = datetime(last_month_day.year, last_month_day.month, 1)

        try:
            balance_result = await self.get_platform_balance()
            balance = balance_result.data
            fees_total = await self._sum_transactions((PlatformTransactionType.FEE_COLLECTION,))
            payouts_total = await self._sum_transactions(
                (PlatformTransactionType.CREATOR_PAYOUT, PlatformTransactionType.STRIPE_TRANSFER)
            )
            this_month_fees = await self._sum_transactions(
                (PlatformTransactionType.FEE_COLLECTION,), start=this_month
            )
            last_month_fees = await self._sum_transactions(
                (PlatformTransactionType.FEE_COLLECTION,), start=last_month, end=this_month
            )
            pending = await self.db.execute(
                select(func.count(PayoutRequest.id)).where(PayoutRequest.status == PayoutRequestStatus.PENDING)
            )
            creators = await self.db.execute(
                select(func.count(CreatorWallet.id)).where(
                    CreatorWallet.total_earned > 0,
                    CreatorWallet.is_active.is_(True),
                )
            )
            recent = await self.get_platform_transactions(limit=RECENT_TRANSACTIONS_LIMIT)
        except SQLAlchemyError as exc:
            logger.error("Dashboard stats query failed", extra_data={"error": str(exc)}, exc_info=True)
            return ServiceResult(success=False, error="Failed to load dashboard stats")

        stats = PlatformDashboardStats(
            available_balance=quantize_money(balance.available_balance) if balance else ZERO,
            pending_balance=quantize_money(balance.pending_balance) if balance else ZERO,
            total_fees_collected=fees_total,
            total_payouts_made=payouts_total,
            net_revenue=fees_total - payouts_total,
            this_month_fees=this_month_fees,
            last_month_fees=last_month_fees,
            growth_percentage=calculate_growth_percentage(this_month_fees, last_month_fees),
            pending_payouts=int(pending.scalar_one()),
            active_creators=int(creators.scalar_one()),
            currency=balance.currency if balance else settings.DEFAULT_CURRENCY,
            recent_transactions=[transaction_to_dict(t) for t in recent.data or []],
        )
        return ServiceResult(success=True, data=stats)

    # ==================== Stripe Connect onboarding ====================

    async def setup_stripe_connect(self, request: StripeConnectSetupRequest) -> ConnectOnboardingResult:
        """Create the platform's connected account, store it as the primary, return the onboarding URL"""
        try:
            account = await self.gateway.create_connected_account(
                email=request.email,
                country=request.country or settings.STRIPE_CONNECT_COUNTRY,
                metadata={"account_role": "platform", "business_name": request.business_name or ""},
            )
            url = await self.gateway.create_onboarding_link(
                account_id=account.id,
                return_url=request.return_url or f"{settings.FRONTEND_URL}/admin/platform/stripe/return",
                refresh_url=request.refresh_url or f"{settings.FRONTEND_URL}/admin/platform/stripe/refresh",
            )
        except PaymentGatewayError as exc:
            logger.error(
                "Stripe Connect setup failed",
                extra_data={"error": exc.message, "details": exc.details},
            )
            return ConnectOnboardingResult(success=False, error=exc.message)
        except AppException as exc:
            return ConnectOnboardingResult(success=False, error=exc.message)

        saved = await self.upsert_platform_account(
            PlatformAccountCreate(
                account_type="stripe_connect",
                account_name=request.business_name,
                stripe_account_id=account.id,
                stripe_account_status=_connect_status(
                    account.charges_enabled, account.payouts_enabled, account.details_submitted
                ),
                is_primary=True,
            )
        )
        if not saved.success:
            return ConnectOnboardingResult(success=False, account_id=account.id, error=saved.error)

        logger.info(
            "Stripe Connect account created for platform",
            extra_data={"stripe_account_id": account.id, "platform_account_id": saved.data.id},
        )
        return ConnectOnboardingResult(
            success=True,
            account_id=account.id,
            onboarding_url=url,
            platform_account_id=saved.data.id,
        )

    async def get_stripe_connect_info(self, stripe_account_id: str) -> ServiceResult[StripeConnectInfo]:
        """Live capability flags of a connected account, synced onto the stored config"""
        try:
            account = await self.gateway.retrieve_account(stripe_account_id)
        except AppException as exc:
            logger.warning(
                "Stripe Connect lookup failed",
                extra_data={"stripe_account_id": stripe_account_id, "error": exc.message},
            )
            return ServiceResult(success=False, error=exc.message)

        status = _connect_status(account.charges_enabled, account.payouts_enabled, account.details_submitted)
        await self.db.execute(
            update(PlatformAccount)
            .where(PlatformAccount.stripe_account_id == stripe_account_id)
            .values(
                stripe_account_status=status,
                stripe_charges_enabled=account.charges_enabled,
                stripe_payouts_enabled=account.payouts_enabled,
                stripe_details_submitted=account.details_submitted,
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()

        return ServiceResult(
            success=True,
            data=StripeConnectInfo(
                account_id=account.id,
                charges_enabled=account.charges_enabled,
                payouts_enabled=account.payouts_enabled,
                details_submitted=account.details_submitted,
                status=status,
                requirements_due=list(account.requirements_due),
            ),
        )
