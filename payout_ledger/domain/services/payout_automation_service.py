"""
Payout Automation Service - scheduled batch payouts

Flow: screen eligible wallets -> snapshot them into a PayoutJob -> claim the job
atomically -> pay each creator independently -> finalize the job with counts.

A job is claimed with ``UPDATE ... WHERE status = 'pending'``, so two workers can
never both process it. Per-creator failures are recorded and the loop moves on;
a failed job can be retried once with only its failed creators.
"""
import time
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Optional, Sequence

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from payout_ledger.core.clock import to_payout_local, utcnow
from payout_ledger.core.config import settings
from payout_ledger.core.exceptions import PayoutJobNotFoundError, PayoutJobStatusError
from payout_ledger.core.logging import get_logger, log_async_operation
from payout_ledger.db.models.creator_wallet import CreatorWallet
from payout_ledger.db.models.payout_job import PayoutJob, PayoutJobStatus
from payout_ledger.db.models.payout_request import PayoutRequestStatus
from payout_ledger.domain.money import ZERO, quantize_money, to_decimal
from payout_ledger.domain.payout_methods import (
    BANK_TRANSFER,
    PAYPAL,
    STRIPE_CONNECT,
    payout_method_type,
)
from payout_ledger.domain.payout_schedule import should_run_payout
from payout_ledger.domain.results import (
    AutomatedPayoutCheckResult,
    CreatorPayoutEligibility,
    CreatorPayoutResult,
    PayoutJobResult,
    ScheduleJobResult,
)
from payout_ledger.domain.services.gateways import BasePaymentGateway
from payout_ledger.domain.services.platform_account_service import PlatformAccountService
from payout_ledger.domain.services.platform_stripe_service import PlatformStripeService
from payout_ledger.domain.services.wallet_service import WalletService

logger = get_logger(__name__)

DEFAULT_MINIMUM_AMOUNT = Decimal("25.00")
DEADLINE_EXCEEDED = "Payout job deadline exceeded"


def _snapshot_entry(eligibility: CreatorPayoutEligibility) -> dict[str, Any]:
    return {
        "creator_id": eligibility.creator_id,
        "wallet_id": eligibility.wallet_id,
        "amount": str(eligibility.balance),
        "payout_method": eligibility.payout_method,
    }


class PayoutAutomationService:
    """Service for scheduled creator payouts"""

    def __init__(self, db: AsyncSession, gateway: Optional[BasePaymentGateway] = None):
        self.db = db
        self.gateway = gateway
        self.wallets = WalletService(db)
        self.platform = PlatformAccountService(db, gateway)
        self.stripe = PlatformStripeService(db, gateway)

    # ==================== screening and scheduling ====================

    async def get_eligible_creators(self, minimum_amount: Any = DEFAULT_MINIMUM_AMOUNT) -> list[CreatorPayoutEligibility]:
        """
        Screen active wallets holding at least ``minimum_amount``.

        Read only: annotates each wallet with is_eligible and a reason, creates and
        changes nothing.
        """
        minimum = quantize_money(minimum_amount)
        result = await self.db.execute(
            select(CreatorWallet)
            .where(CreatorWallet.is_active.is_(True), CreatorWallet.balance >= minimum)
            .order_by(CreatorWallet.id)
        )

        screened = []
        for wallet in result.scalars().all():
            method_type = payout_method_type(wallet.payout_method)
            reason = None
            if not wallet.payout_method:
                reason = "No payout method configured"
            elif method_type == STRIPE_CONNECT and not wallet.stripe_account_id:
                reason = "Stripe Connect account not set up"
            screened.append(
                CreatorPayoutEligibility(
                    creator_id=wallet.creator_id,
                    wallet_id=wallet.id,
                    balance=quantize_money(wallet.balance),
                    payout_method=wallet.payout_method,
                    stripe_account_id=wallet.stripe_account_id,
                    is_eligible=reason is None,
                    reason=reason,
                )
            )
        return screened

    async def schedule_payout_job(
        self,
        scheduled_date: date,
        minimum_amount: Any = DEFAULT_MINIMUM_AMOUNT,
    ) -> ScheduleJobResult:
        """Freeze the eligible creators and their amounts into a new pending job"""
        minimum = quantize_money(minimum_amount)
        eligible = [c for c in await self.get_eligible_creators(minimum) if c.is_eligible]
        if not eligible:
            logger.info(
                "No creators eligible for payout",
                extra_data={"scheduled_date": scheduled_date, "minimum_amount": minimum},
            )
            return ScheduleJobResult(success=False, error="No creators eligible for payout")

        snapshot = [_snapshot_entry(c) for c in eligible]
        total = sum((c.balance for c in eligible), ZERO)
        job = PayoutJob(
            scheduled_date=scheduled_date,
            status=PayoutJobStatus.PENDING,
            total_creators=len(snapshot),
            total_amount=total,
            minimum_amount=minimum,
            creator_snapshot=snapshot,
        )
        self.db.add(job)
        try:
            await self.db.commit()
        except SQLAlchemyError as exc:
            await self.db.rollback()
            logger.error("Failed to schedule payout job", extra_data={"error": str(exc)}, exc_info=True)
            return ScheduleJobResult(success=False, error="Failed to schedule payout job")

        logger.info(
            "Payout job scheduled",
            extra_data={
                "job_id": job.id,
                "scheduled_date": scheduled_date,
                "total_creators": job.total_creators,
                "total_amount": total,
            },
        )
        return ScheduleJobResult(
            success=True,
            job_id=job.id,
            total_creators=job.total_creators,
            total_amount=total,
        )

    # ==================== processing ====================

    async def get_payout_job(self, job_id: int, *, refresh: bool = False) -> Optional[PayoutJob]:
        query = select(PayoutJob).where(PayoutJob.id == job_id)
        if refresh:
            query = query.execution_options(populate_existing=True)
        result = await self.db.execute(query)
        return result.scalar_one_or_none()

    async def _claim_job(self, job_id: int) -> bool:
        result = await self.db.execute(
            update(PayoutJob)
            .where(PayoutJob.id == job_id, PayoutJob.status == PayoutJobStatus.PENDING)
            .values(status=PayoutJobStatus.PROCESSING, started_at=utcnow(), updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await self.db.rollback()
            return False
        await self.db.commit()
        return True

    async def _job_chain(self, job: PayoutJob) -> list[int]:
        """Ids of ``job`` and every job it retries, newest first"""
        chain = [job.id]
        current = job
        while current.retry_of_job_id is not None:
            parent = await self.get_payout_job(current.retry_of_job_id)
            if parent is None:
                break
            chain.append(parent.id)
            current = parent
        return chain

    async def process_payout_job(self, job_id: int) -> PayoutJobResult:
        """
        Pay every creator in the job's snapshot.

        Each creator is independent: a failure (or an unexpected exception) is
        recorded and processing continues. Creators not reached before the job's
        deadline are recorded as failed and can be retried. The job ends
        ``completed`` only when nobody failed.
        """
        if not await self._claim_job(job_id):
            job = await self.get_payout_job(job_id, refresh=True)
            if job is None:
                return PayoutJobResult(success=False, job_id=job_id, error=PayoutJobNotFoundError(job_id).message)
            error = PayoutJobStatusError(job_id, job.status.value)
            logger.warning(
                "Payout job not claimed",
                extra_data={"job_id": job_id, "status": job.status.value},
            )
            return PayoutJobResult(success=False, job_id=job_id, status=job.status.value, error=error.message)

        job = await self.get_payout_job(job_id, refresh=True)
        job_chain = await self._job_chain(job)
        snapshot = list(job.creator_snapshot or [])
        deadline = time.monotonic() + settings.PAYOUT_JOB_DEADLINE_SECONDS

        logger.info(
            "Processing payout job",
            extra_data={"job_id": job_id, "total_creators": len(snapshot), "retry_of_job_id": job.retry_of_job_id},
        )

        successful = 0
        failures: list[dict[str, Any]] = []
        for entry in snapshot:
            if time.monotonic() > deadline:
                failures.append({**entry, "error": DEADLINE_EXCEEDED})
                continue
            try:
                result = await self._dispatch_creator_payout(
                    entry["creator_id"],
                    entry["wallet_id"],
                    to_decimal(entry["amount"]),
                    entry.get("payout_method"),
                    job_id=job_id,
                    job_chain=job_chain,
                )
            except Exception as exc:
                await self.db.rollback()
                logger.error(
                    "Creator payout raised",
                    extra_data={"job_id": job_id, "creator_id": entry["creator_id"], "error": str(exc)},
                    exc_info=True,
                )
                result = CreatorPayoutResult(success=False, error=str(exc) or "Payout processing failed")

            if result.success:
                successful += 1
            else:
                failures.append({**entry, "error": result.error or "Unknown error"})

        status = PayoutJobStatus.COMPLETED if not failures else PayoutJobStatus.FAILED
        await self.db.execute(
            update(PayoutJob)
            .where(PayoutJob.id == job_id)
            .values(
                status=status,
                successful_payouts=successful,
                failed_payouts=len(failures),
                error_details=failures or None,
                completed_at=utcnow(),
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()

        if failures:
            logger.warning(
                "Payout job finished with failures",
                extra_data={"job_id": job_id, "successful_payouts": successful, "failed_payouts": len(failures)},
            )
        else:
            logger.info(
                "Payout job completed",
                extra_data={"job_id": job_id, "successful_payouts": successful},
            )
        return PayoutJobResult(
            success=not failures,
            job_id=job_id,
            status=status.value,
            successful_payouts=successful,
            failed_payouts=len(failures),
            errors=[
                {"creator_id": f["creator_id"], "wallet_id": f["wallet_id"], "error": f["error"]}
                for f in failures
            ],
        )

    async def process_creator_payout(
        self,
        creator_id: str,
        wallet_id: int,
        amount: Any,
        payout_method: Optional[dict[str, Any]],
        *,
        job_id: Optional[int] = None,
    ) -> CreatorPayoutResult:
        """Pay one creator on the rail named by ``payout_method['type']``; never raises"""
        job_chain: list[int] = []
        if job_id is not None:
            job = await self.get_payout_job(job_id)
            job_chain = await self._job_chain(job) if job is not None else [job_id]
        try:
            return await self._dispatch_creator_payout(
                creator_id, wallet_id, to_decimal(amount), payout_method, job_id=job_id, job_chain=job_chain
            )
        except Exception as exc:
            await self.db.rollback()
            logger.error(
                "Creator payout raised",
                extra_data={"creator_id": creator_id, "wallet_id": wallet_id, "error": str(exc)},
                exc_info=True,
            )
            return CreatorPayoutResult(success=False, error=str(exc) or "Payout processing failed")

    async def _dispatch_creator_payout(
        self,
        creator_id: str,
        wallet_id: int,
        amount: Decimal,
        payout_method: Optional[dict[str, Any]],
        *,
        job_id: Optional[int],
        job_chain: Sequence[int] = (),
    ) -> CreatorPayoutResult:
        method_type = payout_method_type(payout_method)
        if method_type == STRIPE_CONNECT:
            return await self._stripe_connect_payout(
                creator_id, wallet_id, amount, payout_method, job_id=job_id, job_chain=job_chain
            )
        if method_type in (BANK_TRANSFER, PAYPAL):
            return await self._manual_payout(wallet_id, amount, payout_method, job_id=job_id)
        return CreatorPayoutResult(success=False, error=f"Unsupported payout method: {method_type or 'unknown'}")

    async def _stripe_connect_payout(
        self,
        creator_id: str,
        wallet_id: int,
        amount: Decimal,
        payout_method: dict[str, Any],
        *,
        job_id: Optional[int],
        job_chain: Sequence[int],
    ) -> CreatorPayoutResult:
        """
        Reserve -> transfer -> settle.

        The reservation (balance -> pending_balance, request in ``processing``) is
        committed before the processor call, so a crash mid-transfer leaves the
        money visibly in flight rather than spendable twice.

        A request of an earlier job in the retry chain still in ``processing`` was
        reserved but never settled. It is finished with its own idempotency key and
        nothing new is reserved. Otherwise each job pays under its own key, so a
        retry after a declined transfer is not answered with the stored decline.
        """
        wallet = await self.wallets.get_wallet_by_id(wallet_id)
        if wallet is None:
            return CreatorPayoutResult(success=False, error=f"Wallet not found: {wallet_id}")
        if not wallet.stripe_account_id:
            return CreatorPayoutResult(success=False, error="Creator does not have a Stripe Connect account")

        open_request = await self.wallets.get_open_job_payout(wallet_id, job_chain)
        if open_request is not None and open_request.idempotency_key:
            payout_id = open_request.id
            idempotency_key = open_request.idempotency_key
            amount = open_request.amount
            logger.info(
                "Settling unsettled payout from an earlier attempt",
                extra_data={
                    "payout_id": payout_id,
                    "payout_job_id": open_request.payout_job_id,
                    "job_id": job_id,
                    "idempotency_key": idempotency_key,
                },
            )
        else:
            if job_id is not None:
                idempotency_key = f"payout:{job_id}:{wallet_id}"
            else:
                idempotency_key = f"payout:manual:{wallet_id}:{utcnow():%Y%m%d%H%M%S%f}"
            reserved = await self.wallets.request_payout(
                wallet_id,
                amount,
                payout_method,
                payout_job_id=job_id,
                idempotency_key=idempotency_key,
                status=PayoutRequestStatus.PROCESSING,
            )
            if not reserved.success:
                return CreatorPayoutResult(success=False, error=reserved.error)
            payout_id = reserved.payout_id

        transfer = await self.stripe.transfer_to_creator(
            amount,
            wallet.currency,
            wallet.stripe_account_id,
            description=f"Automated payout for creator {creator_id}",
            metadata={"creator_id": creator_id, "wallet_id": wallet_id, "payout_type": "automated"},
            idempotency_key=idempotency_key,
        )
        if not transfer.success:
            if transfer.in_doubt:
                # the transfer may have gone through; keep the reservation for a retry with the same key
                logger.warning(
                    "Transfer outcome unknown, payout left in processing",
                    extra_data={"payout_id": payout_id, "idempotency_key": idempotency_key, "error": transfer.error},
                )
                return CreatorPayoutResult(success=False, payout_id=payout_id, error=transfer.error)
            await self.wallets.fail_payout(payout_id, transfer.error or "Stripe payout failed")
            return CreatorPayoutResult(success=False, payout_id=payout_id, error=transfer.error)

        settled = await self.wallets.complete_payout(payout_id, transfer.transfer_id, record_platform_payout=False)
        if not settled.success:
            # money left the platform; the request stays in processing and the next retry settles it
            logger.error(
                "Transfer succeeded but payout could not be settled",
                extra_data={
                    "payout_id": payout_id,
                    "transfer_id": transfer.transfer_id,
                    "error": settled.error,
                },
            )
            return CreatorPayoutResult(
                success=False, payout_id=payout_id, transfer_id=transfer.transfer_id, error=settled.error
            )

        return CreatorPayoutResult(success=True, payout_id=payout_id, transfer_id=transfer.transfer_id)

    async def _manual_payout(
        self,
        wallet_id: int,
        amount: Decimal,
        payout_method: dict[str, Any],
        *,
        job_id: Optional[int],
    ) -> CreatorPayoutResult:
        """Bank transfer and PayPal are settled outside the system; park the amount as pending"""
        requested = await self.wallets.request_payout(
            wallet_id,
            amount,
            payout_method,
            payout_job_id=job_id,
            idempotency_key=f"payout:{job_id}:{wallet_id}" if job_id is not None else None,
        )
        if not requested.success:
            return CreatorPayoutResult(success=False, error=requested.error)
        return CreatorPayoutResult(success=True, payout_id=requested.payout_id)

    # ==================== retry ====================

    async def retry_failed_payouts(self, job_id: int) -> ScheduleJobResult:
        """New pending job holding only the creators that failed in ``job_id``"""
        job = await self.get_payout_job(job_id)
        if job is None:
            return ScheduleJobResult(success=False, error=PayoutJobNotFoundError(job_id).message)
        if job.status != PayoutJobStatus.FAILED:
            return ScheduleJobResult(
                success=False, error=PayoutJobStatusError(job_id, job.status.value, "failed").message
            )

        failed = [
            {k: v for k, v in entry.items() if k != "error"}
            for entry in (job.error_details or [])
            if isinstance(entry, dict) and entry.get("wallet_id") is not None
        ]
        if not failed:
            return ScheduleJobResult(success=False, error="No failed payouts to retry")

        total = sum((to_decimal(entry["amount"]) for entry in failed), ZERO)
        retry = PayoutJob(
            scheduled_date=to_payout_local(utcnow()).date(),
            status=PayoutJobStatus.PENDING,
            total_creators=len(failed),
            total_amount=total,
            minimum_amount=job.minimum_amount,
            creator_snapshot=failed,
            retry_of_job_id=job.id,
        )
        self.db.add(retry)
        try:
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            return ScheduleJobResult(success=False, error=f"Payout job {job_id} was already retried")

        logger.info(
            "Retry job scheduled for failed payouts",
            extra_data={"job_id": retry.id, "retry_of_job_id": job_id, "total_creators": len(failed)},
        )
        return ScheduleJobResult(
            success=True, job_id=retry.id, total_creators=len(failed), total_amount=quantize_money(total)
        )

    # ==================== queries ====================

    async def get_payout_jobs(
        self,
        status: Optional[str] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[PayoutJob]:
        query = select(PayoutJob)
        if status:
            query = query.where(PayoutJob.status == PayoutJobStatus(status))
        if date_from:
            query = query.where(PayoutJob.scheduled_date >= date_from)
        if date_to:
            query = query.where(PayoutJob.scheduled_date <= date_to)
        result = await self.db.execute(
            query.order_by(PayoutJob.created_at.desc(), PayoutJob.id.desc()).limit(limit).offset(offset)
        )
        return list(result.scalars().all())

    # ==================== scheduler entry point ====================

    @log_async_operation("automated_payout_check")
    async def run_automated_payout_check(self, now: Optional[datetime] = None) -> AutomatedPayoutCheckResult:
        """
        Daily scheduler hook.

        Reasons for doing nothing come back as success with zero jobs and the reason
        in ``error``. Calling it again on a day that already has a job is a no-op.
        """
        local_now = to_payout_local(now or utcnow())
        today = local_now.date()

        primary = await self.platform.get_primary_account()
        if not primary.success:
            return AutomatedPayoutCheckResult(success=False, error=primary.error)
        account = primary.data
        if account is None:
            return AutomatedPayoutCheckResult(success=True, error="No primary platform account configured")
        if not account.auto_payout_enabled:
            return AutomatedPayoutCheckResult(success=True, error="Auto payouts are disabled")
        if not should_run_payout(local_now, account.payout_schedule, account.payout_day):
            return AutomatedPayoutCheckResult(success=True, error="Not scheduled for payout today")

        existing = await self.db.execute(
            select(PayoutJob.id)
            .where(PayoutJob.scheduled_date == today, PayoutJob.retry_of_job_id.is_(None))
            .limit(1)
        )
        existing_id = existing.scalar_one_or_none()
        if existing_id is not None:
            return AutomatedPayoutCheckResult(
                success=True, job_id=existing_id, error="Payout already scheduled today"
            )

        scheduled = await self.schedule_payout_job(today, account.minimum_payout_amount)
        if not scheduled.success:
            if scheduled.error == "No creators eligible for payout":
                return AutomatedPayoutCheckResult(success=True, error=scheduled.error)
            return AutomatedPayoutCheckResult(success=False, error=scheduled.error)

        processed = await self.process_payout_job(scheduled.job_id)
        logger.info(
            "Automated payout check finished",
            extra_data={
                "job_id": scheduled.job_id,
                "status": processed.status,
                "successful_payouts": processed.successful_payouts,
                "failed_payouts": processed.failed_payouts,
            },
        )
        return AutomatedPayoutCheckResult(
            success=True, jobs_created=1, job_id=scheduled.job_id, payout_result=processed
        )
