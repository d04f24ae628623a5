"""
Admin Payout Endpoints - payout jobs, manual settlement and batch transfers.

All routes require the X-Admin-API-Key header.
"""
from datetime import date, datetime
from decimal import Decimal
from typing import Any, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field, field_validator
from sqlalchemy.ext.asyncio import AsyncSession

from payout_ledger.api.dependencies.admin_auth import require_admin_api_key
from payout_ledger.core.logging import get_logger
from payout_ledger.db.database import get_db
from payout_ledger.db.models.payout_job import PayoutJobStatus
from payout_ledger.domain.results import BatchPayoutItem
from payout_ledger.domain.services.payout_automation_service import PayoutAutomationService
from payout_ledger.domain.services.platform_stripe_service import PlatformStripeService
from payout_ledger.domain.services.wallet_service import WalletService

logger = get_logger(__name__)

router = APIRouter(dependencies=[Depends(require_admin_api_key)])


# ─── Pydantic models ────────────────────────────────────────────────────────

class PayoutJobResponse(BaseModel):
    id: int
    scheduled_date: date
    status: PayoutJobStatus
    total_creators: int
    total_amount: Decimal
    successful_payouts: int
    failed_payouts: int
    minimum_amount: Decimal
    creator_snapshot: list[dict[str, Any]]
    error_details: Optional[list[dict[str, Any]]] = None
    retry_of_job_id: Optional[int] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    created_at: datetime

    class Config:
        from_attributes = True


class ScheduleJobRequest(BaseModel):
    scheduled_date: date
    minimum_amount: Decimal = Field(default=Decimal("25.00"), ge=0)


class BatchPayoutEntry(BaseModel):
    creator_id: str = Field(min_length=1, max_length=64)
    amount: Decimal = Field(gt=0)
    stripe_account_id: str = Field(min_length=1, max_length=255)
    currency: str = Field(default="USD", min_length=3, max_length=3)
    description: Optional[str] = Field(default=None, max_length=500)


class BatchPayoutRequest(BaseModel):
    payouts: list[BatchPayoutEntry] = Field(min_length=1, max_length=500)
    batch_id: Optional[str] = Field(default=None, max_length=64)

    @field_validator("payouts")
    @classmethod
    def one_entry_per_creator(cls, v: list[BatchPayoutEntry]) -> list[BatchPayoutEntry]:
        seen: set[str] = set()
        for entry in v:
            if entry.creator_id in seen:
                raise ValueError(f"creator_id {entry.creator_id} appears more than once")
            seen.add(entry.creator_id)
        return v


class CompletePayoutRequest(BaseModel):
    external_payout_id: Optional[str] = Field(default=None, max_length=255)


class FailPayoutRequest(BaseModel):
    reason: str = Field(min_length=1, max_length=500)


# ─── jobs ───────────────────────────────────────────────────────────────────

@router.get("/eligible", summary="Screen wallets for payout eligibility (read only)")
async def get_eligible_creators(
    minimum_amount: Decimal = Query(Decimal("25.00"), ge=0),
    db: AsyncSession = Depends(get_db),
):
    creators = await PayoutAutomationService(db).get_eligible_creators(minimum_amount)
    return [c.to_dict() for c in creators]


@router.get("/jobs", response_model=List[PayoutJobResponse], summary="List payout jobs")
async def list_payout_jobs(
    status_filter: Optional[str] = Query(None, alias="status"),
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db),
):
    try:
        return await PayoutAutomationService(db).get_payout_jobs(
            status=status_filter, date_from=date_from, date_to=date_to, limit=limit, offset=offset
        )
    except ValueError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Unknown status: {status_filter}")


@router.get("/jobs/{job_id}", response_model=PayoutJobResponse, summary="Get a payout job")
async def get_payout_job(job_id: int, db: AsyncSession = Depends(get_db)):
    job = await PayoutAutomationService(db).get_payout_job(job_id)
    if job is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Payout job not found")
    return job


@router.post("/jobs", status_code=status.HTTP_201_CREATED, summary="Schedule a payout job")
async def schedule_payout_job(body: ScheduleJobRequest, db: AsyncSession = Depends(get_db)):
    result = await PayoutAutomationService(db).schedule_payout_job(body.scheduled_date, body.minimum_amount)
    if not result.success:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=result.error)
    return result.to_dict()


@router.post(
    "/jobs/{job_id}/process",
    summary="Process a pending payout job",
    description="Runs inline by default; with background=true the job is handed to a Celery worker.",
)
async def process_payout_job(
    job_id: int,
    background: bool = False,
    db: AsyncSession = Depends(get_db),
):
    if background:
        from payout_ledger.workers.tasks import process_payout_job as process_payout_job_task

        task = process_payout_job_task.delay(job_id)
        logger.info("Payout job queued", extra_data={"job_id": job_id, "task_id": task.id})
        return {"queued": True, "job_id": job_id, "task_id": task.id}

    result = await PayoutAutomationService(db).process_payout_job(job_id)
    if result.error == "Payout job not found":
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=result.error)
    if result.error:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=result.error)
    return result.to_dict()


@router.post("/jobs/{job_id}/retry", status_code=status.HTTP_201_CREATED, summary="Retry the failed creators of a job")
async def retry_failed_payouts(job_id: int, db: AsyncSession = Depends(get_db)):
    result = await PayoutAutomationService(db).retry_failed_payouts(job_id)
    if not result.success:
        code = status.HTTP_404_NOT_FOUND if result.error == "Payout job not found" else status.HTTP_409_CONFLICT
        raise HTTPException(status_code=code, detail=result.error)
    return result.to_dict()


@router.post("/run-check", summary="Run the automated payout check now")
async def run_automated_payout_check(db: AsyncSession = Depends(get_db)):
    result = await PayoutAutomationService(db).run_automated_payout_check()
    return result.to_dict()


# ─── transfers and manual settlement ────────────────────────────────────────

@router.post("/batch", summary="Transfer to many creators at once")
async def process_batch_payouts(body: BatchPayoutRequest, db: AsyncSession = Depends(get_db)):
    items = [BatchPayoutItem(**entry.model_dump()) for entry in body.payouts]
    result = await PlatformStripeService(db).process_batch_payouts(items, batch_id=body.batch_id)
    return result.to_dict()


@router.post("/requests/{payout_id}/complete", summary="Mark a manual payout as paid")
async def complete_payout_request(
    payout_id: int,
    body: CompletePayoutRequest,
    db: AsyncSession = Depends(get_db),
):
    result = await WalletService(db).complete_payout(payout_id, body.external_payout_id)
    if not result.success:
        code = status.HTTP_404_NOT_FOUND if result.error == "Payout request not found" else status.HTTP_409_CONFLICT
        raise HTTPException(status_code=code, detail=result.error)
    return result.to_dict()


@router.post("/requests/{payout_id}/fail", summary="Mark a payout as failed and return the funds")
async def fail_payout_request(
    payout_id: int,
    body: FailPayoutRequest,
    db: AsyncSession = Depends(get_db),
):
    result = await WalletService(db).fail_payout(payout_id, body.reason)
    if not result.success:
        code = status.HTTP_404_NOT_FOUND if result.error == "Payout request not found" else status.HTTP_409_CONFLICT
        raise HTTPException(status_code=code, detail=result.error)
    return result.to_dict()
