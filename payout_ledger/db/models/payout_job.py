"""
Payout Job Model - one scheduled batch run

pending -> processing -> completed (no failures) | failed (any failure).
A failed job can be retried once; the retry carries only the failed creators.
"""
import enum
from decimal import Decimal
from sqlalchemy import (
    Column, Integer, Numeric, Date, DateTime, ForeignKey, JSON, Enum as SQLEnum,
)
from sqlalchemy.dialects.postgresql import JSONB

from payout_ledger.core.clock import utcnow
from payout_ledger.db.database import Base


class PayoutJobStatus(str, enum.Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class PayoutJob(Base):
    __tablename__ = "payout_jobs"

    id = Column(Integer, primary_key=True, index=True)
    scheduled_date = Column(Date, nullable=False, index=True)
    status = Column(SQLEnum(PayoutJobStatus), nullable=False, default=PayoutJobStatus.PENDING, index=True)

    total_creators = Column(Integer, nullable=False, default=0)
    total_amount = Column(Numeric(12, 2), nullable=False, default=Decimal("0.00"))
    successful_payouts = Column(Integer, nullable=False, default=0)
    failed_payouts = Column(Integer, nullable=False, default=0)
    minimum_amount = Column(Numeric(12, 2), nullable=False, default=Decimal("25.00"))

    # [{creator_id, wallet_id, amount, payout_method}] frozen at schedule time
    creator_snapshot = Column(JSON().with_variant(JSONB, "postgresql"), nullable=False, default=list)
    # [{creator_id, wallet_id, amount, payout_method, error}]
    error_details = Column(JSON().with_variant(JSONB, "postgresql"), nullable=True)

    retry_of_job_id = Column(Integer, ForeignKey("payout_jobs.id"), unique=True, nullable=True)

    started_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)
