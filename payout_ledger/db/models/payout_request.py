"""
Payout Request Model - one payout attempt for one wallet

Status only moves forward: pending -> processing -> completed | failed.
"""
import enum
from sqlalchemy import (
    Column, Integer, String, Numeric, DateTime, ForeignKey, JSON, Enum as SQLEnum,
)
from sqlalchemy.dialects.postgresql import JSONB

from payout_ledger.core.clock import utcnow
from payout_ledger.db.database import Base


class PayoutRequestStatus(str, enum.Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class PayoutRequest(Base):
    __tablename__ = "payout_requests"

    id = Column(Integer, primary_key=True, index=True)
    wallet_id = Column(Integer, ForeignKey("creator_wallets.id"), nullable=False, index=True)
    payout_job_id = Column(Integer, ForeignKey("payout_jobs.id"), nullable=True, index=True)

    amount = Column(Numeric(12, 2), nullable=False)
    currency = Column(String(3), nullable=False, default="USD")
    payout_method = Column(JSON().with_variant(JSONB, "postgresql"), nullable=False)
    status = Column(SQLEnum(PayoutRequestStatus), nullable=False, default=PayoutRequestStatus.PENDING)

    # same key for every attempt of the same logical payout
    idempotency_key = Column(String(255), nullable=True, index=True)
    external_payout_id = Column(String(255), nullable=True)
    failure_reason = Column(String(500), nullable=True)

    requested_at = Column(DateTime, default=utcnow, nullable=False)
    processed_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)
