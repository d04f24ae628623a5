"""
Platform Transaction Model - fee collections and payouts seen from the platform side
"""
import enum
from sqlalchemy import (
    Column, Integer, String, Numeric, DateTime, ForeignKey, JSON, Index, Enum as SQLEnum,
)
from sqlalchemy.dialects.postgresql import JSONB

from payout_ledger.core.clock import utcnow
from payout_ledger.db.database import Base


class PlatformTransactionType(str, enum.Enum):
    FEE_COLLECTION = "fee_collection"
    CREATOR_PAYOUT = "creator_payout"
    REFUND = "refund"
    ADJUSTMENT = "adjustment"
    STRIPE_TRANSFER = "stripe_transfer"


class PlatformTransaction(Base):
    __tablename__ = "platform_transactions"

    id = Column(Integer, primary_key=True, index=True)
    # null while no platform account is configured
    platform_account_id = Column(Integer, ForeignKey("platform_accounts.id"), nullable=True, index=True)

    transaction_type = Column(SQLEnum(PlatformTransactionType), nullable=False)
    amount = Column(Numeric(12, 2), nullable=False)
    currency = Column(String(3), nullable=False, default="USD")
    description = Column(String(500), nullable=True)
    status = Column(String(20), nullable=False, default="completed")

    reference_type = Column(String(50), nullable=True)
    reference_id = Column(String(255), nullable=True)
    # one row per processor transfer; replayed transfers are not recorded again
    stripe_transfer_id = Column(String(255), nullable=True, unique=True)
    details = Column(JSON().with_variant(JSONB, "postgresql"), nullable=True)

    processed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    __table_args__ = (
        Index("ix_platform_transactions_type_created", "transaction_type", "created_at"),
    )
