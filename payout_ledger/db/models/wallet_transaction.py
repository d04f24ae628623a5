"""
Wallet Transaction Model - append-only ledger per wallet

The sum of a wallet's transaction amounts always equals its available balance.
"""
import enum
from sqlalchemy import (
    Column, Integer, String, Numeric, DateTime, ForeignKey, JSON, Index, Enum as SQLEnum,
)
from sqlalchemy.dialects.postgresql import JSONB

from payout_ledger.core.clock import utcnow
from payout_ledger.db.database import Base


class WalletTransactionType(str, enum.Enum):
    SUBSCRIPTION_PAYMENT = "subscription_payment"
    PAYOUT = "payout"  # funds reserved for a payout request (negative)
    REFUND = "refund"
    ADJUSTMENT = "adjustment"  # includes reversal of a failed payout


class TransactionStatus(str, enum.Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class WalletTransaction(Base):
    """Immutable once written"""

    __tablename__ = "wallet_transactions"

    id = Column(Integer, primary_key=True, index=True)
    wallet_id = Column(Integer, ForeignKey("creator_wallets.id"), nullable=False, index=True)

    transaction_type = Column(SQLEnum(WalletTransactionType), nullable=False)
    amount = Column(Numeric(12, 2), nullable=False)  # positive credit, negative debit
    balance_after = Column(Numeric(12, 2), nullable=False)
    currency = Column(String(3), nullable=False, default="USD")
    status = Column(SQLEnum(TransactionStatus), nullable=False, default=TransactionStatus.COMPLETED)

    description = Column(String(500), nullable=True)
    reference_type = Column(String(50), nullable=True)
    reference_id = Column(String(255), nullable=True)
    details = Column(JSON().with_variant(JSONB, "postgresql"), nullable=True)

    processed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    __table_args__ = (
        Index("ix_wallet_transactions_wallet_created", "wallet_id", "created_at"),
    )
