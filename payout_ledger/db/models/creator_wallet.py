"""
Creator Wallet Model - available and pending balances per creator
"""
from decimal import Decimal
from sqlalchemy import Column, Integer, String, Numeric, DateTime, Boolean, JSON, CheckConstraint
from sqlalchemy.dialects.postgresql import JSONB

from payout_ledger.core.clock import utcnow
from payout_ledger.db.database import Base


class CreatorWallet(Base):
    """One row per creator; created lazily on the first earning event and never deleted"""

    __tablename__ = "creator_wallets"
    __table_args__ = (
        CheckConstraint("balance >= 0", name="ck_creator_wallets_balance_non_negative"),
        CheckConstraint("pending_balance >= 0", name="ck_creator_wallets_pending_non_negative"),
    )

    id = Column(Integer, primary_key=True, index=True)
    creator_id = Column(String(64), unique=True, nullable=False)
    display_name = Column(String(200), nullable=True)

    # balance is already net of platform fees
    balance = Column(Numeric(12, 2), nullable=False, default=Decimal("0.00"))
    pending_balance = Column(Numeric(12, 2), nullable=False, default=Decimal("0.00"))
    total_earned = Column(Numeric(12, 2), nullable=False, default=Decimal("0.00"))
    total_withdrawn = Column(Numeric(12, 2), nullable=False, default=Decimal("0.00"))
    currency = Column(String(3), nullable=False, default="USD")

    # tagged payout method, see payout_ledger.domain.payout_methods
    payout_method = Column(JSON().with_variant(JSONB, "postgresql"), nullable=True)
    stripe_account_id = Column(String(255), nullable=True, index=True)

    is_active = Column(Boolean, nullable=False, default=True)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)
