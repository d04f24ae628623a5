"""
Platform Balance Model - cached aggregate per platform account
"""
from decimal import Decimal
from sqlalchemy import Column, Integer, String, Numeric, DateTime, ForeignKey

from payout_ledger.core.clock import utcnow
from payout_ledger.db.database import Base


class PlatformBalance(Base):
    __tablename__ = "platform_balances"

    id = Column(Integer, primary_key=True, index=True)
    platform_account_id = Column(Integer, ForeignKey("platform_accounts.id"), unique=True, nullable=False)

    available_balance = Column(Numeric(12, 2), nullable=False, default=Decimal("0.00"))
    pending_balance = Column(Numeric(12, 2), nullable=False, default=Decimal("0.00"))
    reserved_balance = Column(Numeric(12, 2), nullable=False, default=Decimal("0.00"))
    total_fees_collected = Column(Numeric(12, 2), nullable=False, default=Decimal("0.00"))
    total_payouts_made = Column(Numeric(12, 2), nullable=False, default=Decimal("0.00"))
    currency = Column(String(3), nullable=False, default="USD")

    last_updated = Column(DateTime, default=utcnow, onupdate=utcnow)
