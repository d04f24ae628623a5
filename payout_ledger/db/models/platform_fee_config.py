"""
Platform Fee Config Model - the percentage the platform keeps from each payment
"""
from decimal import Decimal
from sqlalchemy import Column, Integer, String, Numeric, DateTime, Boolean, CheckConstraint

from payout_ledger.core.clock import utcnow
from payout_ledger.db.database import Base


class PlatformFeeConfig(Base):
    """The newest active row wins"""

    __tablename__ = "platform_fee_configs"
    __table_args__ = (
        CheckConstraint(
            "fee_percentage >= 0 AND fee_percentage <= 100",
            name="ck_platform_fee_configs_percentage_range",
        ),
    )

    id = Column(Integer, primary_key=True, index=True)
    fee_percentage = Column(Numeric(5, 2), nullable=False, default=Decimal("20.00"))
    minimum_fee = Column(Numeric(12, 2), nullable=False, default=Decimal("0.00"))
    maximum_fee = Column(Numeric(12, 2), nullable=True)
    currency = Column(String(3), nullable=False, default="USD")
    is_active = Column(Boolean, nullable=False, default=True)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)
