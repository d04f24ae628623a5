"""
Platform Account Model - where gross payments land and how automated payouts run
"""
import enum
from decimal import Decimal
from sqlalchemy import (
    Column, Integer, String, Numeric, DateTime, Boolean, JSON, Index, text, Enum as SQLEnum,
)
from sqlalchemy.dialects.postgresql import JSONB

from payout_ledger.core.clock import utcnow
from payout_ledger.db.database import Base


class PlatformAccountType(str, enum.Enum):
    STRIPE_CONNECT = "stripe_connect"
    BANK_ACCOUNT = "bank_account"
    PAYPAL = "paypal"


class PayoutSchedule(str, enum.Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


class PlatformAccount(Base):
    __tablename__ = "platform_accounts"
    __table_args__ = (
        # at most one primary account
        Index(
            "uq_platform_accounts_single_primary",
            "is_primary",
            unique=True,
            postgresql_where=text("is_primary"),
            sqlite_where=text("is_primary = 1"),
        ),
    )

    id = Column(Integer, primary_key=True, index=True)
    account_type = Column(SQLEnum(PlatformAccountType), nullable=False)
    account_name = Column(String(200), nullable=True)

    # Stripe Connect
    stripe_account_id = Column(String(255), unique=True, nullable=True)
    stripe_account_status = Column(String(30), nullable=True)  # pending | active | restricted
    stripe_charges_enabled = Column(Boolean, nullable=False, default=False)
    stripe_payouts_enabled = Column(Boolean, nullable=False, default=False)
    stripe_details_submitted = Column(Boolean, nullable=False, default=False)

    # Bank account (only the last four digits of the account number are kept)
    bank_name = Column(String(200), nullable=True)
    bank_account_holder_name = Column(String(200), nullable=True)
    bank_routing_number = Column(String(50), nullable=True)
    bank_account_last4 = Column(String(4), nullable=True)
    bank_account_type = Column(String(20), nullable=True)
    bank_country = Column(String(2), nullable=True)

    # PayPal
    paypal_email = Column(String(255), nullable=True)
    paypal_account_id = Column(String(255), nullable=True)

    is_active = Column(Boolean, nullable=False, default=True)
    is_primary = Column(Boolean, nullable=False, default=False)
    currency = Column(String(3), nullable=False, default="USD")

    # Automated payouts
    auto_payout_enabled = Column(Boolean, nullable=False, default=False)
    payout_schedule = Column(SQLEnum(PayoutSchedule), nullable=False, default=PayoutSchedule.WEEKLY)
    payout_day = Column(Integer, nullable=True, default=5)  # weekly: 0=Sunday..6; monthly: day of month
    minimum_payout_amount = Column(Numeric(12, 2), nullable=False, default=Decimal("25.00"))

    details = Column(JSON().with_variant(JSONB, "postgresql"), nullable=True)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)
