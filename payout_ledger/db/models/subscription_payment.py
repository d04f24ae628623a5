"""
Subscription Payment Model - gross / fee / net breakdown of each credited payment
"""
from sqlalchemy import Column, Integer, String, Numeric, DateTime, ForeignKey

from payout_ledger.core.clock import utcnow
from payout_ledger.db.database import Base


class SubscriptionPayment(Base):
    __tablename__ = "subscription_payments"

    id = Column(Integer, primary_key=True, index=True)
    subscription_id = Column(String(64), nullable=False, index=True)
    creator_id = Column(String(64), nullable=False, index=True)
    wallet_id = Column(Integer, ForeignKey("creator_wallets.id"), nullable=False, index=True)
    wallet_transaction_id = Column(Integer, ForeignKey("wallet_transactions.id"), nullable=True)

    gross_amount = Column(Numeric(12, 2), nullable=False)
    platform_fee = Column(Numeric(12, 2), nullable=False)
    creator_amount = Column(Numeric(12, 2), nullable=False)
    fee_percentage = Column(Numeric(5, 2), nullable=False)
    currency = Column(String(3), nullable=False, default="USD")
    payment_method = Column(String(50), nullable=True)

    # processor charge id; a replayed webhook with the same id is not credited twice
    external_payment_id = Column(String(255), unique=True, nullable=True)
    status = Column(String(20), nullable=False, default="completed")

    created_at = Column(DateTime, default=utcnow, nullable=False, index=True)
