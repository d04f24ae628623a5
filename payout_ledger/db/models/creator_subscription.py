"""
Creator Subscription Model - which creator a subscription pays
"""
from sqlalchemy import Column, Integer, String, DateTime

from payout_ledger.core.clock import utcnow
from payout_ledger.db.database import Base


class CreatorSubscription(Base):
    __tablename__ = "creator_subscriptions"

    id = Column(Integer, primary_key=True, index=True)
    subscription_id = Column(String(64), unique=True, nullable=False)
    creator_id = Column(String(64), nullable=False, index=True)
    subscriber_id = Column(String(64), nullable=True)
    community_id = Column(String(64), nullable=True)
    status = Column(String(20), nullable=False, default="active")

    created_at = Column(DateTime, default=utcnow)
