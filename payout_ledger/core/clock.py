"""
Time helpers.

Timestamps are stored as naive UTC (the DateTime columns carry no zone); the payout
schedule is evaluated in the configured PAYOUT_TIMEZONE.
"""
from datetime import datetime, timezone
from zoneinfo import ZoneInfo


def utcnow() -> datetime:
    """Naive UTC now, matching what the DateTime columns store"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def payout_zone() -> ZoneInfo:
    from payout_ledger.core.config import settings

    return ZoneInfo(settings.PAYOUT_TIMEZONE)


def to_payout_local(moment: datetime) -> datetime:
    """Convert a (naive UTC or aware) datetime to the payout time zone"""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(payout_zone())
