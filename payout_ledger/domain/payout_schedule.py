"""
Payout schedule evaluation.

Weekly payout_day counts from Sunday: 0=Sunday, 1=Monday ... 6=Saturday. Monthly
payout_day is the day of the month; a day the month lacks never fires that month.
"""
from datetime import date, datetime, timedelta
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

DAILY = "daily"
WEEKLY = "weekly"
MONTHLY = "monthly"


def sunday_based_weekday(day: date) -> int:
    """0=Sunday ... 6=Saturday"""
    return (day.weekday() + 1) % 7


def should_run_payout(now: date | datetime, schedule: Optional[str], payout_day: Optional[int]) -> bool:
    schedule = getattr(schedule, "value", schedule)
    if schedule == DAILY:
        return True
    if schedule == WEEKLY:
        return payout_day is not None and sunday_based_weekday(now) == payout_day
    if schedule == MONTHLY:
        return payout_day is not None and now.day == payout_day
    return False


def next_payout_date(today: date, schedule: Optional[str], payout_day: Optional[int]) -> Optional[date]:
    """First scheduled day strictly after ``today``, or None if the schedule never fires"""
    for offset in range(1, 367):
        candidate = today + timedelta(days=offset)
        if should_run_payout(candidate, schedule, payout_day):
            return candidate
    return None


def calculate_growth_percentage(current: Decimal, previous: Decimal) -> float:
    """Month-over-month growth; 100 when the previous month was zero, 0 when both are"""
    current = Decimal(current)
    previous = Decimal(previous)
    if previous > 0:
        growth = (current - previous) / previous * 100
        return float(growth.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))
    return 100.0 if current > 0 else 0.0
