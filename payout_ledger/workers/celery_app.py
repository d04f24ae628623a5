"""
Celery Application Configuration
"""
from celery import Celery
from celery.schedules import crontab

from payout_ledger.core.config import settings

celery_app = Celery(
    "creator_payouts",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
    include=["payout_ledger.workers.tasks"]
)

# Celery configuration
celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone=settings.PAYOUT_TIMEZONE,
    enable_utc=True,
    task_track_started=True,
    # a payout job must finish inside its own deadline budget plus bookkeeping
    task_time_limit=settings.PAYOUT_JOB_DEADLINE_SECONDS + 120,
    worker_prefetch_multiplier=1,
    task_acks_late=True,
    task_reject_on_worker_lost=True,
)

# Beat schedule for periodic tasks
celery_app.conf.beat_schedule = {
    # the check itself decides whether today is a payout day
    "run-automated-payout-check-daily": {
        "task": "payout_ledger.workers.tasks.run_automated_payout_check",
        "schedule": crontab(hour=str(settings.PAYOUT_CHECK_HOUR), minute="0"),
    },
}
