"""
Tests for the Celery tasks and beat schedule.

Tasks run synchronously here (each spins its own event loop), so these tests
are plain functions with the service and the DB session mocked.
"""
from contextlib import asynccontextmanager
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from celery.schedules import crontab

from payout_ledger.core.logging import correlation_id_var, get_correlation_id
from payout_ledger.domain.results import (
    AutomatedPayoutCheckResult,
    PayoutJobResult,
    ScheduleJobResult,
)
from payout_ledger.workers import tasks
from payout_ledger.workers.celery_app import celery_app


@asynccontextmanager
async def _fake_session():
    yield MagicMock(name="session")


@pytest.fixture
def service():
    instance = MagicMock()
    instance.run_automated_payout_check = AsyncMock()
    instance.process_payout_job = AsyncMock()
    instance.retry_failed_payouts = AsyncMock()
    with patch.object(tasks, "PayoutAutomationService", return_value=instance), \
         patch.object(tasks, "get_task_session", _fake_session):
        yield instance


@pytest.fixture
def lock():
    with patch.object(tasks, "acquire_lock", new_callable=AsyncMock, return_value=True) as acquire, \
         patch.object(tasks, "release_lock", new_callable=AsyncMock) as release:
        yield acquire, release


@pytest.mark.unit
class TestBeatSchedule:

    def test_daily_check_is_scheduled(self):
        entry = celery_app.conf.beat_schedule["run-automated-payout-check-daily"]

        assert entry["task"] == "payout_ledger.workers.tasks.run_automated_payout_check"
        assert entry["schedule"] == crontab(hour="6", minute="0")

    def test_tasks_registered(self):
        for name in ("run_automated_payout_check", "process_payout_job", "retry_failed_payouts"):
            assert f"payout_ledger.workers.tasks.{name}" in celery_app.tasks

    def test_worker_settings(self):
        assert celery_app.conf.task_acks_late is True
        assert celery_app.conf.worker_prefetch_multiplier == 1
        assert celery_app.conf.task_serializer == "json"


@pytest.mark.unit
class TestRunAutomatedPayoutCheckTask:

    def test_runs_check_under_lock(self, service, lock):
        acquire, release = lock
        service.run_automated_payout_check.return_value = AutomatedPayoutCheckResult(
            success=True,
            jobs_created=1,
            job_id=3,
            payout_result=PayoutJobResult(success=True, job_id=3, status="completed", successful_payouts=2),
        )

        result = tasks.run_automated_payout_check()

        assert result["jobs_created"] == 1
        assert result["payout_result"]["successful_payouts"] == 2
        acquire.assert_awaited_once_with(tasks.PAYOUT_CHECK_LOCK, 900 + 60)
        release.assert_awaited_once_with(tasks.PAYOUT_CHECK_LOCK)

    def test_skips_when_lock_held(self, service, lock):
        acquire, release = lock
        acquire.return_value = False

        result = tasks.run_automated_payout_check()

        assert result == {"success": True, "jobs_created": 0, "error": "Payout check already running"}
        service.run_automated_payout_check.assert_not_awaited()
        release.assert_not_awaited()

    def test_lock_released_when_check_raises(self, service, lock):
        _, release = lock
        service.run_automated_payout_check.side_effect = RuntimeError("db down")

        with pytest.raises(RuntimeError, match="db down"):
            tasks.run_automated_payout_check()

        release.assert_awaited_once_with(tasks.PAYOUT_CHECK_LOCK)


@pytest.mark.unit
class TestJobTasks:

    def test_process_payout_job(self, service):
        service.process_payout_job.return_value = PayoutJobResult(
            success=False, job_id=4, status="failed", successful_payouts=1, failed_payouts=1,
            errors=[{"creator_id": "creator-a", "wallet_id": 1, "error": "declined"}],
        )

        result = tasks.process_payout_job(4)

        service.process_payout_job.assert_awaited_once_with(4)
        assert result["status"] == "failed"
        assert result["errors"][0]["error"] == "declined"

    def test_retry_schedules_and_processes(self, service):
        service.retry_failed_payouts.return_value = ScheduleJobResult(success=True, job_id=9, total_creators=1)
        service.process_payout_job.return_value = PayoutJobResult(success=True, job_id=9, status="completed")

        result = tasks.retry_failed_payouts(4)

        service.retry_failed_payouts.assert_awaited_once_with(4)
        service.process_payout_job.assert_awaited_once_with(9)
        assert result["job_id"] == 9
        assert result["payout_result"]["status"] == "completed"

    def test_retry_without_processing(self, service):
        service.retry_failed_payouts.return_value = ScheduleJobResult(success=True, job_id=9, total_creators=1)

        result = tasks.retry_failed_payouts(4, process=False)

        service.process_payout_job.assert_not_awaited()
        assert "payout_result" not in result

    def test_retry_failure_is_returned(self, service):
        service.retry_failed_payouts.return_value = ScheduleJobResult(
            success=False, error="Payout job 4 was already retried"
        )

        result = tasks.retry_failed_payouts(4)

        assert result["success"] is False
        assert result["error"] == "Payout job 4 was already retried"
        service.process_payout_job.assert_not_awaited()

    def test_job_runs_under_its_correlation_id(self, service):
        seen = []

        async def _process(job_id):
            seen.append(get_correlation_id())
            return PayoutJobResult(success=True, job_id=job_id, status="completed")

        service.process_payout_job.side_effect = _process
        token = correlation_id_var.set("outer123")
        try:
            tasks.process_payout_job(4)

            assert seen == ["job-4"]
            assert correlation_id_var.get() == "outer123"
        finally:
            correlation_id_var.reset(token)
