"""
Tests for the beat-driven scheduling wrapper.
"""
import pytest
from contextlib import asynccontextmanager
from unittest.mock import AsyncMock, MagicMock, patch

from crm_gateway.workers import scheduler


@pytest.fixture
def scheduler_env(mock_session):
    """Patch the scheduler's collaborators; yields the mocks keyed by name."""

    @asynccontextmanager
    async def fake_worker_session():
        yield mock_session

    state = MagicMock()
    state.load = AsyncMock()
    state.is_enabled.return_value = True

    with patch.object(scheduler, "worker_session", fake_worker_session), \
            patch.object(scheduler, "redis_client") as redis_mock, \
            patch.object(scheduler, "cron_job_state", state), \
            patch.object(scheduler, "AuditService") as audit_cls:
        redis_mock.reconnect = AsyncMock()
        redis_mock.disconnect = AsyncMock()
        redis_mock.set_lock = AsyncMock(return_value=True)
        redis_mock.release_lock = AsyncMock()
        audit_cls.return_value.log_job_scheduling = AsyncMock()
        yield {"redis": redis_mock, "state": state, "audit": audit_cls.return_value}


class TestRunScheduled:
    """Test cases for _run_scheduled."""

    @pytest.mark.asyncio
    async def test_disabled_job_is_skipped(self, scheduler_env):
        scheduler_env["state"].is_enabled.return_value = False
        schedule = AsyncMock()

        result = await scheduler._run_scheduled("pledge", "pledge", "/pledge", False, schedule)

        assert result == "disabled"
        schedule.assert_not_called()
        scheduler_env["redis"].set_lock.assert_not_called()
        scheduler_env["redis"].disconnect.assert_called_once()

    @pytest.mark.asyncio
    async def test_manual_run_ignores_switch(self, scheduler_env):
        scheduler_env["state"].is_enabled.return_value = False
        schedule = AsyncMock(return_value={"type": "cleanup"})

        result = await scheduler._run_scheduled("recurring", "cleanup", "system", True, schedule)

        assert result == "scheduled"
        schedule.assert_called_once()

    @pytest.mark.asyncio
    async def test_held_lock_skips_run(self, scheduler_env):
        scheduler_env["redis"].set_lock.return_value = False
        schedule = AsyncMock()

        result = await scheduler._run_scheduled("pledge", "pledge", "/pledge", False, schedule)

        assert result == "locked"
        schedule.assert_not_called()
        scheduler_env["redis"].release_lock.assert_not_called()

    @pytest.mark.asyncio
    async def test_success_is_audited_without_token(self, scheduler_env):
        schedule = AsyncMock(return_value={"endpoint": "/pledge", "token": "secret", "type": "pledge"})

        result = await scheduler._run_scheduled("pledge", "pledge", "/pledge", False, schedule, delivered=True)

        assert result == "scheduled"
        scheduler_env["redis"].set_lock.assert_called_once_with(
            "lock:scheduler:pledge", ttl_seconds=scheduler.LOCK_TTL_SECONDS
        )
        call = scheduler_env["audit"].log_job_scheduling.call_args
        job_data = call.args[5]
        assert "token" not in job_data
        assert job_data["endpoint"] == "/pledge"
        assert "duration" in job_data
        assert call.args[6] is True
        assert call.kwargs["is_delivered"] is True
        scheduler_env["redis"].release_lock.assert_called_once_with("lock:scheduler:pledge")

    @pytest.mark.asyncio
    async def test_failure_is_audited_and_lock_released(self, scheduler_env):
        schedule = AsyncMock(side_effect=RuntimeError("Failed to retrieve access token"))

        result = await scheduler._run_scheduled("oneoff", "oneoff", "/oneoff", False, schedule)

        assert result == "failed"
        call = scheduler_env["audit"].log_job_scheduling.call_args
        assert call.args[6] is False
        assert call.args[7] == "Failed to retrieve access token"
        scheduler_env["redis"].release_lock.assert_called_once_with("lock:scheduler:oneoff")


class TestScheduleHelpers:
    """The jobs each beat entry enqueues."""

    @pytest.mark.asyncio
    async def test_cleanup_is_delayed(self):
        queue = MagicMock()
        queue.add_notification_job = AsyncMock()

        job_data = await scheduler._schedule_cleanup(queue)

        assert job_data["type"] == "cleanup"
        queue.add_notification_job.assert_called_once_with(job_data, {"delay": scheduler.CLEANUP_DELAY_MS})

    @pytest.mark.asyncio
    async def test_salesforce_schedule_requires_token(self):
        queue = MagicMock()
        queue.add_salesforce_job = AsyncMock()

        with patch.object(scheduler, "salesforce_client") as client:
            client.get_token = AsyncMock(return_value={"success": False, "token_response": None})
            with pytest.raises(RuntimeError, match="Failed to retrieve access token"):
                await scheduler._salesforce_schedule("pledge", "/pledge", "pledge")(queue)

        queue.add_salesforce_job.assert_not_called()

    @pytest.mark.asyncio
    async def test_salesforce_schedule_enqueues_job(self, mock_session):
        queue = MagicMock()
        queue.session = mock_session
        queue.commit = AsyncMock()
        queue.add_salesforce_job = AsyncMock()

        with patch.object(scheduler, "salesforce_client") as client, \
                patch.object(scheduler, "JobAuditRepository") as repo_cls:
            client.get_token = AsyncMock(
                return_value={"success": True, "token_response": {"access_token": "sf-token"}}
            )
            repo_cls.return_value.create = AsyncMock()
            job_data = await scheduler._salesforce_schedule("oneoff", "/oneoff", "oneOffJob")(queue)

        assert job_data["token"] == "sf-token"
        assert job_data["audit_id"].startswith("oneOffJob-")
        stored = repo_cls.return_value.create.call_args[0][0]
        assert stored["status"] == "queued"
        assert "token" not in stored["payload"]
        queue.add_salesforce_job.assert_called_once_with(
            job_data,
            {"priority": 1, "attempts": scheduler.SALESFORCE_JOB_ATTEMPTS, "job_id": job_data["audit_id"]},
        )
