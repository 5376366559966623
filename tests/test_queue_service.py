"""
Tests for job publishing and queue health.
"""
import pytest
import pytest_asyncio
import json
from unittest.mock import AsyncMock, patch

from crm_gateway.core.exceptions import NotFoundError, ValidationError
from crm_gateway.core.queue_policies import EMAIL_QUEUE, QUEUE_POLICIES, SALESFORCE_QUEUE
from crm_gateway.services.queue_monitor import QueueMonitor, calculate_health
from crm_gateway.services.queue_service import QueueService


class TestQueueService:
    """Test cases for QueueService."""

    @pytest_asyncio.fixture
    async def queue_service(self, mock_session, mock_redis):
        service = QueueService(mock_session)
        service.redis = mock_redis
        return service

    @pytest.mark.asyncio
    async def test_enqueue_with_default_options(self, queue_service, mock_redis):
        """Priority and delay default to 0; attempts and backoff come from the queue policy."""
        policy = QUEUE_POLICIES[SALESFORCE_QUEUE]

        with patch("crm_gateway.services.queue_service.celery_app") as mock_celery:
            handle = await queue_service.add_salesforce_job({"endpoint": "/pledge", "type": "pledge"})

        assert handle.queue == SALESFORCE_QUEUE
        assert handle.name == "salesforce-api-call"
        assert handle.opts["priority"] == 0
        assert handle.opts["delay"] == 0
        assert handle.opts["attempts"] == policy.attempts
        assert handle.opts["backoff"] == {"type": "exponential", "delay": 500}

        mock_redis.register_job.assert_called_once()
        kwargs = mock_celery.send_task.call_args.kwargs
        assert mock_celery.send_task.call_args.args[0] == policy.task_name
        assert kwargs["task_id"] == handle.id
        assert kwargs["queue"] == SALESFORCE_QUEUE
        assert kwargs["priority"] == 0
        assert kwargs["countdown"] is None

    @pytest.mark.asyncio
    async def test_enqueue_with_explicit_options(self, queue_service):
        with patch("crm_gateway.services.queue_service.celery_app") as mock_celery:
            handle = await queue_service.add_notification_job(
                {"type": "cleanup"},
                {"delay": 300000, "priority": 25, "attempts": 3, "job_id": "cleanup-1"},
            )

        assert handle.id == "cleanup-1"
        assert handle.opts["attempts"] == 3
        kwargs = mock_celery.send_task.call_args.kwargs
        assert kwargs["countdown"] == 300.0
        assert kwargs["priority"] == 9

    @pytest.mark.asyncio
    async def test_enqueue_unknown_queue(self, queue_service, mock_redis):
        with pytest.raises(ValueError):
            await queue_service.enqueue("sms", {})

        mock_redis.register_job.assert_not_called()

    @pytest.mark.asyncio
    async def test_enqueue_propagates_registry_failure(self, queue_service, mock_redis):
        mock_redis.register_job.side_effect = Exception("redis down")

        with patch("crm_gateway.services.queue_service.celery_app") as mock_celery:
            with pytest.raises(Exception, match="redis down"):
                await queue_service.add_email_job({"to": "ops@example.com"})

        mock_celery.send_task.assert_not_called()

    @pytest.mark.asyncio
    async def test_publish_failure_discards_registration(self, queue_service, mock_redis):
        """A job the broker never accepted is removed from the registry."""
        with patch("crm_gateway.services.queue_service.celery_app") as mock_celery:
            mock_celery.send_task.side_effect = RuntimeError("broker unreachable")
            with pytest.raises(RuntimeError, match="broker unreachable"):
                await queue_service.add_email_job({"to": "ops@example.com"}, {"job_id": "email-1"})

        mock_redis.register_job.assert_called_once()
        mock_redis.remove_job.assert_called_once_with(EMAIL_QUEUE, "email-1")

    @pytest.mark.asyncio
    async def test_publish_failure_survives_cleanup_failure(self, queue_service, mock_redis):
        mock_redis.remove_job.side_effect = ConnectionError("redis gone")

        with patch("crm_gateway.services.queue_service.celery_app") as mock_celery:
            mock_celery.send_task.side_effect = RuntimeError("broker unreachable")
            with pytest.raises(RuntimeError, match="broker unreachable"):
                await queue_service.add_email_job({"to": "ops@example.com"})

    @pytest.mark.asyncio
    async def test_find_job_searches_every_queue(self, queue_service, mock_redis):
        job = {"id": "job-1", "queue": "email"}
        mock_redis.get_job.side_effect = lambda queue, job_id: job if queue == "email" else None

        assert await queue_service.find_job("job-1") == job


class TestQueueHealth:
    """Test cases for queue health grading."""

    @pytest.mark.parametrize("failed,completed,expected", [
        (0, 0, "healthy"),
        (1, 9, "healthy"),
        (2, 8, "healthy"),
        (3, 7, "warning"),
        (5, 5, "warning"),
        (6, 4, "critical"),
    ])
    def test_calculate_health(self, failed, completed, expected):
        assert calculate_health({"failed": failed, "completed": completed}) == expected

    @pytest.mark.asyncio
    async def test_queue_health_reports_each_queue(self, mock_redis):
        mock_redis.get_job_counts.return_value = {
            "waiting": 0, "active": 0, "completed": 4, "failed": 6, "delayed": 0,
        }

        result = await QueueMonitor(mock_redis).get_queue_health()

        assert result["status"] == "healthy"
        assert set(result["queues"]) == set(QUEUE_POLICIES)
        assert result["queues"][SALESFORCE_QUEUE]["health"] == "critical"

    @pytest.mark.asyncio
    async def test_queue_health_when_redis_fails(self, mock_redis):
        mock_redis.get_job_counts = AsyncMock(side_effect=Exception("connection refused"))

        result = await QueueMonitor(mock_redis).get_queue_health()

        assert result["status"] == "unhealthy"
        assert "connection refused" in result["error"]

    @pytest.mark.asyncio
    async def test_list_jobs_rejects_unknown_queue(self, mock_redis):
        with pytest.raises(ValueError):
            await QueueMonitor(mock_redis).list_jobs(queue_name="sms")


def registry_job(job_id="job-1", queue=EMAIL_QUEUE, state="failed", **overrides):
    job = {
        "id": job_id,
        "name": "send-email",
        "queue": queue,
        "state": state,
        "data": {"to": "ops@example.com"},
        "opts": {"priority": 2, "attempts": 2},
        "timestamp": 1700000000000,
        "attempts_made": 2,
        "failed_reason": "smtp down",
    }
    job.update(overrides)
    return job


class TestJobManagement:
    """Test cases for retrying, removing, pausing and clearing."""

    @pytest_asyncio.fixture
    async def queue_service(self, mock_session, mock_redis):
        service = QueueService(mock_session)
        service.redis = mock_redis
        return service

    @pytest.mark.asyncio
    async def test_retry_failed_job(self, queue_service, mock_redis):
        job = registry_job()
        mock_redis.get_job.side_effect = lambda queue, job_id: job if queue == EMAIL_QUEUE else None

        with patch("crm_gateway.services.queue_service.celery_app") as mock_celery:
            result = await queue_service.retry_job("job-1")

        assert result["job"] == {"id": "job-1", "queue": EMAIL_QUEUE, "status": "waiting"}
        queue_name, job_id, state = mock_redis.move_job.call_args.args
        assert (queue_name, job_id, state) == (EMAIL_QUEUE, "job-1", "waiting")
        assert mock_redis.move_job.call_args.kwargs["fields"]["attempts_made"] == 0

        published = mock_celery.send_task.call_args
        assert published.kwargs["task_id"] == "job-1"
        assert published.kwargs["queue"] == EMAIL_QUEUE
        assert published.kwargs["priority"] == 2
        assert published.kwargs["args"][0]["attempts_made"] == 0

    @pytest.mark.asyncio
    async def test_only_failed_jobs_are_retried(self, queue_service, mock_redis):
        mock_redis.get_job.return_value = registry_job(state="active")

        with patch("crm_gateway.services.queue_service.celery_app") as mock_celery:
            with pytest.raises(ValidationError):
                await queue_service.retry_job("job-1")

        mock_celery.send_task.assert_not_called()
        mock_redis.move_job.assert_not_called()

    @pytest.mark.asyncio
    async def test_retry_unknown_job(self, queue_service):
        with pytest.raises(NotFoundError):
            await queue_service.retry_job("missing")

    @pytest.mark.asyncio
    async def test_remove_job_revokes_and_deletes(self, queue_service, mock_redis):
        mock_redis.get_job.return_value = registry_job(state="waiting")

        with patch("crm_gateway.services.queue_service.celery_app") as mock_celery:
            result = await queue_service.remove_job("job-1")

        assert result["message"] == "Job job-1 removed successfully"
        mock_celery.control.revoke.assert_called_once_with("job-1")
        mock_redis.remove_job.assert_called_once_with(EMAIL_QUEUE, "job-1")

    @pytest.mark.asyncio
    async def test_pause_and_resume(self, queue_service, mock_redis):
        with patch("crm_gateway.services.queue_service.celery_app") as mock_celery:
            await queue_service.pause_queue(SALESFORCE_QUEUE)
            await queue_service.resume_queue(SALESFORCE_QUEUE)

        mock_celery.control.cancel_consumer.assert_called_once_with(SALESFORCE_QUEUE)
        mock_celery.control.add_consumer.assert_called_once_with(SALESFORCE_QUEUE)
        assert [call.args for call in mock_redis.set_queue_paused.call_args_list] == [
            (SALESFORCE_QUEUE, True),
            (SALESFORCE_QUEUE, False),
        ]

    @pytest.mark.asyncio
    async def test_pause_unknown_queue(self, queue_service, mock_redis):
        with patch("crm_gateway.services.queue_service.celery_app") as mock_celery:
            with pytest.raises(ValueError):
                await queue_service.pause_queue("sms")

        mock_celery.control.cancel_consumer.assert_not_called()

    @pytest.mark.asyncio
    async def test_clear_queue_revokes_removed_jobs(self, queue_service, mock_redis):
        mock_redis.clear_queue.return_value = ["job-1", "job-2"]

        with patch("crm_gateway.services.queue_service.celery_app") as mock_celery:
            result = await queue_service.clear_queue(EMAIL_QUEUE)

        assert result["cleared"] == 2
        mock_celery.control.revoke.assert_called_once_with(["job-1", "job-2"])

    @pytest.mark.asyncio
    async def test_clear_empty_queue(self, queue_service, mock_redis):
        mock_redis.clear_queue.return_value = []

        with patch("crm_gateway.services.queue_service.celery_app") as mock_celery:
            result = await queue_service.clear_queue(EMAIL_QUEUE)

        assert result["cleared"] == 0
        mock_celery.control.revoke.assert_not_called()


def counts(waiting=0, active=0, completed=0, failed=0):
    return {"waiting": waiting, "active": active, "completed": completed, "failed": failed}


class TestQueueMonitor:
    """Test cases for job listings, totals, alerts and export."""

    @pytest.mark.asyncio
    async def test_single_state_page_reads_only_that_page(self, mock_redis):
        mock_redis.get_job_counts.return_value = counts(failed=42)
        mock_redis.get_job_ids.return_value = ["job-11", "job-12"]
        mock_redis.get_jobs.return_value = [registry_job("job-11"), registry_job("job-12")]

        result = await QueueMonitor(mock_redis).list_jobs(EMAIL_QUEUE, "failed", page=2, limit=10)

        mock_redis.get_job_ids.assert_called_once_with(EMAIL_QUEUE, "failed", 10, 19)
        mock_redis.get_jobs.assert_called_once_with(EMAIL_QUEUE, ["job-11", "job-12"])
        mock_redis.get_job.assert_not_called()
        assert [job["id"] for job in result["data"]] == ["job-11", "job-12"]
        assert result["pagination"] == {"page": 2, "limit": 10, "total": 42, "pages": 5}

    @pytest.mark.asyncio
    async def test_search_across_queues_uses_batched_reads(self, mock_redis):
        jobs = {
            EMAIL_QUEUE: [registry_job("old", timestamp=1), registry_job("new", timestamp=3)],
            SALESFORCE_QUEUE: [registry_job("sf", queue=SALESFORCE_QUEUE, name="salesforce-api-call",
                                            failed_reason=None, timestamp=2)],
        }
        mock_redis.get_jobs.side_effect = lambda queue, ids: jobs.get(queue, []) if ids else []

        def ids_for(queue, state, start, end):
            return ["ids"] if state == "failed" else []

        mock_redis.get_job_ids.side_effect = ids_for

        result = await QueueMonitor(mock_redis).list_jobs(search="SMTP", page=1, limit=10)

        assert [job["id"] for job in result["data"]] == ["new", "old"]
        assert result["pagination"]["total"] == 2
        mock_redis.get_job.assert_not_called()

    @pytest.mark.asyncio
    async def test_job_counts_include_paused_backlog(self, mock_redis):
        mock_redis.get_job_counts.return_value = counts(waiting=4, completed=10, failed=1)
        mock_redis.is_queue_paused.side_effect = lambda queue: queue == EMAIL_QUEUE

        totals = await QueueMonitor(mock_redis).get_job_counts()

        assert totals == {"waiting": 12, "active": 0, "completed": 30, "failed": 3, "paused": 4}

    @pytest.mark.asyncio
    async def test_detailed_stats_raise_alerts(self, mock_redis):
        mock_redis.get_job_counts.return_value = counts(waiting=2000, completed=90, failed=10)
        mock_redis.is_queue_paused.return_value = False
        mock_redis.get_job_ids.return_value = ["a", "b"]
        mock_redis.get_jobs.return_value = [
            {"id": "a", "processed_on": 1000, "finished_on": 1300},
            {"id": "b", "processed_on": 2000, "finished_on": 2100},
        ]

        stats = await QueueMonitor(mock_redis).get_detailed_stats()

        assert stats["queues"][SALESFORCE_QUEUE]["avg_processing_time"] == 200.0
        assert stats["performance"]["queue_depth"] == 6000
        assert stats["performance"]["error_rate"] == 0.1
        assert [alert["type"] for alert in stats["alerts"]] == ["HIGH_QUEUE_DEPTH", "HIGH_ERROR_RATE"]

    @pytest.mark.asyncio
    async def test_quiet_queues_have_no_alerts(self, mock_redis):
        mock_redis.get_job_counts.return_value = counts(completed=100)
        mock_redis.is_queue_paused.return_value = False
        mock_redis.get_job_ids.return_value = []
        mock_redis.get_jobs.return_value = []

        result = await QueueMonitor(mock_redis).get_alerts()

        assert result["alerts"] == []

    @pytest.mark.asyncio
    async def test_export_csv(self, mock_redis):
        mock_redis.get_job_ids.side_effect = lambda queue, state, start, end: ["job-1"] if state == "failed" else []
        mock_redis.get_jobs.side_effect = lambda queue, ids: [registry_job(queue=queue)] if ids else []

        content, content_type, filename = await QueueMonitor(mock_redis).export_jobs(
            {"queue": EMAIL_QUEUE, "status": "failed"}, "csv"
        )

        lines = content.lstrip("\ufeff").split("\r\n")
        assert content.startswith("\ufeff")
        assert lines[0] == "Id,Name,Queue,Status,Created At,Updated At,Attempts Made,Failed Reason"
        assert lines[1].startswith("job-1,send-email,email,failed,")
        assert content_type.startswith("text/csv")
        assert filename.endswith(".csv")

    @pytest.mark.asyncio
    async def test_export_json(self, mock_redis):
        mock_redis.get_job_ids.return_value = []
        mock_redis.get_jobs.return_value = []

        content, content_type, _ = await QueueMonitor(mock_redis).export_jobs({}, "json")

        assert json.loads(content) == []
        assert content_type == "application/json"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("filters,fmt", [({}, "pdf"), ({"queue": "sms"}, "csv")])
    async def test_export_rejects_bad_input(self, mock_redis, filters, fmt):
        with pytest.raises(ValidationError):
            await QueueMonitor(mock_redis).export_jobs(filters, fmt)
