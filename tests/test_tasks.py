"""
Tests for the Celery task wrapper and the CRM job processor.
"""
import pytest
from contextlib import asynccontextmanager
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

from celery.exceptions import Retry

from crm_gateway.workers import processors, tasks
from crm_gateway.workers.processors import CrmCallError, EmailProcessor, SalesforceProcessor


def fake_task(retries: int):
    return SimpleNamespace(request=SimpleNamespace(retries=retries))


@pytest.fixture
def task_redis():
    with patch.object(tasks, "redis_client") as redis_mock:
        redis_mock.reconnect = AsyncMock()
        redis_mock.disconnect = AsyncMock()
        yield redis_mock


@pytest.fixture
def failing_email_processor(mock_redis):
    processor = EmailProcessor()
    processor.redis = mock_redis

    async def fail(job):
        raise RuntimeError("smtp down")

    processor.process = fail
    return processor


EMAIL_JOB = {"id": "email-1", "data": {"to": "ops@example.com"}, "opts": {"attempts": 2}}


class TestExecute:
    """Retry or final failure after a processor error."""

    @pytest.mark.asyncio
    async def test_attempts_left_schedules_retry(self, task_redis, failing_email_processor, mock_redis):
        with pytest.raises(tasks.RetryLater) as exc_info:
            await tasks._execute(fake_task(0), failing_email_processor, EMAIL_JOB)

        assert exc_info.value.countdown == 5.0
        assert str(exc_info.value.error) == "smtp down"
        last_move = mock_redis.move_job.call_args
        assert last_move.args[2] == "waiting"
        assert last_move.kwargs["fields"]["attempts_made"] == 1
        task_redis.disconnect.assert_called_once()

    @pytest.mark.asyncio
    async def test_last_attempt_marks_failed(self, task_redis, failing_email_processor, mock_redis):
        with pytest.raises(RuntimeError, match="smtp down"):
            await tasks._execute(fake_task(1), failing_email_processor, EMAIL_JOB)

        last_move = mock_redis.move_job.call_args
        assert last_move.args[2] == "failed"
        assert last_move.kwargs["keep"] == failing_email_processor.policy.remove_on_fail
        assert last_move.kwargs["fields"]["attempts_made"] == 2
        assert last_move.kwargs["fields"]["failed_reason"] == "smtp down"
        task_redis.disconnect.assert_called_once()

    @pytest.mark.asyncio
    async def test_success_returns_result(self, task_redis, mock_redis):
        processor = EmailProcessor()
        processor.redis = mock_redis

        result = await tasks._execute(fake_task(0), processor, EMAIL_JOB)

        assert result["success"] is True
        assert [call.args[2] for call in mock_redis.move_job.call_args_list] == ["active", "completed"]

    def test_run_job_hands_retry_to_celery(self, task_redis, failing_email_processor):
        task = MagicMock()
        task.request.retries = 0
        task.retry.side_effect = Retry("retrying")

        with pytest.raises(Retry):
            tasks._run_job(task, failing_email_processor, EMAIL_JOB)

        assert task.retry.call_args.kwargs["countdown"] == 5.0
        assert str(task.retry.call_args.kwargs["exc"]) == "smtp down"


@pytest.fixture
def crm_env(mock_session):
    """Patch the processor's storage collaborators; yields the mocks keyed by name."""

    @asynccontextmanager
    async def fake_worker_session():
        yield mock_session

    with patch.object(processors, "worker_session", fake_worker_session), \
            patch.object(processors, "AuditService") as audit_cls, \
            patch.object(processors, "JobAuditRepository") as job_audit_cls, \
            patch.object(processors, "ErrorsService") as errors_cls:
        audit_cls.return_value.log_api_call = AsyncMock()
        audit_cls.return_value.log_job_processing = AsyncMock()
        job_audit_cls.return_value.update_status = AsyncMock(return_value=True)
        errors_cls.return_value.log_error = AsyncMock()
        yield {
            "audit": audit_cls.return_value,
            "job_audit": job_audit_cls.return_value,
            "errors": errors_cls.return_value,
        }


def crm_job(attempts_made=0, attempts=2):
    return {
        "id": "sf-1",
        "attempts_made": attempts_made,
        "opts": {"attempts": attempts},
        "data": {
            "endpoint": "/pledge",
            "type": "pledge",
            "token": "sf-token",
            "client_id": "client-1",
            "audit_id": "pledge-123",
            "user_id": None,
            "payload": {"limit": 10},
        },
    }


def crm_processor(response):
    client = MagicMock()
    client.direct_api = AsyncMock(return_value=response)
    return SalesforceProcessor(client=client)


class TestSalesforceProcessor:
    """Test cases for SalesforceProcessor.process."""

    @pytest.mark.asyncio
    async def test_success_records_item_rows(self, crm_env):
        response = {
            "error": False,
            "http_code": 200,
            "data": {"data": [
                {"Success": True, "Id": "a01", "OrderId": "ORD-1", "Message": "Charged"},
                {"Id": "a02"},
            ]},
        }
        processor = crm_processor(response)

        result = await processor.process(crm_job())

        assert result is response
        headers = processor.client.direct_api.call_args.kwargs["headers"]
        assert headers == {"Authorization": "Bearer sf-token", "ClientId": "client-1"}

        crm_env["audit"].log_api_call.assert_called_once()
        row = crm_env["audit"].log_api_call.call_args
        assert row.args[2] == "CRON_JOB"
        assert row.args[4] == "callPledge"
        assert row.kwargs["reference_id"] == "ORD-1"
        assert row.kwargs["salesforce_id"] == "a01"

        statuses = [call.args[1] for call in crm_env["job_audit"].update_status.call_args_list]
        assert statuses == ["processing", "completed"]
        crm_env["errors"].log_error.assert_not_called()
        assert processor.metrics.processed == 1

    @pytest.mark.asyncio
    async def test_retryable_error_skips_error_log(self, crm_env):
        processor = crm_processor({"error": True, "http_code": 503, "data": {"message": "down"}})

        with pytest.raises(CrmCallError) as exc_info:
            await processor.process(crm_job(attempts_made=0))

        assert exc_info.value.status_code == 503
        crm_env["errors"].log_error.assert_not_called()
        assert processor.metrics.failed == 1

    @pytest.mark.asyncio
    async def test_final_failure_writes_error_log(self, crm_env):
        processor = crm_processor({"error": True, "http_code": 401, "data": {"message": "expired"}})

        with pytest.raises(CrmCallError):
            await processor.process(crm_job(attempts_made=1))

        entry = crm_env["errors"].log_error.call_args.args[0]
        assert entry["type"] == "error"
        assert entry["source"] == "salesforce-processor"
        assert entry["status_code"] == 401
        assert entry["metadata"]["error_type"] == "AUTHENTICATION_ERROR"
        assert crm_env["job_audit"].update_status.call_args.args[:2] == ("pledge-123", "failed")
