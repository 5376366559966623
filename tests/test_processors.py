"""
Tests for queue processors: error categorisation and retry policy.
"""
import httpx
import pytest
from unittest.mock import AsyncMock, MagicMock

from crm_gateway.workers.processors import (
    CrmCallError,
    EmailProcessor,
    NotificationProcessor,
    SalesforceProcessor,
    categorize_error,
    error_log_type,
    result_items,
)


class TestErrorCategories:
    """Test cases for CRM error categorisation."""

    @pytest.mark.parametrize("error,expected", [
        (CrmCallError("unauthorized", status_code=401), "AUTHENTICATION_ERROR"),
        (CrmCallError("forbidden", status_code=403), "AUTHORIZATION_ERROR"),
        (CrmCallError("slow down", status_code=429), "RATE_LIMIT_ERROR"),
        (CrmCallError("boom", status_code=502), "SERVER_ERROR"),
        (CrmCallError("refused", error_type="connection"), "CONNECTION_ERROR"),
        (CrmCallError("slow", error_type="timeout"), "TIMEOUT_ERROR"),
        (CrmCallError("bad request", status_code=400), "UNKNOWN_ERROR"),
        (httpx.ReadTimeout("read timed out"), "TIMEOUT_ERROR"),
        (httpx.ConnectError("refused"), "CONNECTION_ERROR"),
        (KeyError("endpoint"), "UNKNOWN_ERROR"),
    ])
    def test_categorize_error(self, error, expected):
        assert categorize_error(error) == expected

    @pytest.mark.parametrize("category,expected", [
        ("SERVER_ERROR", "critical"),
        ("CONNECTION_ERROR", "critical"),
        ("AUTHENTICATION_ERROR", "error"),
        ("AUTHORIZATION_ERROR", "error"),
        ("TIMEOUT_ERROR", "warning"),
        ("UNKNOWN_ERROR", "warning"),
    ])
    def test_error_log_type(self, category, expected):
        assert error_log_type(category) == expected


class TestResultItems:
    """CRM responses come back in several shapes."""

    def test_wrapped_list(self):
        assert result_items({"data": [{"Id": "1"}, {"Id": "2"}]}) == [{"Id": "1"}, {"Id": "2"}]

    def test_bare_list(self):
        assert result_items([{"Id": "1"}]) == [{"Id": "1"}]

    def test_single_object(self):
        assert result_items({"Id": "1", "Success": True}) == [{"Id": "1", "Success": True}]

    def test_scalar(self):
        assert result_items("ok") == []
        assert result_items(None) == []


class TestRetryPolicy:
    """Test cases for retry decisions."""

    @pytest.fixture
    def processor(self):
        return SalesforceProcessor(client=MagicMock())

    def test_retryable_error_with_attempts_left(self, processor):
        job = {"id": "job-1", "attempts_made": 0, "opts": {"attempts": 3}}
        assert processor.should_retry(job, CrmCallError("boom", status_code=503)) is True

    def test_last_attempt_is_not_retried(self, processor):
        job = {"id": "job-1", "attempts_made": 2, "opts": {"attempts": 3}}
        assert processor.should_retry(job, CrmCallError("boom", status_code=503)) is False

    def test_client_errors_are_not_retried(self, processor):
        job = {"id": "job-1", "attempts_made": 0, "opts": {"attempts": 3}}
        assert processor.should_retry(job, CrmCallError("bad token", status_code=401)) is False

    def test_attempts_fall_back_to_queue_policy(self, processor):
        job = {"id": "job-1", "attempts_made": 0, "opts": {}}
        assert processor.max_attempts(job) == processor.policy.attempts

    def test_exponential_backoff(self, processor):
        job = {"id": "job-1", "attempts_made": 0, "opts": {"backoff": {"type": "exponential", "delay": 500}}}
        assert processor.retry_delay(job) == 0.5
        job["attempts_made"] = 2
        assert processor.retry_delay(job) == 2.0

    def test_fixed_backoff_from_policy(self):
        processor = EmailProcessor()
        job = {"id": "job-1", "attempts_made": 1, "opts": {}}
        assert processor.retry_delay(job) == 5.0


class TestProcessorLifecycle:
    """Registry bookkeeping around process()."""

    @pytest.mark.asyncio
    async def test_handle_marks_job_completed(self, mock_redis):
        processor = NotificationProcessor()
        processor.redis = mock_redis
        job = {"id": "job-1", "attempts_made": 0, "data": {"type": "cleanup"}}

        result = await processor.handle(job)

        assert result["success"] is True
        states = [call.args[2] for call in mock_redis.move_job.call_args_list]
        assert states == ["active", "completed"]

    @pytest.mark.asyncio
    async def test_handle_propagates_failures(self, mock_redis):
        processor = EmailProcessor()
        processor.redis = mock_redis

        async def fail(job):
            raise RuntimeError("smtp down")

        processor.process = fail

        with pytest.raises(RuntimeError):
            await processor.handle({"id": "job-2", "attempts_made": 0, "data": {}})

        states = [call.args[2] for call in mock_redis.move_job.call_args_list]
        assert states == ["active"]

    @pytest.mark.asyncio
    async def test_completion_bookkeeping_failure_is_not_a_job_failure(self, mock_redis):
        """Once the work is done, a registry error is logged and the result still returned."""
        processor = NotificationProcessor()
        processor.redis = mock_redis
        processor.logger = MagicMock()

        async def move_job(queue_name, job_id, state, **kwargs):
            if state == "completed":
                raise ConnectionError("redis gone")

        mock_redis.move_job = AsyncMock(side_effect=move_job)

        result = await processor.handle({"id": "job-3", "attempts_made": 0, "data": {}})

        assert result["success"] is True
        processor.logger.job_failed.assert_not_called()
        processor.logger.job_complete.assert_called_once()
        assert processor.logger.error.call_args.kwargs["error"] == "redis gone"

    @pytest.mark.asyncio
    async def test_activation_failure_is_logged_as_job_failure(self, mock_redis):
        processor = EmailProcessor()
        processor.redis = mock_redis
        processor.logger = MagicMock()
        mock_redis.move_job = AsyncMock(side_effect=ConnectionError("redis gone"))

        with pytest.raises(ConnectionError):
            await processor.handle({"id": "job-4", "attempts_made": 0, "data": {}})

        processor.logger.job_failed.assert_called_once()
        assert processor.logger.job_failed.call_args.args[0] == "job-4"
