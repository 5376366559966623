"""
Tests for error log maintenance and the shared query filters.
"""
import pytest
import pytest_asyncio
from types import SimpleNamespace
from unittest.mock import AsyncMock

from sqlalchemy.sql.elements import BooleanClauseList

from crm_gateway.core.exceptions import NotFoundError, ValidationError
from crm_gateway.api.v1.endpoints.audit import export_filters
from crm_gateway.core.filters import (
    build_column_filters,
    build_date_range_filter,
    extract_pagination,
    pagination_meta,
    parse_boolean,
    parse_column_filters,
    to_snake_case,
)
from crm_gateway.models.audit_log import AuditLog
from crm_gateway.schemas.audit import ExportRequest
from crm_gateway.services.errors_service import ErrorsService


class TestErrorsService:
    """Test cases for ErrorsService."""

    @pytest_asyncio.fixture
    async def errors_service(self, mock_session):
        service = ErrorsService(mock_session)
        service.error_repo = AsyncMock()
        return service

    @pytest.mark.asyncio
    async def test_bulk_delete_requires_ids(self, errors_service):
        with pytest.raises(ValidationError) as exc_info:
            await errors_service.bulk_delete(["", "  ", None])

        assert exc_info.value.message == "No valid IDs provided"
        errors_service.error_repo.delete_many.assert_not_called()

    @pytest.mark.asyncio
    async def test_bulk_delete_limit(self, errors_service):
        ids = [f"id-{i}" for i in range(1001)]

        with pytest.raises(ValidationError) as exc_info:
            await errors_service.bulk_delete(ids)

        assert exc_info.value.message == "Cannot delete more than 1000 errors at once"

    @pytest.mark.asyncio
    async def test_bulk_delete_reports_missing(self, errors_service, mock_session):
        errors_service.error_repo.delete_many.return_value = ["a", "b"]

        result = await errors_service.bulk_delete(["a", "b", "c", "a"])

        errors_service.error_repo.delete_many.assert_called_once_with(["a", "b", "c"])
        assert result == {
            "deleted": 2,
            "failed": 1,
            "errors": ["Error log with ID c not found"],
        }
        mock_session.commit.assert_called_once()

    @pytest.mark.asyncio
    async def test_log_error_requires_fields(self, errors_service):
        with pytest.raises(ValidationError) as exc_info:
            await errors_service.log_error({"message": "boom", "type": "error"})

        assert exc_info.value.message == "Missing required fields: source, environment"

    @pytest.mark.asyncio
    async def test_log_error_maps_metadata(self, errors_service):
        errors_service.error_repo.create.return_value = SimpleNamespace(to_dict=lambda: {"id": "err-1"})

        result = await errors_service.log_error({
            "message": "boom",
            "type": "critical",
            "source": "http",
            "environment": "test",
            "metadata": {"job_id": "job-1"},
            "unknown_field": "dropped",
        })

        values = errors_service.error_repo.create.call_args[0][0]
        assert values["metadata_"] == {"job_id": "job-1"}
        assert values["tags"] == []
        assert "unknown_field" not in values
        assert "metadata" not in values
        assert result == {"id": "err-1"}

    @pytest.mark.asyncio
    async def test_resolve_missing_error(self, errors_service):
        errors_service.error_repo.set_resolved.return_value = None

        with pytest.raises(NotFoundError):
            await errors_service.resolve("missing", "admin@example.com")

    @pytest.mark.asyncio
    async def test_export_rejects_unknown_format(self, errors_service):
        with pytest.raises(ValidationError):
            await errors_service.export({}, "pdf")

        errors_service.error_repo.list_page.assert_not_called()


class TestFilters:
    """Test cases for query-string helpers."""

    @pytest.mark.parametrize("value,expected", [
        (None, None),
        (True, True),
        ("true", True),
        (" TRUE ", True),
        ("false", False),
        ("yes", False),
    ])
    def test_parse_boolean(self, value, expected):
        assert parse_boolean(value) is expected

    def test_to_snake_case(self):
        assert to_snake_case("statusCode") == "status_code"
        assert to_snake_case("ipAddress") == "ip_address"
        assert to_snake_case("method") == "method"

    def test_parse_column_filters_from_json(self):
        assert parse_column_filters('{"method": {"operator": "equals", "value": "GET"}}') == {
            "method": {"operator": "equals", "value": "GET"}
        }

    def test_malformed_column_filters_are_ignored(self):
        assert parse_column_filters("{not json") is None
        assert parse_column_filters('["a"]') is None
        assert build_column_filters(AuditLog, "{not json") == []

    def test_unknown_fields_and_operators_are_skipped(self):
        conditions = build_column_filters(AuditLog, {
            "noSuchColumn": {"operator": "equals", "value": "x"},
            "method": {"operator": "fuzzy", "value": "GET"},
        })
        assert conditions == []

    def test_filters_on_different_fields(self):
        conditions = build_column_filters(AuditLog, {
            "method": {"operator": "equals", "value": "GET"},
            "statusCode": {"operator": "gte", "value": "400"},
        })
        assert len(conditions) == 2

    def test_several_filters_on_one_field_are_ored(self):
        conditions = build_column_filters(AuditLog, {
            "endpoint": [
                {"operator": "startsWith", "value": "/auth"},
                {"operator": "contains", "value": "salesforce"},
            ],
        })
        assert len(conditions) == 1
        assert isinstance(conditions[0], BooleanClauseList)
        assert " OR " in str(conditions[0])

    def test_invalid_numeric_value_is_skipped(self):
        conditions = build_column_filters(AuditLog, {"statusCode": {"operator": "gt", "value": "abc"}})
        assert conditions == []

    @pytest.mark.parametrize("page,limit,expected", [
        (None, None, (1, 10)),
        ("3", "25", (3, 25)),
        (0, 500, (1, 100)),
        ("x", "y", (1, 10)),
        (-2, -5, (1, 1)),
    ])
    def test_extract_pagination(self, page, limit, expected):
        assert extract_pagination(page, limit) == expected

    def test_pagination_meta(self):
        assert pagination_meta(2, 10, 25) == {"page": 2, "limit": 10, "total": 25, "pages": 3}

    def test_date_range_accepts_iso_bounds(self):
        condition = build_date_range_filter(AuditLog.created_at, "2024-01-01T00:00:00Z", "2024-01-31")
        assert isinstance(condition, BooleanClauseList)
        assert build_date_range_filter(AuditLog.created_at, None, "") is None

    @pytest.mark.parametrize("start_date,end_date,field", [
        ("not-a-date", None, "startDate"),
        (None, "2024-13-45", "endDate"),
    ])
    def test_malformed_date_is_a_validation_error(self, start_date, end_date, field):
        with pytest.raises(ValidationError) as exc_info:
            build_date_range_filter(AuditLog.created_at, start_date, end_date)

        assert exc_info.value.status_code == 400
        assert exc_info.value.message.startswith(f"Invalid {field}")

    def test_export_filters_reject_bad_values(self):
        with pytest.raises(ValidationError) as exc_info:
            export_filters(ExportRequest(format="csv", filters={"statusCode": "two hundred"}))

        assert exc_info.value.message == "Invalid export filters"
        assert exc_info.value.details[0]["loc"] == ["statusCode"]

    def test_export_filters_accept_camel_case(self):
        filters = export_filters(ExportRequest(filters={"statusCode": 200, "isDelivered": "true"}))

        assert filters["status_code"] == 200
        assert filters["is_delivered"] == "true"
