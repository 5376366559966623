"""
Tests for the endpoint response cache.
"""
import pytest
from types import SimpleNamespace
from unittest.mock import AsyncMock, patch

from starlette.requests import Request

from crm_gateway.core.cache import (
    build_cache_key,
    cached,
    generate_key,
    invalidates_cache,
    invalidation_patterns,
)


def make_request(path_params=None, query_string=b""):
    return Request({
        "type": "http",
        "method": "GET",
        "path": "/",
        "headers": [],
        "query_string": query_string,
        "path_params": path_params or {},
    })


@pytest.fixture
def cache_redis():
    with patch("crm_gateway.core.cache.redis_client") as redis_mock:
        redis_mock.get_json = AsyncMock(return_value=None)
        redis_mock.set_json = AsyncMock()
        redis_mock.delete_patterns = AsyncMock(return_value=0)
        yield redis_mock


class TestCacheKeys:
    """Test cases for key derivation."""

    def test_params_are_sorted(self):
        assert generate_key("audit", "logs", {"page": 2, "limit": 10}) == "audit:logs:limit:10:page:2"

    def test_no_params(self):
        assert generate_key("settings", "all") == "settings:all"

    def test_user_path_and_query(self):
        request = make_request({"user_id": "42"}, b"status=active&empty=")
        key = build_cache_key("user", "byId", request, "u1", include_user_id=True, include_query=True)
        assert key == "user:byId:status:active:userId:u1:user_id:42"

    def test_query_ignored_unless_requested(self):
        request = make_request(query_string=b"page=3")
        assert build_cache_key("audit", "logs", request) == "audit:logs"

    def test_invalidation_without_params_covers_variants(self):
        assert invalidation_patterns("cron-jobs", "list", None) == ["cron-jobs:list", "cron-jobs:list:*"]

    def test_invalidation_of_whole_module(self):
        patterns = invalidation_patterns("audit", None, None, additional_keys=["audit:dashboard:stats"])
        assert patterns == ["audit:*", "audit:dashboard:stats"]

    def test_invalidation_scoped_to_user(self):
        patterns = invalidation_patterns("api-key", "keys", make_request(), "u1", include_user_id=True)
        assert patterns == ["api-key:keys:userId:u1"]


class TestCachedDecorator:
    """Test cases for the read-through decorator."""

    @pytest.mark.asyncio
    async def test_miss_then_store(self, cache_redis):
        calls = []

        @cached("settings", "all", ttl=60)
        async def endpoint(request: Request):
            calls.append(1)
            return {"general": {"siteName": "CRM Gateway"}}

        result = await endpoint(request=make_request())

        assert result == {"general": {"siteName": "CRM Gateway"}}
        assert calls == [1]
        cache_redis.set_json.assert_called_once_with("settings:all", result, 60)

    @pytest.mark.asyncio
    async def test_hit_skips_handler(self, cache_redis):
        cache_redis.get_json.return_value = {"cached": True}
        handler = AsyncMock()

        @cached("audit", "stats", include_user_id=True, ttl=60)
        async def endpoint(request: Request, current_user=None):
            return await handler()

        result = await endpoint(request=make_request(), current_user=SimpleNamespace(id="u1"))

        assert result == {"cached": True}
        handler.assert_not_called()
        cache_redis.get_json.assert_called_once_with("audit:stats:userId:u1")

    @pytest.mark.asyncio
    async def test_read_failure_is_a_miss(self, cache_redis):
        cache_redis.get_json.side_effect = Exception("redis down")
        cache_redis.set_json.side_effect = Exception("redis down")

        @cached("health", "check", ttl=30)
        async def endpoint(request: Request):
            return {"status": "ok"}

        assert await endpoint(request=make_request()) == {"status": "ok"}

    @pytest.mark.asyncio
    async def test_zero_ttl_bypasses_cache(self, cache_redis):
        @cached("queue", "stats", ttl=0)
        async def endpoint(request: Request):
            return {"waiting": 1}

        assert await endpoint(request=make_request()) == {"waiting": 1}
        cache_redis.get_json.assert_not_called()
        cache_redis.set_json.assert_not_called()

    @pytest.mark.asyncio
    async def test_invalidation_after_success(self, cache_redis):
        @invalidates_cache("settings")
        async def endpoint(request: Request):
            return {"updated": True}

        assert await endpoint(request=make_request()) == {"updated": True}
        cache_redis.delete_patterns.assert_called_once_with(["settings:*"])

    @pytest.mark.asyncio
    async def test_no_invalidation_when_handler_fails(self, cache_redis):
        @invalidates_cache("settings")
        async def endpoint(request: Request):
            raise RuntimeError("write failed")

        with pytest.raises(RuntimeError):
            await endpoint(request=make_request())

        cache_redis.delete_patterns.assert_not_called()
