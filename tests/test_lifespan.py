"""
Tests for application startup with unavailable dependencies.
"""
import pytest
from unittest.mock import AsyncMock, MagicMock, patch

from crm_gateway import main
from crm_gateway.schemas.cron import CRON_JOB_TYPES
from crm_gateway.services.cron_job_state import CronJobState


@pytest.fixture
def startup_deps():
    state = CronJobState()
    with patch.object(main, "db_manager") as db, \
            patch.object(main, "redis_client") as redis_mock, \
            patch.object(main, "AsyncSessionLocal") as session_factory, \
            patch.object(main, "cron_job_state", state):
        db.create_tables = AsyncMock()
        db.close_connections = AsyncMock()
        redis_mock.connect = AsyncMock()
        redis_mock.disconnect = AsyncMock()
        yield {"db": db, "redis": redis_mock, "session_factory": session_factory, "state": state}


class TestLifespan:
    """Startup keeps going when the database or Redis is down."""

    @pytest.mark.asyncio
    async def test_database_down_falls_back_to_enabled_jobs(self, startup_deps):
        startup_deps["db"].create_tables.side_effect = OSError("db down")
        startup_deps["session_factory"].side_effect = OSError("db down")

        async with main.lifespan(main.app):
            assert startup_deps["state"].all_states() == {job_type: True for job_type in CRON_JOB_TYPES}

        startup_deps["redis"].connect.assert_called_once()
        startup_deps["db"].close_connections.assert_called_once()

    @pytest.mark.asyncio
    async def test_redis_down_still_hydrates_cron_state(self, startup_deps):
        startup_deps["redis"].connect.side_effect = ConnectionError("redis down")
        load = AsyncMock(return_value={})

        with patch.object(startup_deps["state"], "load", load):
            async with main.lifespan(main.app):
                pass

        load.assert_called_once()
        startup_deps["db"].create_tables.assert_called_once()

    @pytest.mark.asyncio
    async def test_load_failure_inside_session_uses_defaults(self, startup_deps):
        session_cm = MagicMock()
        session_cm.__aenter__ = AsyncMock(return_value=MagicMock())
        session_cm.__aexit__ = AsyncMock(return_value=False)
        startup_deps["session_factory"].return_value = session_cm

        with patch.object(startup_deps["state"], "load", AsyncMock(side_effect=RuntimeError("pool closed"))):
            async with main.lifespan(main.app):
                assert all(startup_deps["state"].all_states().values())
                assert set(startup_deps["state"].all_states()) == set(CRON_JOB_TYPES)
