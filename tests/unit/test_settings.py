"""Unit tests for kill-switch settings."""

from unittest.mock import AsyncMock

import pytest

from hydration_jobs.errors import HydrationDisabledError
from hydration_jobs.models import JobType
from hydration_jobs.settings import (
    GLOBAL_DISABLED_KEY,
    PAUSED_KEY,
    SettingsCache,
    disabled_key_for,
    is_setting_enabled,
)


@pytest.mark.parametrize(
    "value,expected",
    [
        (True, True),
        ("true", True),
        (" TRUE ", True),
        ("1", True),
        ("false", False),
        ("0", False),
        ("", False),
        (None, False),
        (1, False),
    ],
)
def test_is_setting_enabled(value, expected):
    assert is_setting_enabled(value) is expected


def test_disabled_key_for():
    assert disabled_key_for(JobType.NOTES) == "HYDRATION_DISABLED_NOTES"
    assert disabled_key_for("assemble") == "HYDRATION_DISABLED_ASSEMBLE"


def _cache(mock_db_pool, settings):
    mock_db_pool.conn.fetch = AsyncMock(
        return_value=[{"key": key, "value": value} for key, value in settings.items()]
    )
    return SettingsCache(mock_db_pool, ttl_seconds=60)


async def test_disabled_reason_none_when_unset(mock_db_pool):
    cache = _cache(mock_db_pool, {})
    assert await cache.disabled_reason(JobType.NOTES) is None


async def test_global_switch_wins(mock_db_pool):
    cache = _cache(
        mock_db_pool,
        {GLOBAL_DISABLED_KEY: "true", "HYDRATION_DISABLED_NOTES": "true"},
    )
    assert await cache.disabled_reason(JobType.NOTES) == GLOBAL_DISABLED_KEY


async def test_per_type_switch_only_blocks_its_type(mock_db_pool):
    cache = _cache(mock_db_pool, {"HYDRATION_DISABLED_NOTES": "1"})

    assert await cache.disabled_reason(JobType.NOTES) == "HYDRATION_DISABLED_NOTES"
    assert await cache.disabled_reason(JobType.QUESTIONS) is None


async def test_pause_only_counts_when_requested(mock_db_pool):
    cache = _cache(mock_db_pool, {PAUSED_KEY: "true"})

    assert await cache.disabled_reason(JobType.NOTES) is None
    assert await cache.disabled_reason(JobType.NOTES, include_pause=True) == PAUSED_KEY


async def test_check_hydration_enabled_raises(mock_db_pool):
    cache = _cache(mock_db_pool, {"HYDRATION_DISABLED_SYLLABUS": "true"})

    with pytest.raises(HydrationDisabledError) as exc_info:
        await cache.check_hydration_enabled(JobType.SYLLABUS)

    assert exc_info.value.setting_key == "HYDRATION_DISABLED_SYLLABUS"
    await cache.check_hydration_enabled(JobType.TOPICS)


async def test_settings_are_cached_within_ttl(mock_db_pool):
    cache = _cache(mock_db_pool, {})

    await cache.get(GLOBAL_DISABLED_KEY)
    await cache.get(PAUSED_KEY)

    assert mock_db_pool.conn.fetch.await_count == 1


async def test_set_upserts_and_refreshes(mock_db_pool):
    cache = _cache(mock_db_pool, {})

    await cache.set(GLOBAL_DISABLED_KEY, "true")

    sql = mock_db_pool.conn.execute.await_args.args[0]
    assert "ON CONFLICT (key) DO UPDATE" in sql
    assert mock_db_pool.conn.fetch.await_count == 1
