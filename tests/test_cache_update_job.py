import asyncio
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest

from app.core.exceptions import OperationalError
from app.core.config import settings
from app.tasks.cache_update_scheduler import MAX_BATCH_SIZE, ProfileCacheScheduler, get_next_update_time

from conftest import TTL, make_report


async def test_job_refreshes_at_most_one_batch(scheduler, service, provider, add_entry, clock):
    for i in range(14):
        await add_entry(f"ref_{i}", clock() - timedelta(hours=i + 1))

    result = await scheduler.run_cache_update_job()

    assert result.success is True
    assert len(provider.calls) == 10
    assert result.candidates == 10
    assert result.updated == 10
    assert result.errors == 0
    assert result.credits_used == result.updated
    assert result.total_cached == 14
    assert result.needing_update == 4
    assert result.trigger == "scheduled"


async def test_explicit_zero_batch_refreshes_nothing(service, provider, add_entry, clock):
    await add_entry("ip_1", clock() - timedelta(hours=1))
    scheduler = ProfileCacheScheduler(cache_service=service, batch_size=0, request_delay=0)

    result = await scheduler.run_cache_update_job()

    assert scheduler.batch_size == 0
    assert result.success is True
    assert result.candidates == 0
    assert provider.calls == []


@pytest.mark.parametrize("configured, expected", [(None, 10), (50, MAX_BATCH_SIZE), (-3, 0), (4, 4)])
async def test_batch_size_is_bounded(service, monkeypatch, configured, expected):
    monkeypatch.setattr(settings, "PROFILE_CACHE_BATCH_SIZE", 25)
    assert ProfileCacheScheduler(cache_service=service, batch_size=configured).batch_size == expected


async def test_job_counts_item_failures_and_continues(scheduler, provider, add_entry, clock):
    await add_entry("ok_1", clock() - timedelta(hours=3), external_user_id="good_1")
    await add_entry("bad", clock() - timedelta(hours=2), external_user_id="bad_1")
    await add_entry("ok_2", clock() - timedelta(hours=1), external_user_id="good_2")
    provider.payloads["bad_1"] = {"error": False}

    result = await scheduler.run_cache_update_job()

    assert result.success is True
    assert [call[0] for call in provider.calls] == ["good_1", "bad_1", "good_2"]
    assert result.updated == 2
    assert result.errors == 1
    assert result.credits_used == 2
    assert result.updated + result.errors <= result.candidates <= scheduler.batch_size
    assert result.needing_update == 1


async def test_job_with_nothing_to_do(scheduler, provider):
    result = await scheduler.run_cache_update_job()

    assert result.success is True
    assert result.candidates == 0
    assert result.updated == 0
    assert provider.calls == []


async def test_job_failure_returns_zero_progress(service):
    service.get_cache_stats = AsyncMock(side_effect=OperationalError("database unreachable"))
    scheduler = ProfileCacheScheduler(cache_service=service, request_delay=0)

    result = await scheduler.run_cache_update_job()

    assert result.success is False
    assert result.error == "database unreachable"
    assert (result.updated, result.errors, result.credits_used, result.candidates) == (0, 0, 0, 0)
    assert scheduler.stats['total_runs'] == 1
    assert scheduler.stats['total_failures'] == 1


async def test_manual_update_records_reason_and_update_type(scheduler, session_factory, add_entry, clock):
    from sqlalchemy import select
    from app.database.cache_models import UpdateLogEntry

    await add_entry("ip_1", clock() - timedelta(hours=1))

    result = await scheduler.trigger_manual_update(reason="provider outage recovered")

    assert result.trigger == "manual"
    assert result.reason == "provider outage recovered"
    assert result.updated == 1

    async with session_factory() as db:
        log = (await db.execute(select(UpdateLogEntry))).scalar_one()
    assert log.update_type == "manual"


async def test_scheduled_populates_are_logged_as_scheduled(scheduler, session_factory, add_entry, clock):
    from sqlalchemy import select
    from app.database.cache_models import UpdateLogEntry

    await add_entry("ip_1", clock() - timedelta(hours=1))
    await scheduler.run_cache_update_job()

    async with session_factory() as db:
        log = (await db.execute(select(UpdateLogEntry))).scalar_one()
    assert log.update_type == "scheduled"


async def test_check_urgent_updates(scheduler, add_entry, clock):
    await add_entry("fresh", clock() + timedelta(hours=2))
    assert await scheduler.check_urgent_updates() is False

    await add_entry("stale", clock() - timedelta(seconds=1))
    assert await scheduler.check_urgent_updates() is True


async def test_scheduler_status_accumulates_runs(scheduler, add_entry, clock):
    await add_entry("ip_1", clock() - timedelta(hours=1))
    await scheduler.run_cache_update_job()
    await scheduler.run_cache_update_job()

    status = await scheduler.get_scheduler_status()

    assert status.total_runs == 2
    assert status.total_profiles_refreshed == 1
    assert status.total_failures == 0
    assert status.last_run == clock()
    assert status.last_result.candidates == 0
    assert status.urgent_updates_pending is False
    assert status.next_update_time == datetime(2026, 10, 18, 2, 0, tzinfo=timezone.utc)


async def test_request_delay_only_between_calls(service, add_entry, clock, monkeypatch):
    sleeps = []

    async def fake_sleep(seconds):
        sleeps.append(seconds)

    monkeypatch.setattr(asyncio, "sleep", fake_sleep)
    for i in range(3):
        await add_entry(f"ref_{i}", clock() - timedelta(hours=i + 1))

    scheduler = ProfileCacheScheduler(cache_service=service, batch_size=10, request_delay=0.5)
    result = await scheduler.run_cache_update_job()

    assert result.updated == 3
    assert sleeps == [0.5, 0.5]


async def test_connect_populate_expire_and_refresh_scenario(scheduler, service, provider, clock):
    provider.payloads["insta_42"] = make_report(followers=4200)
    populated = await service.populate_profile_cache("ip_1", "insta_42", "instagram")
    assert populated.success is True

    profile = await service.get_cached_profile("ip_1", "instagram")
    assert profile.followers == 4200
    first_expiry = profile.expires_at

    clock.set(first_expiry - timedelta(hours=12))
    candidates = await service.get_profiles_needing_update(10)
    assert [c.source_account_ref for c in candidates] == ["ip_1"]

    clock.set(first_expiry + timedelta(hours=1))
    before = await service.get_cache_stats()
    assert before.profiles_needing_update == 1

    provider.payloads["insta_42"] = make_report(followers=4300)
    result = await scheduler.run_cache_update_job()

    assert result.updated == 1
    refreshed = await service.get_cached_profile("ip_1", "instagram")
    assert refreshed.followers == 4300
    assert refreshed.expires_at == clock() + TTL
    assert refreshed.id == profile.id

    after = await service.get_cache_stats()
    assert after.profiles_needing_update == before.profiles_needing_update - 1


@pytest.mark.parametrize("now, expected", [
    (datetime(2026, 10, 12, 9, 0, tzinfo=timezone.utc), datetime(2026, 10, 18, 2, 0, tzinfo=timezone.utc)),   # Monday
    (datetime(2026, 10, 17, 23, 59, tzinfo=timezone.utc), datetime(2026, 10, 18, 2, 0, tzinfo=timezone.utc)),  # Saturday
    (datetime(2026, 10, 18, 1, 0, tzinfo=timezone.utc), datetime(2026, 10, 25, 2, 0, tzinfo=timezone.utc)),    # Sunday
])
def test_next_update_time_is_next_sunday_2am(now, expected):
    assert get_next_update_time(now) == expected
