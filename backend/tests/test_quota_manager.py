import asyncio
from datetime import datetime, timedelta

import pytest
from sqlalchemy import select

from app.models import QuotaHistory, QuotaRecord
from app.services.quota_manager import QuotaManager
from app.utils.cache import QuotaCache
from app.utils.exceptions import ValidationError


class Clock:
    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return Clock(datetime(2026, 3, 10, 15, 30))


@pytest.fixture
def quota(db, clock):
    return QuotaManager(db, cache=QuotaCache(ttl=60), clock=clock)


async def test_record_created_lazily_with_configured_limit(quota):
    check = await quota.can_make_request("screenshots")
    assert check.allowed
    assert check.used == 0
    assert check.limit == 33
    assert check.reset_in == "8h 30m"


async def test_unknown_service_is_rejected(quota):
    with pytest.raises(ValidationError):
        await quota.can_make_request("nope")


async def test_increment_never_exceeds_limit(quota, db):
    await quota.can_make_request("serpapi")  # limit 3

    results = [await quota.increment_usage("serpapi") for _ in range(5)]
    assert results == [True, True, True, False, False]

    info = await quota.get_quota_info("serpapi")
    assert info["used"] == 3
    assert info["available"] == 0
    assert not (await quota.can_make_request("serpapi")).allowed


async def test_concurrent_increments_stay_within_limit(quota):
    results = await asyncio.gather(*(quota.increment_usage("serpapi") for _ in range(8)))
    assert results.count(True) == 3
    assert (await quota.get_quota_info("serpapi"))["used"] == 3


async def test_multi_unit_increment_is_all_or_nothing(quota):
    assert await quota.increment_usage("serpapi", amount=2)
    assert not await quota.increment_usage("serpapi", amount=2)
    assert (await quota.get_quota_info("serpapi"))["used"] == 2


async def test_rollover_archives_previous_day_once(quota, clock, db):
    for _ in range(4):
        await quota.increment_usage("pagespeed")
    await quota.record_success("pagespeed")
    await quota.record_error("pagespeed", "HTTP error: 500")

    clock.now = clock.now + timedelta(days=1)
    await asyncio.gather(*(quota.can_make_request("pagespeed") for _ in range(3)))

    info = await quota.get_quota_info("pagespeed")
    assert info["used"] == 0
    assert info["success_count"] == 0
    assert info["error_count"] == 0

    rows = (await db.execute(select(QuotaHistory))).scalars().all()
    assert len(rows) == 1
    assert rows[0].date.isoformat() == "2026-03-10"
    assert rows[0].used == 4
    assert rows[0].success_count == 1
    assert rows[0].error_count == 1

    history = await quota.get_history("pagespeed", days=7)
    assert history[0]["used"] == 4
    assert history[0]["limit"] == 800


async def test_error_message_is_truncated(quota):
    await quota.record_error("builtwith", "x" * 2000)
    info = await quota.get_quota_info("builtwith")
    assert info["error_count"] == 1
    assert len(info["last_error"]) == 500


async def test_fail_closed_when_store_is_unavailable(quota, db, monkeypatch):
    async def broken(*args, **kwargs):
        raise RuntimeError("database is down")

    monkeypatch.setattr(db, "execute", broken)

    check = await quota.can_make_request("screenshots")
    assert not check.allowed
    assert check.used == 0
    assert check.limit == 33
    assert await quota.increment_usage("screenshots") is False


async def test_alert_is_emitted_once_per_day(quota, clock):
    for _ in range(3):
        await quota.increment_usage("serpapi")

    alerts = await quota.check_quota_alerts()
    assert [alert.service for alert in alerts] == ["serpapi"]
    assert alerts[0].percentage == 100.0
    assert await quota.check_quota_alerts() == []

    clock.now = clock.now + timedelta(days=1)
    await quota.increment_usage("serpapi")
    assert await quota.check_quota_alerts() == []


async def test_alert_threshold_and_manual_reset(quota):
    with pytest.raises(ValidationError):
        await quota.set_alert_threshold("pagespeed", 0)

    info = await quota.set_alert_threshold("pagespeed", 50)
    assert info["alert_threshold"] == 50

    await quota.increment_usage("pagespeed")
    await quota.reset_quota("pagespeed")
    assert (await quota.get_quota_info("pagespeed"))["used"] == 0


async def test_history_window_is_bounded(quota):
    with pytest.raises(ValidationError):
        await quota.get_all_history(days=31)
    assert set(await quota.get_all_history(days=1)) == {"screenshots", "pagespeed", "serpapi", "builtwith"}


async def test_cached_snapshot_is_refreshed_after_increment(quota, db):
    await quota.can_make_request("serpapi")
    for _ in range(3):
        await quota.increment_usage("serpapi")
    check = await quota.can_make_request("serpapi")
    assert check.used == 3
    assert not check.allowed

    record = (await db.execute(select(QuotaRecord).where(QuotaRecord.service == "serpapi"))).scalar_one()
    assert record.used == 3
