import asyncio
import os
from contextlib import asynccontextmanager

import httpx
import pytest

from app.workers.tasks import enrichment_tasks, maintenance_tasks
from app.workers.tasks.maintenance_tasks import remove_stale_files

DAY = 86400


def _touch(path, mtime):
    path.write_bytes(b"png")
    os.utime(path, (mtime, mtime))


def test_remove_stale_files(tmp_path):
    now = 1_800_000_000
    _touch(tmp_path / "old_desktop.png", now - 31 * DAY)
    _touch(tmp_path / "fresh_mobile.png", now - 2 * DAY)
    _touch(tmp_path / "notes.txt", now - 90 * DAY)

    removed = remove_stale_files(tmp_path, 30, now=now)

    assert removed == ["old_desktop.png"]
    assert sorted(p.name for p in tmp_path.iterdir()) == ["fresh_mobile.png", "notes.txt"]


def test_remove_stale_files_missing_directory(tmp_path):
    assert remove_stale_files(tmp_path / "nope", 30) == []


def test_clean_old_screenshots_task(tmp_path, monkeypatch):
    from app.config import get_settings

    directory = tmp_path / "shots"
    directory.mkdir()
    _touch(directory / "a.png", 1)
    monkeypatch.setattr(get_settings(), "SCREENSHOTS_DIR", str(directory))

    assert maintenance_tasks.clean_old_screenshots.run() == {"removed": 1}


def _db_context(session_maker):
    @asynccontextmanager
    async def context():
        async with session_maker() as session:
            yield session
            await session.commit()

    return context


async def test_enrich_batch_reports_invalid_ids(session_maker, customer, monkeypatch, mock_http):
    monkeypatch.setattr(enrichment_tasks, "get_db_context", _db_context(session_maker))
    mock_http(lambda request: httpx.Response(200, text="<html><title>Pan</title></html>"))

    summary = await enrichment_tasks._enrich_batch([str(customer.id), "garbage"], ["seo"])

    assert summary["total"] == 2
    assert summary["succeeded"] == 1
    assert summary["failed"] == 1
    assert summary["results"][-1] == {"customer_id": "garbage", "success": False, "error": "Invalid customer id"}


async def test_check_alerts(session_maker, monkeypatch):
    from app.services.quota_manager import QuotaManager

    monkeypatch.setattr(maintenance_tasks, "get_db_context", _db_context(session_maker))
    async with session_maker() as session:
        quota = QuotaManager(session)
        await quota.increment_usage("serpapi", 3)

    alerts = await maintenance_tasks._check_alerts()

    assert [alert["service"] for alert in alerts] == ["serpapi"]
    # only once per day
    assert await maintenance_tasks._check_alerts() == []


def test_run_async_uses_its_own_loop():
    async def answer():
        return 42

    assert enrichment_tasks.run_async(answer()) == 42


def test_run_async_releases_connections_inside_the_task_loop(monkeypatch):
    closed_on = []

    async def fake_close_db():
        closed_on.append(asyncio.get_running_loop())

    monkeypatch.setattr(enrichment_tasks, "close_db", fake_close_db)

    async def current_loop():
        return asyncio.get_running_loop()

    first = enrichment_tasks.run_async(current_loop())
    second = enrichment_tasks.run_async(current_loop())

    assert closed_on == [first, second]
    assert first is not second
    assert first.is_closed()


def test_run_async_releases_connections_when_the_task_fails(monkeypatch):
    closed = []

    async def fake_close_db():
        closed.append(True)

    monkeypatch.setattr(enrichment_tasks, "close_db", fake_close_db)

    async def boom():
        raise RuntimeError("database went away")

    with pytest.raises(RuntimeError, match="database went away"):
        enrichment_tasks.run_async(boom())
    assert closed == [True]


def test_beat_schedule_routes():
    from app.workers.celery_app import celery_app

    schedule = celery_app.conf.beat_schedule
    assert schedule["check-quota-alerts"]["task"] == "app.workers.tasks.maintenance_tasks.check_quota_alerts"
    assert schedule["clean-old-screenshots"]["task"] == "app.workers.tasks.maintenance_tasks.clean_old_screenshots"
