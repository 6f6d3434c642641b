import asyncio
from datetime import timedelta

import pytest

from marketsync.core.exceptions import SyncTimeoutError, UpstreamFetchError
from marketsync.models.sync_log import SyncLog
from marketsync.services.record_store import RecordStore
from marketsync.services.sales_sync_service import STRATEGIES, SalesSyncService, get_strategy
from marketsync.utils.date_utils import format_api_date, utcnow


def _pages(builders, sizes, total):
    pages = {}
    offset = 0
    for page, size in enumerate(sizes, start=1):
        pages[page] = builders.sales_page(builders.numbered_sales(offset, size), total=total)
        offset += size
    return pages


def test_last_100_fetches_first_page_only(db, fake_client, builders):
    client = fake_client(pages=_pages(builders, [100, 100, 100], total=300))
    service = SalesSyncService(db, client=client)

    result = asyncio.run(service.sync_sales("key", "Last 100", "cron", "owner-1"))

    assert client.pages_requested() == [1]
    assert "created_date_start" not in client.calls[0]["params"]
    assert result.tally.new == 100
    assert result.pages_fetched == 1

    log = db.query(SyncLog).one()
    assert log.job_name == "sales-sync-last-100"
    assert log.schedule == "0 * * * *"
    assert log.trigger_type == "cron"
    assert log.status == "success"
    assert log.stats["total_new"] == 100


def test_last_30_days_pages_until_total(db, fake_client, builders):
    client = fake_client(pages=_pages(builders, [100, 100, 20], total=220))
    service = SalesSyncService(db, client=client)

    result = asyncio.run(service.sync_sales("key", "Last 30 Days", "manual", "owner-1"))

    assert client.pages_requested() == [1, 2, 3]
    expected_start = format_api_date(utcnow() - timedelta(days=30))
    assert all(c["params"]["created_date_start"] == expected_start for c in client.calls)
    assert result.tally.processed == 220
    assert RecordStore(db).count("owner-1", "sales") == 220


def test_all_data_stops_on_empty_page(db, fake_client, builders):
    pages = _pages(builders, [100, 100], total=500)
    client = fake_client(pages=pages)
    service = SalesSyncService(db, client=client)

    result = asyncio.run(service.sync_sales("key", "All Data", "manual", "owner-1"))

    assert client.pages_requested() == [1, 2, 3]
    assert result.records_fetched == 200


def test_second_run_skips_unchanged_sales(db, fake_client, builders):
    client = fake_client(pages=_pages(builders, [40], total=40))
    service = SalesSyncService(db, client=client)

    asyncio.run(service.sync_sales("key", "Last 100", "manual", "owner-1"))
    result = asyncio.run(service.sync_sales("key", "Last 100", "manual", "owner-1"))

    assert result.tally.new == 0
    assert result.tally.skipped == 40
    assert db.query(SyncLog).count() == 2


def test_failed_page_aborts_the_run(db, fake_client, builders):
    pages = _pages(builders, [100, 100, 100], total=300)
    client = fake_client(pages=pages, failing_pages=[2])
    service = SalesSyncService(db, client=client)

    with pytest.raises(UpstreamFetchError) as exc:
        asyncio.run(service.sync_sales("key", "All Data", "manual", "owner-1"))

    assert exc.value.page == 2
    assert exc.value.status_code == 503
    assert 3 not in client.pages_requested()
    # page 1 was already persisted
    assert RecordStore(db).count("owner-1", "sales") == 100

    log = db.query(SyncLog).one()
    assert log.status == "failed"
    assert log.stats["total_errors"] == 1
    assert "503" in log.error_message


def test_timeout_is_reported_distinctly(db, fake_client, builders):
    client = fake_client(pages=_pages(builders, [100], total=100), delay=0.5)
    service = SalesSyncService(db, client=client)

    with pytest.raises(SyncTimeoutError) as exc:
        asyncio.run(service.sync_sales("key", "Last 100", "manual", "owner-1", timeout_seconds=0.05))

    assert "timed out" in str(exc.value)
    log = db.query(SyncLog).one()
    assert log.status == "timeout"
    assert log.completed_at is not None


def test_unknown_strategy(db, fake_client):
    service = SalesSyncService(db, client=fake_client())

    with pytest.raises(ValueError):
        asyncio.run(service.sync_sales("key", "Last Week", "manual", "owner-1"))
    assert db.query(SyncLog).count() == 0


def test_timeouts_by_trigger(db, fake_client):
    service = SalesSyncService(db, client=fake_client())
    assert service.timeout_for("manual") == 1800
    assert service.timeout_for("cron") == 900


def test_strategy_presets():
    assert set(STRATEGIES) == {"Last 100", "Last 30 Days", "Last 6 Months", "All Data"}
    assert get_strategy("Last 6 Months").lookback_days == 180
    assert get_strategy("Last 6 Months").schedule == "0 3 * * 0"
    assert get_strategy("Last 30 Days").slug == "last-30-days"
    assert get_strategy("All Data").schedule == "manual"
